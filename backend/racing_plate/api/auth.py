from functools import wraps

from flask import Blueprint, jsonify

from racing_plate.schemas import (
    EmailOnlyBody,
    LoginBody,
    ResetPasswordBody,
    SignupBody,
    VerifyEmailBody,
    parse_body,
)
from racing_plate.services import get_services
from racing_plate.services.auth import accounts
from racing_plate.services.auth.rate_limit import rate_limit_key
from racing_plate.services.auth.tokens import token_required

auth = Blueprint('auth', __name__)


def throttled(model):
    """Validate the body as ``model``, then count the attempt against its email.

    Malformed requests are rejected before they reach the limiter, so only
    well-formed addresses ever become keys. The view receives ``body=``.
    """
    def decorator(view):
        @wraps(view)
        def wrapper(*args, **kwargs):
            body = parse_body(model)
            get_services().rate_limiter.hit(rate_limit_key(body.email))
            return view(*args, body=body, **kwargs)
        return wrapper
    return decorator


@auth.route('/register', methods=['POST'])
@auth.route('/signup', methods=['POST'])
@throttled(SignupBody)
def register(body):
    user = accounts.register(body.email, body.password, body.username)
    sent = accounts.send_verification(user)
    return jsonify({
        'message': 'User created successfully',
        'user': user.to_dict(),
        'verification_sent': sent,
    }), 201


@auth.route('/login', methods=['POST'])
@throttled(LoginBody)
def login(body):
    user, token = accounts.authenticate(body.email, body.password)
    get_services().rate_limiter.reset(rate_limit_key(body.email))
    return jsonify({'message': 'Login successful', 'token': token, 'user': user.to_dict()})


@auth.route('/verify-email', methods=['POST'])
@throttled(VerifyEmailBody)
def verify_email(body):
    user, token = accounts.verify_email(body.email, body.code)
    return jsonify({'message': 'Email verified successfully', 'token': token, 'user': user.to_dict()})


@auth.route('/resend-verification', methods=['POST'])
@throttled(EmailOnlyBody)
def resend_verification(body):
    accounts.resend_verification(body.email)
    return jsonify({'message': 'If the account needs verification, a new code has been sent'})


@auth.route('/forgot-password', methods=['POST'])
@throttled(EmailOnlyBody)
def forgot_password(body):
    accounts.request_password_reset(body.email)
    # Same answer whether or not the email exists
    return jsonify({'message': 'If an account exists, a password reset code has been sent'})


@auth.route('/reset-password', methods=['POST'])
@throttled(ResetPasswordBody)
def reset_password(body):
    accounts.reset_password(body.email, body.code, body.new_password)
    return jsonify({'message': 'Password reset successfully'})


@auth.route('/me', methods=['GET'])
@token_required
def me(auth):
    return jsonify({
        'user': {
            'id': auth.user_id,
            'email': auth.email,
            'username': auth.username,
            'verified': auth.verified,
            'subscription': auth.subscription,
        }
    })
