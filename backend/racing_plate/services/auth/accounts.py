from typing import Optional, Tuple

from flask import current_app
from sqlalchemy.exc import IntegrityError

from racing_plate import db, bcrypt
from racing_plate.errors import Conflict, DeliveryFailed, InvalidCredentials
from racing_plate.models import User
from racing_plate.services import get_services
from .codes import PURPOSE_RESET, PURPOSE_VERIFY, normalize_email
from .notifications import render_code_message
from .tokens import issue_token


_dummy_hash = None


def _timing_dummy_hash() -> str:
    # Compared against when the email is unknown so both failure paths cost one bcrypt check.
    global _dummy_hash
    if _dummy_hash is None:
        _dummy_hash = bcrypt.generate_password_hash('not-a-real-password').decode('utf-8')
    return _dummy_hash


def find_user_by_email(email: str) -> Optional[User]:
    return User.query.filter_by(email=normalize_email(email)).first()


def register(email: str, password: str, username: str) -> User:
    email = normalize_email(email)
    if find_user_by_email(email):
        raise Conflict('User already exists')
    user = User(email=email, username=username.strip())
    user.set_password(password)
    db.session.add(user)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise Conflict('User already exists')
    current_app.logger.info(f"[auth-register] user={user.id}")
    return user


def authenticate(email: str, password: str) -> Tuple[User, str]:
    user = find_user_by_email(email)
    if user is None:
        bcrypt.check_password_hash(_timing_dummy_hash(), password)
        current_app.logger.info("[auth-login] rejected")
        raise InvalidCredentials()
    if not user.check_password(password):
        current_app.logger.info(f"[auth-login] rejected user={user.id}")
        raise InvalidCredentials()
    current_app.logger.info(f"[auth-login] ok user={user.id}")
    return user, issue_token(user)


def issue_code(user: User, purpose: str) -> None:
    """Generate, store and deliver a one-time code.

    Raises ``DeliveryFailed`` when the notifier fails; the stored code is
    discarded in that case so no undelivered code remains valid.
    """
    services = get_services()
    code = services.codes.issue(user.email, purpose, user.id)
    subject, body = render_code_message(purpose, code, int(current_app.config.get('VERIFICATION_CODE_TTL_SEC', 600)))
    try:
        services.notifier.send(user.email, subject, body)
    except DeliveryFailed:
        services.codes.discard(user.email, purpose)
        raise
    current_app.logger.info(f"[code-issued] user={user.id} purpose={purpose}")


def send_verification(user: User) -> bool:
    """Issue a verify code at signup; reports delivery instead of raising."""
    try:
        issue_code(user, PURPOSE_VERIFY)
    except DeliveryFailed:
        current_app.logger.warning(f"[auth-register] verification mail not delivered user={user.id}")
        return False
    return True


def resend_verification(email: str) -> None:
    user = find_user_by_email(email)
    if user is None or user.verified:
        return
    issue_code(user, PURPOSE_VERIFY)


def verify_email(email: str, code: str) -> Tuple[User, str]:
    user_id = get_services().codes.consume(email, code, PURPOSE_VERIFY)
    user = db.session.get(User, user_id)
    if user is None:
        raise InvalidCredentials()
    user.verified = True
    db.session.commit()
    current_app.logger.info(f"[auth-verify] user={user.id}")
    return user, issue_token(user)


def request_password_reset(email: str) -> None:
    user = find_user_by_email(email)
    if user is None:
        current_app.logger.info("[auth-forgot] unknown email")
        return
    issue_code(user, PURPOSE_RESET)


def reset_password(email: str, code: str, new_password: str) -> User:
    user_id = get_services().codes.consume(email, code, PURPOSE_RESET)
    user = db.session.get(User, user_id)
    if user is None:
        raise InvalidCredentials()
    user.set_password(new_password)
    db.session.commit()
    get_services().rate_limiter.reset(user.email)
    current_app.logger.info(f"[auth-reset] user={user.id}")
    return user
