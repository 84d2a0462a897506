import time
from dataclasses import dataclass
from functools import wraps
from typing import Optional

import jwt
from flask import current_app, request

from racing_plate import db
from racing_plate.errors import Forbidden, Unauthorized
from racing_plate.models import User


@dataclass(frozen=True)
class AuthContext:
    """Identity resolved from a bearer token, handed to views explicitly."""
    user_id: int
    email: str
    username: str
    subscription: str
    verified: bool

    @classmethod
    def from_user(cls, user: User) -> 'AuthContext':
        return cls(
            user_id=user.id,
            email=user.email,
            username=user.username,
            subscription=user.subscription,
            verified=user.verified,
        )


def issue_token(user: User, expires_in: Optional[int] = None) -> str:
    cfg = current_app.config
    now = int(time.time())
    lifetime = int(expires_in if expires_in is not None else cfg.get('JWT_EXPIRES_IN', 7 * 24 * 3600))
    payload = {
        'sub': str(user.id),
        'email': user.email,
        'iat': now,
        'exp': now + lifetime,
    }
    return jwt.encode(payload, cfg['JWT_SECRET_KEY'], algorithm=cfg.get('JWT_ALGORITHM', 'HS256'))


def decode_token(token: str) -> dict:
    """Decode and verify a token, mapping failures to distinct 401 reasons."""
    cfg = current_app.config
    try:
        return jwt.decode(
            token,
            cfg['JWT_SECRET_KEY'],
            algorithms=[cfg.get('JWT_ALGORITHM', 'HS256')],
            options={'require': ['sub', 'exp']},
        )
    except jwt.ExpiredSignatureError:
        raise Unauthorized('Token expired')
    except jwt.InvalidTokenError:
        raise Unauthorized('Invalid token')


def _bearer_token() -> Optional[str]:
    header = request.headers.get('Authorization', '')
    scheme, _, token = header.partition(' ')
    if scheme.lower() != 'bearer' or not token.strip():
        return None
    return token.strip()


def resolve_auth(token: str) -> AuthContext:
    claims = decode_token(token)
    try:
        user_id = int(claims['sub'])
    except (TypeError, ValueError):
        raise Unauthorized('Invalid token')
    user = db.session.get(User, user_id)
    if user is None:
        raise Unauthorized('Invalid token')
    return AuthContext.from_user(user)


def token_required(view):
    """Require a valid bearer token; the view receives ``auth=AuthContext``."""
    @wraps(view)
    def wrapper(*args, **kwargs):
        token = _bearer_token()
        if not token:
            raise Unauthorized('No token provided')
        auth = resolve_auth(token)
        if current_app.config.get('REQUIRE_VERIFIED_EMAIL', True) and not auth.verified:
            raise Forbidden('Please verify your email first')
        return view(*args, auth=auth, **kwargs)
    return wrapper


def token_optional(view):
    """Like ``token_required`` but passes ``auth=None`` instead of rejecting."""
    @wraps(view)
    def wrapper(*args, **kwargs):
        auth = None
        token = _bearer_token()
        if token:
            try:
                auth = resolve_auth(token)
            except Unauthorized as exc:
                current_app.logger.info(f"[auth-optional] ignoring token: {exc.message}")
            if auth is not None and current_app.config.get('REQUIRE_VERIFIED_EMAIL', True) and not auth.verified:
                auth = None
        return view(*args, auth=auth, **kwargs)
    return wrapper
