"""Request body schemas.

Validation rules follow the client contract: lower-cased emails, strong
passwords, six-digit codes. ``parse_body`` turns pydantic errors into a
``ValidationError`` carrying per-field detail.
"""

import re
from typing import Annotated, Literal, Optional

from flask import request
from pydantic import AfterValidator, AliasChoices, BaseModel, ConfigDict, EmailStr, Field
from pydantic import ValidationError as PydanticValidationError

from racing_plate.errors import ValidationError

PASSWORD_RULE = re.compile(r'^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)')
USERNAME_RULE = re.compile(r'^[A-Za-z0-9_. \-]+$')
SECRET_FIELDS = ('password', 'new_password', 'newPassword')
# Largest value the Integer columns hold on every supported database.
MAX_INT = 2 ** 31 - 1


def _normalize_email(value: str) -> str:
    value = value.strip().lower()
    if len(value) > 255:
        raise ValueError('Email must be at most 255 characters')
    return value


def _check_password(value: str) -> str:
    if not PASSWORD_RULE.match(value):
        raise ValueError('Password must contain at least one lowercase letter, one uppercase letter, and one number')
    return value


def _check_username(value: str) -> str:
    value = value.strip()
    if not 2 <= len(value) <= 50:
        raise ValueError('Username must be between 2 and 50 characters')
    if not USERNAME_RULE.match(value):
        raise ValueError('Username can only contain letters, numbers, spaces, dots, dashes and underscores')
    return value


Email = Annotated[EmailStr, AfterValidator(_normalize_email)]
Password = Annotated[str, Field(min_length=8, max_length=128), AfterValidator(_check_password)]
Username = Annotated[str, AfterValidator(_check_username)]
Code = Annotated[str, Field(pattern=r'^\d{6}$')]
GameMode = Literal['race', 'time-trial', 'practice', 'tournament']
Difficulty = Literal['easy', 'medium', 'hard']


class _Body(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class SignupBody(_Body):
    email: Email
    password: Password
    username: Username


class LoginBody(_Body):
    email: Email
    password: str = Field(min_length=1)


class EmailOnlyBody(_Body):
    email: Email


class VerifyEmailBody(_Body):
    email: Email
    code: Code


class ResetPasswordBody(_Body):
    email: Email
    code: Code
    new_password: Password = Field(validation_alias=AliasChoices('new_password', 'newPassword'))


class SessionStartBody(_Body):
    game_mode: GameMode = Field(validation_alias=AliasChoices('game_mode', 'gameMode', 'gameType'))
    difficulty: Difficulty = 'medium'


class SessionEndBody(_Body):
    session_id: int = Field(gt=0, le=MAX_INT, validation_alias=AliasChoices('session_id', 'sessionId'))
    score: int = Field(ge=0, le=MAX_INT)
    duration: Optional[float] = Field(default=None, ge=0)


class SessionRefBody(_Body):
    session_id: int = Field(gt=0, le=MAX_INT, validation_alias=AliasChoices('session_id', 'sessionId'))


class LeaderboardQuery(_Body):
    limit: Optional[int] = Field(default=None, ge=1, le=100)
    game_mode: Optional[GameMode] = Field(default=None, validation_alias=AliasChoices('game_mode', 'gameMode'))


def _detail(err):
    loc = err.get('loc', ())
    field = '.'.join(str(part) for part in loc) or 'body'
    value = err.get('input')
    if field in SECRET_FIELDS or isinstance(value, dict):
        value = None
    return {'field': field, 'message': err.get('msg'), 'value': value}


def validate(model, data):
    try:
        return model.model_validate(data)
    except PydanticValidationError as exc:
        raise ValidationError(details=[_detail(err) for err in exc.errors(include_url=False)])


def parse_body(model):
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError('Request body must be a JSON object')
    return validate(model, data)


def parse_query(model):
    return validate(model, request.args.to_dict())
