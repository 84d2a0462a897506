"""One-time numeric codes for email verification and password reset.

Codes are keyed by (purpose, lower-cased email). Issuing a new code replaces
any pending one for the same key. Consumption is at-most-once: a matching or
expired code is removed, a mismatching one is kept.
"""

import secrets
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Tuple

from racing_plate.errors import CodeExpired, CodeMismatch, CodeNotFound

PURPOSE_VERIFY = 'verify'
PURPOSE_RESET = 'reset'
PURPOSES = (PURPOSE_VERIFY, PURPOSE_RESET)


def generate_code() -> str:
    return str(100000 + secrets.randbelow(900000))


def normalize_email(email: str) -> str:
    return email.strip().lower()


@dataclass
class PendingCode:
    code: str
    expires_at: float
    purpose: str
    user_id: int


class MemoryCodeStore:
    """Process-local store. Only correct for a single server instance."""

    def __init__(self, ttl_seconds: int = 600, clock: Callable[[], float] = time.time):
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._codes: Dict[Tuple[str, str], PendingCode] = {}
        self._lock = threading.Lock()

    def issue(self, email: str, purpose: str, user_id: int) -> str:
        code = generate_code()
        pending = PendingCode(code=code, expires_at=self.clock() + self.ttl_seconds, purpose=purpose, user_id=user_id)
        with self._lock:
            self._codes[(purpose, normalize_email(email))] = pending
        return code

    def discard(self, email: str, purpose: str) -> None:
        with self._lock:
            self._codes.pop((purpose, normalize_email(email)), None)

    def consume(self, email: str, supplied: str, purpose: str) -> int:
        key = (purpose, normalize_email(email))
        with self._lock:
            pending = self._codes.get(key)
            if pending is None:
                raise CodeNotFound()
            if self.clock() > pending.expires_at:
                del self._codes[key]
                raise CodeExpired()
            if not secrets.compare_digest(pending.code, str(supplied)):
                raise CodeMismatch()
            del self._codes[key]
            return pending.user_id


# Returns {status, user_id}. Expired and matching entries are deleted in the
# same round trip so two concurrent consumers cannot both succeed.
_CONSUME_SCRIPT = """
local entry = redis.call('hmget', KEYS[1], 'code', 'expires_at', 'user_id')
if not entry[1] then
    return {'missing', ''}
end
if tonumber(ARGV[2]) > tonumber(entry[2]) then
    redis.call('del', KEYS[1])
    return {'expired', ''}
end
if entry[1] ~= ARGV[1] then
    return {'mismatch', ''}
end
redis.call('del', KEYS[1])
return {'ok', entry[3]}
"""


class RedisCodeStore:
    """Shared store; safe across server instances."""

    # Keep expired entries around a little so callers see "expired" rather
    # than "not found" shortly after the deadline.
    RETENTION_SECONDS = 3600

    def __init__(self, client, ttl_seconds: int = 600, prefix: str = 'codes', clock: Callable[[], float] = time.time):
        self.client = client
        self.ttl_seconds = ttl_seconds
        self.prefix = prefix
        self.clock = clock
        self._consume = client.register_script(_CONSUME_SCRIPT)

    def _key(self, email: str, purpose: str) -> str:
        return f"{self.prefix}:{purpose}:{normalize_email(email)}"

    def issue(self, email: str, purpose: str, user_id: int) -> str:
        code = generate_code()
        key = self._key(email, purpose)
        with self.client.pipeline() as pipe:
            pipe.delete(key)
            pipe.hset(key, mapping={
                'code': code,
                'expires_at': repr(self.clock() + self.ttl_seconds),
                'user_id': str(user_id),
            })
            pipe.expire(key, self.ttl_seconds + self.RETENTION_SECONDS)
            pipe.execute()
        return code

    def discard(self, email: str, purpose: str) -> None:
        self.client.delete(self._key(email, purpose))

    def consume(self, email: str, supplied: str, purpose: str) -> int:
        status, user_id = self._consume(keys=[self._key(email, purpose)], args=[str(supplied), repr(self.clock())])
        if isinstance(status, bytes):
            status = status.decode('utf-8')
        if status == 'missing':
            raise CodeNotFound()
        if status == 'expired':
            raise CodeExpired()
        if status == 'mismatch':
            raise CodeMismatch()
        return int(user_id)
