"""
Bearer token and session cookie authentication.

Raw credentials are hashed (SHA-256) before they reach the store and are never
logged. A request without a valid credential is a normal outcome here: the
authenticate_* helpers return UNAUTHENTICATED instead of raising, and the
route decides which status to send.
"""
import enum
import hashlib
import logging
import secrets
from dataclasses import dataclass
from typing import Optional, Tuple, Union

from fastapi import Request

from app.config import settings
from app.store import CredentialStore, utcnow

logger = logging.getLogger(__name__)

KEY_PREFIX = "lc_"
KEY_SECRET_BYTES = 16
BEARER_SCHEME = "bearer"


@dataclass(frozen=True)
class Identity:
    agent_id: str
    key_id: Optional[str] = None


class Unauthenticated(enum.Enum):
    UNAUTHENTICATED = "unauthenticated"


UNAUTHENTICATED = Unauthenticated.UNAUTHENTICATED

AuthResult = Union[Identity, Unauthenticated]


def hash_api_key(raw: str) -> str:
    """Return the SHA-256 hex digest stored in place of an API key."""
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def hash_session_token(raw: str) -> str:
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def generate_api_key() -> Tuple[str, str]:
    """Mint a new key. Returns (raw, hash); only the hash may be persisted."""
    raw = KEY_PREFIX + secrets.token_hex(KEY_SECRET_BYTES)
    return raw, hash_api_key(raw)


def parse_bearer(header: Optional[str]) -> Optional[str]:
    """
    Extract the raw key from an ``Authorization`` header.

    Accepts exactly ``<scheme> <token>`` where the scheme is ``Bearer``
    (case-insensitive) and the token is ``lc_`` followed by at least one
    character. Anything else yields None.
    """
    if not header:
        return None
    parts = header.split()
    if len(parts) != 2:
        return None
    scheme, token = parts
    if scheme.lower() != BEARER_SCHEME:
        return None
    if not token.startswith(KEY_PREFIX) or len(token) == len(KEY_PREFIX):
        return None
    return token


async def authenticate_request(request: Request, store: CredentialStore) -> AuthResult:
    """Authenticate via ``Authorization: Bearer lc_...``."""
    raw = parse_bearer(request.headers.get("Authorization"))
    if raw is None:
        return UNAUTHENTICATED

    key_hash = hash_api_key(raw)
    record = await store.get_api_key(key_hash)
    if record is None:
        logger.debug("Unknown API key presented")
        return UNAUTHENTICATED

    # Best-effort: a failed touch must not turn a valid key into a 401.
    try:
        await store.touch_api_key(key_hash, utcnow())
    except Exception as exc:
        logger.warning("Could not update last_used_at for key %s: %s", record.id, exc)

    return Identity(agent_id=record.agent_id, key_id=record.id)


async def authenticate_session(request: Request, store: CredentialStore) -> AuthResult:
    """Authenticate via the session cookie set by the web UI."""
    token = request.cookies.get(settings.session_cookie_name)
    if not token:
        return UNAUTHENTICATED

    record = await store.get_session(hash_session_token(token), utcnow())
    if record is None:
        logger.debug("Unknown or expired session presented")
        return UNAUTHENTICATED
    return Identity(agent_id=record.agent_id)


async def authenticate_any(request: Request, store: CredentialStore) -> AuthResult:
    """API key first, then session cookie."""
    result = await authenticate_request(request, store)
    if isinstance(result, Identity):
        return result
    return await authenticate_session(request, store)


def get_store(request: Request) -> CredentialStore:
    """FastAPI dependency: the store the lifespan attached to the app."""
    return request.app.state.store
