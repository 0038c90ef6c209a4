"""
championship/security/capabilities.py
Caller identity and capability checks.

Authentication happens outside the engine. Requests arrive with a bearer
token issued by the club's auth service; the engine only verifies the
signature and turns the claims into a Caller:

    {"sub": "42", "capabilities": ["admin", "counselor:7"]}

Every service operation receives the Caller explicitly and checks the
capability it needs; nothing in the engine looks users up in a table.
"""
import logging
from dataclasses import dataclass, field
from typing import FrozenSet, Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from championship.config.settings import settings
from championship.errors import ErrorCode, ForbiddenError, UnauthorizedError

logger = logging.getLogger(__name__)

ADMIN = "admin"
COUNSELOR_PREFIX = "counselor:"

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Caller:
    """An already-authenticated caller and the capabilities it holds."""
    user_id: int
    capabilities: FrozenSet[str] = field(default_factory=frozenset)

    @property
    def is_admin(self) -> bool:
        return ADMIN in self.capabilities

    def counsels(self, unit_id: int) -> bool:
        return f"{COUNSELOR_PREFIX}{unit_id}" in self.capabilities

    def can_view_unit(self, unit_id: int) -> bool:
        return self.is_admin or self.counsels(unit_id)

    def require_admin(self) -> None:
        if not self.is_admin:
            logger.warning(f"Caller {self.user_id} denied: admin capability required")
            raise ForbiddenError(ADMIN)

    def require_unit_access(self, unit_id: int) -> None:
        if not self.can_view_unit(unit_id):
            logger.warning(f"Caller {self.user_id} denied: no access to unit {unit_id}")
            raise ForbiddenError(f"{COUNSELOR_PREFIX}{unit_id}")


def admin_caller(user_id: int = 0) -> Caller:
    return Caller(user_id=user_id, capabilities=frozenset({ADMIN}))


def counselor_caller(user_id: int, unit_id: int) -> Caller:
    return Caller(user_id=user_id, capabilities=frozenset({f"{COUNSELOR_PREFIX}{unit_id}"}))


def create_caller_token(user_id: int, capabilities) -> str:
    """Sign a caller token. Used by operators' tooling and the test suite."""
    return jwt.encode(
        {"sub": str(user_id), "capabilities": sorted(capabilities)},
        settings.JWT_SECRET_KEY,
        algorithm=settings.JWT_ALGORITHM,
    )


def caller_from_token(token: str) -> Caller:
    """Verify a bearer token and build the Caller it describes."""
    try:
        payload = jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except JWTError:
        raise UnauthorizedError("Invalid or expired token", code=ErrorCode.AUTH_INVALID)

    subject = payload.get("sub")
    capabilities = payload.get("capabilities") or []
    if subject is None or not isinstance(capabilities, list):
        raise UnauthorizedError("Malformed caller token", code=ErrorCode.AUTH_INVALID)

    try:
        user_id = int(subject)
    except (TypeError, ValueError):
        raise UnauthorizedError("Malformed caller token", code=ErrorCode.AUTH_INVALID)

    return Caller(user_id=user_id, capabilities=frozenset(str(c) for c in capabilities))


async def get_caller(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Caller:
    """FastAPI dependency: the verified Caller, or 401."""
    if credentials is None or not credentials.credentials:
        raise UnauthorizedError()
    return caller_from_token(credentials.credentials)
