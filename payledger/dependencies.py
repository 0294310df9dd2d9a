"""
FastAPI dependencies for the ledger engine, authentication and roles.

Tokens are issued by the marketplace's user system and signed with the
shared SECRET_KEY. This service only verifies them:

  get_current_principal (JWT -> Principal)
      ├── get_current_user_id  [member]           — the caller's own ledger
      ├── require_service      [service, admin]   — gateway/booking events
      └── require_admin        [admin, service]   — cross-user reads, audit

Role claim values:
  - member: an artist, venue or crew account. Sees only its own balance,
    history and payment methods.
  - service: another backend (booking system, gateway relay) posting
    money events.
  - admin: operators. Read any ledger, run reconciliation, and post
    corrective events.

Members are blocked from the /ledger and /admin routers, and service or
admin tokens from the member endpoints, which only make sense for a
token that names a real user.
"""

import uuid
from dataclasses import dataclass

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError

from payledger.engine import LedgerEngine
from payledger.security import decode_access_token

ROLE_MEMBER = "member"
ROLE_SERVICE = "service"
ROLE_ADMIN = "admin"
ROLES = frozenset({ROLE_MEMBER, ROLE_SERVICE, ROLE_ADMIN})


# Reads "Authorization: Bearer <token>". The token URL belongs to the
# user system and is only shown in the Swagger "Authorize" dialog.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/token")


@dataclass
class Principal:
    user_id: uuid.UUID
    role: str


def get_engine(request: Request) -> LedgerEngine:
    """The LedgerEngine built at startup (see main.lifespan)."""
    return request.app.state.engine


async def get_current_principal(
    token: str = Depends(oauth2_scheme),
) -> Principal:
    """
    Verify the JWT and return who is calling.

    Raises:
        HTTPException 401: If the token is invalid, expired, has no
            subject, or carries an unknown role.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    try:
        payload = decode_access_token(token)
        user_id_str: str | None = payload.get("sub")
        if user_id_str is None:
            raise credentials_exception
        user_id = uuid.UUID(user_id_str)
    except (JWTError, ValueError):
        raise credentials_exception

    role = payload.get("role", ROLE_MEMBER)
    if role not in ROLES:
        raise credentials_exception

    return Principal(user_id=user_id, role=role)


async def get_current_user_id(
    principal: Principal = Depends(get_current_principal),
) -> uuid.UUID:
    """
    The id of the member whose ledger this request acts on.

    Raises:
        HTTPException 403: For service and admin tokens (use /admin/*).
    """
    if principal.role != ROLE_MEMBER:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Member endpoints require a member token. "
                   "Use /admin/* endpoints to read other ledgers.",
        )
    return principal.user_id


def require_role(*roles: str):
    """Build a dependency that admits only the given roles."""
    allowed = frozenset(roles)

    async def dependency(
        principal: Principal = Depends(get_current_principal),
    ) -> Principal:
        if principal.role not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Requires one of roles: {', '.join(sorted(allowed))}",
            )
        return principal

    return dependency


require_service = require_role(ROLE_SERVICE, ROLE_ADMIN)
require_admin = require_role(ROLE_ADMIN, ROLE_SERVICE)
