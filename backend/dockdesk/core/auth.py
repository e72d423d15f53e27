"""Yard and actor resolution for API routes.

Kiosk and CSR clients identify the yard with ``X-Yard-ID`` (or a yard-scoped
bearer token when auth is enabled) and the person acting with ``X-Actor`` /
``X-Actor-Role``. Check-in and read routes accept any role; dock writes are
guarded with :func:`require_roles`.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from dockdesk.core.config import get_settings
from dockdesk.core.logging import logger


bearer_scheme = HTTPBearer(auto_error=False)

SUPPORTED_ROLES = frozenset({"admin", "csr", "none"})
DOCK_MANAGER_ROLES = ("csr", "admin")


@dataclass(frozen=True)
class YardContext:
    yard_id: str
    authenticated: bool
    actor: str
    role: str


def _resolve_role(raw: Optional[str]) -> str:
    # Header-less clients predate roles and are treated as admins.
    role = (raw or "").strip().lower() or "admin"
    if role in SUPPORTED_ROLES:
        return role
    raise HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail=f"Unknown actor role '{raw}'; use one of {sorted(SUPPORTED_ROLES)}",
    )


def token_yard_map(raw: str) -> Dict[str, str]:
    """Parse the ``YARD_TOKENS`` setting (``token:yard,token:yard``)."""
    yards: Dict[str, str] = {}
    for entry in (part.strip() for part in raw.split(",")):
        if not entry:
            continue
        token, sep, yard = entry.partition(":")
        if not sep or not token.strip() or not yard.strip():
            logger.warning("Skipping malformed yard token entry", entry=entry)
            continue
        yards[token.strip()] = yard.strip()
    return yards


def _token_yard(credentials: Optional[HTTPAuthorizationCredentials], claimed_yard: Optional[str]) -> str:
    if credentials is None or not credentials.credentials.strip():
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Bearer token required")

    yard_id = token_yard_map(get_settings().yard_tokens).get(credentials.credentials.strip())
    if yard_id is None:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Token is not registered to any yard")
    if claimed_yard and claimed_yard != yard_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Token is not valid for this yard")
    return yard_id


def get_yard_context(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    x_yard_id: str | None = Header(default=None, alias="X-Yard-ID"),
    x_actor_role: str | None = Header(default=None, alias="X-Actor-Role"),
    x_actor: str | None = Header(default=None, alias="X-Actor"),
) -> YardContext:
    """Yard, actor and role for the current request."""
    settings = get_settings()
    claimed_yard = (x_yard_id or "").strip()
    actor = (x_actor or "").strip()
    role = _resolve_role(x_actor_role)

    if settings.auth_enabled:
        return YardContext(
            yard_id=_token_yard(credentials, claimed_yard),
            authenticated=True,
            actor=actor or "token",
            role=role,
        )
    return YardContext(
        yard_id=claimed_yard or settings.default_yard_id or "main",
        authenticated=False,
        actor=actor or "anonymous",
        role=role,
    )


def require_roles(*allowed_roles: str):
    """Route dependency that admits only the given actor roles."""
    allowed = frozenset(role.strip().lower() for role in allowed_roles if role.strip())
    if not allowed:
        raise ValueError("require_roles needs at least one role")

    def _guard(context: YardContext = Depends(get_yard_context)) -> YardContext:
        if context.role not in allowed:
            logger.warning("Role rejected", yard_id=context.yard_id, actor=context.actor, role=context.role)
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Role '{context.role}' cannot perform dock operations",
            )
        return context

    return _guard
