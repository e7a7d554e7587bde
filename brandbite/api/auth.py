import logging

import sqlalchemy as sa
from fastapi import Depends, HTTPException, Request, status
from starlette.middleware.base import BaseHTTPMiddleware

from brandbite.domain.companies.db_models import CompanyMember
from brandbite.domain.identity import Identity
from brandbite.domain.roles import (
    UserRole,
    is_customer_role,
    normalize_company_role,
)
from brandbite.domain.users.db_models import UserAccount
from brandbite.infra.auth import decode_access_token
from brandbite.infra.logging import update_log_context

logger = logging.getLogger(__name__)


def _get_cached_identity(request: Request) -> "Identity | None":
    return getattr(request.state, "identity", None)


def _get_bearer_token(request: Request) -> str | None:
    authorization: str | None = request.headers.get("Authorization")
    if authorization and authorization.lower().startswith("bearer "):
        return authorization.split(" ", 1)[1].strip() or None
    return None


async def _load_identity(request: Request, token: str) -> Identity | None:
    try:
        payload = decode_access_token(token, request.app.state.app_settings.auth_secret_key)
    except Exception:  # noqa: BLE001
        logger.info("auth_token_invalid")
        return None

    try:
        user_id = str(payload["sub"])
        role = UserRole(payload.get("role"))
    except (KeyError, ValueError):
        logger.info("auth_token_payload_invalid")
        return None

    session_factory = getattr(request.app.state, "db_session_factory", None)
    if not session_factory:
        return None

    async with session_factory() as session:
        user = await session.get(UserAccount, user_id)
        if user is None or user.role != role.value:
            logger.info("auth_token_user_mismatch", extra={"extra": {"user_id": user_id}})
            return None
        company_id = None
        company_role = None
        if user.active_company_id:
            member_role = await session.scalar(
                sa.select(CompanyMember.role_in_company).where(
                    CompanyMember.company_id == user.active_company_id,
                    CompanyMember.user_id == user.id,
                )
            )
            if member_role is not None:
                company_id = user.active_company_id
                company_role = normalize_company_role(member_role)
        return Identity(
            user_id=user.id,
            role=role,
            email=user.email,
            name=user.name,
            company_id=company_id,
            company_role=company_role,
        )


class TenantSessionMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        token = _get_bearer_token(request)
        identity = await _load_identity(request, token) if token else None
        if identity:
            request.state.identity = identity
            request.state.current_user_id = identity.user_id
            update_log_context(
                user_id=identity.user_id,
                role=identity.role.value,
                company_id=identity.company_id,
            )
        return await call_next(request)


def require_user(identity: Identity | None = Depends(_get_cached_identity)) -> Identity:
    if not identity:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    return identity


def require_role(*roles: UserRole):
    async def _require(identity: Identity = Depends(require_user)) -> Identity:
        if roles and identity.role not in roles:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")
        return identity

    return _require


require_site_admin = require_role(UserRole.SITE_OWNER, UserRole.SITE_ADMIN)
require_creative = require_role(UserRole.DESIGNER)


async def require_customer_company(identity: Identity = Depends(require_user)) -> Identity:
    if not is_customer_role(identity.role):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Only customers can access this resource")
    if not identity.company_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="User has no active company")
    return identity
