from __future__ import annotations

from typing import Iterable, Optional

from fastapi import Depends, HTTPException, Request, status
import urllib3
from google.auth.transport.urllib3 import Request as GoogleAuthRequest
from google.oauth2 import id_token as google_id_token

from jobportal.core.config import settings
from jobportal.core.roles import Role, has_required_role
from jobportal.schemas.identity import Identity


async def get_current_identity(request: Request) -> Identity:
    # A Bearer token always wins, even in dev mode.
    bearer = _read_bearer_token(request)
    if bearer:
        token_info = _verify_google_id_token(bearer)
        email = str(token_info.get("email", "")).lower()
        if not email:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token (missing email)")
        return Identity(
            user_id=str(token_info.get("sub") or email),
            email=email,
            roles=_roles_for_email(email),
            full_name=token_info.get("name") or _derive_name_from_email(email),
        )

    if settings.auth_mode == "google":
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing bearer token")

    # Dev-mode identity:
    # - X-User-Id: opaque provider id
    # - X-User-Email: applicant@example.com
    # - X-User-Roles: admin,reviewer
    email = (request.headers.get("x-user-email") or "").strip().lower() or None
    user_id = (request.headers.get("x-user-id") or "").strip() or None
    roles: list[Role] = []
    for raw in (request.headers.get("x-user-roles") or "").split(","):
        raw = raw.strip().lower()
        if not raw:
            continue
        try:
            roles.append(Role(raw))
        except ValueError:
            continue

    if not roles:
        roles = _roles_for_email(email)

    return Identity(
        user_id=user_id,
        email=email,
        roles=roles,
        full_name=_derive_name_from_email(email) if email else None,
    )


def _read_bearer_token(request: Request) -> Optional[str]:
    auth = request.headers.get("authorization") or ""
    prefix = "bearer "
    if auth.lower().startswith(prefix):
        return auth[len(prefix) :].strip()
    return None


def _verify_google_id_token(token: str) -> dict:
    if not settings.google_client_id:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Missing Google OAuth client_id")
    try:
        req = GoogleAuthRequest(urllib3.PoolManager())
        return google_id_token.verify_oauth2_token(
            token,
            req,
            audience=settings.google_client_id,
            clock_skew_in_seconds=int(settings.google_clock_skew_seconds),
        )
    except Exception as exc:
        detail = "Invalid Google token"
        if settings.environment != "production":
            detail = f"Invalid Google token: {exc}"
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


def _admin_emails() -> set[str]:
    return {item.strip().lower() for item in settings.admin_emails.split(",") if item.strip()}


def _roles_for_email(email: str | None) -> list[Role]:
    if email and email.lower() in _admin_emails():
        return [Role.ADMIN]
    return [Role.APPLICANT]


def _derive_name_from_email(email: str) -> str:
    local = email.split("@", 1)[0].strip()
    if not local:
        return email
    parts = [p for p in local.replace("_", ".").split(".") if p]
    if not parts:
        return local
    return " ".join(p[:1].upper() + p[1:] for p in parts)


def require_roles(required: Iterable[Role]):
    async def dependency(identity: Identity = Depends(get_current_identity)) -> Identity:
        if not has_required_role(identity.roles, required):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )
        return identity

    return dependency
