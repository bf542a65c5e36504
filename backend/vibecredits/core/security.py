from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import jwt
from fastapi import Depends, HTTPException, Request
from sqlalchemy.orm import Session

from vibecredits.core.database import get_db
from vibecredits.core.settings import settings
from vibecredits.models.user import User
from vibecredits.services.credits import get_or_create_user


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CurrentUser:
    id: str
    email: str
    role: str

    @property
    def is_admin(self) -> bool:
        return (self.role or "").lower() == "admin"

    def as_actor(self) -> dict[str, Any]:
        return {"id": self.id, "email": self.email}


def _normalize_email(value: str) -> str:
    return str(value or "").strip().lower()


def _is_admin_email(email: str) -> bool:
    normalized = _normalize_email(email)
    if not normalized:
        return False
    return normalized in (settings.admin_emails or set())


def _require_jwt_secret() -> str:
    if not settings.jwt_secret:
        raise HTTPException(status_code=500, detail="JWT_SECRET is not configured")
    return settings.jwt_secret


def _decode_jwt(token: str) -> dict[str, Any]:
    secret = _require_jwt_secret()
    options: dict[str, Any] = {"require": ["exp", "sub"]}
    if not settings.jwt_audience:
        options["verify_aud"] = False
    try:
        payload = jwt.decode(
            token,
            secret,
            algorithms=[settings.jwt_algorithm],
            audience=settings.jwt_audience,
            issuer=settings.jwt_issuer,
            options=options,
        )
        return dict(payload)
    except jwt.PyJWTError as exc:
        logger.info("auth.jwt.invalid error=%s", type(exc).__name__)
        raise HTTPException(status_code=401, detail="Invalid bearer token")


def _claim_is_admin(claims: dict[str, Any]) -> bool:
    app_meta = claims.get("app_metadata") or {}
    if not isinstance(app_meta, dict):
        app_meta = {}
    claimed_role = str(app_meta.get("role") or "").strip().lower()
    top_level_role = str(claims.get("role") or "").strip().lower()
    return claimed_role == "admin" or top_level_role == "admin"


def _decide_role(
    *,
    email_is_admin: bool,
    claim_is_admin: bool,
    db_role: str | None,
) -> tuple[str, str]:
    dbr = str(db_role or "").strip().lower()
    if dbr == "admin":
        return ("admin", "db_user")
    if email_is_admin:
        return ("admin", "admin_emails")
    if claim_is_admin:
        return ("admin", "jwt_claim")
    if dbr:
        return (dbr, "db_user")
    return ("user", "default")


def _get_bearer_token(request: Request) -> str:
    auth = request.headers.get("authorization") or ""
    if not auth.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="Missing bearer token")
    token = auth.split(" ", 1)[1].strip()
    if not token:
        raise HTTPException(status_code=401, detail="Missing bearer token")
    return token


def get_current_user(request: Request, db: Session = Depends(get_db)) -> CurrentUser:
    token = _get_bearer_token(request)

    claims = _decode_jwt(token)
    user_id = str(claims.get("sub") or "").strip()
    email = str(claims.get("email") or "").strip()
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid token")

    email_is_admin = _is_admin_email(email)
    claim_is_admin = _claim_is_admin(claims)

    user = db.query(User).filter(User.id == user_id).first()
    if user is None:
        initial_role, reason = _decide_role(
            email_is_admin=email_is_admin,
            claim_is_admin=claim_is_admin,
            db_role=None,
        )
        user = get_or_create_user(db, user_id, email=email, role=initial_role)
        logger.info("auth.user.provisioned user_id=%s role=%s reason=%s", user_id, initial_role, reason)
    else:
        changed = False
        next_role, _reason = _decide_role(
            email_is_admin=email_is_admin,
            claim_is_admin=claim_is_admin,
            db_role=getattr(user, "role", None),
        )
        if next_role and (user.role or "").strip().lower() != next_role:
            user.role = next_role
            changed = True
        if email and (user.email or "") != email:
            user.email = email
            changed = True
        if changed:
            try:
                db.commit()
            except Exception:
                db.rollback()
                logger.warning("auth.user.sync_failed user_id=%s", user_id)

    return CurrentUser(id=user.id, email=user.email or "", role=user.role or "user")


def require_admin(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    if not user.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    return user
