from __future__ import annotations

from typing import Callable, Iterable

from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError
from sqlalchemy.orm import Session

from compound_access.core.actor import ActorContext
from compound_access.core.config import get_settings
from compound_access.core.errors import AuthenticationFailed, ScopeViolation
from compound_access.core.rate_limit import SlidingWindowRateLimiter
from compound_access.core.security import decode_access_token
from compound_access.db.session import SessionLocal
from compound_access.models.user import User
from compound_access.services.notification_dispatcher import NotificationDispatcher

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_current_actor(db: Session = Depends(get_db), token: str | None = Depends(oauth2_scheme)) -> ActorContext:
    if not token:
        raise AuthenticationFailed("Not authenticated")
    try:
        payload = decode_access_token(token)
        user_id = payload.get("sub")
    except JWTError:
        raise AuthenticationFailed()

    if not user_id:
        raise AuthenticationFailed()

    user = db.get(User, user_id)
    if not user or not user.is_active:
        raise AuthenticationFailed("Inactive or missing user")
    return ActorContext(user_id=user.id, compound_id=user.compound_id, role=user.role)


def require_roles(allowed: Iterable[str]) -> Callable:
    """Dependency factory to enforce actor roles."""

    allowed_set = set(allowed)

    def dep(actor: ActorContext = Depends(get_current_actor)) -> ActorContext:
        if actor.role not in allowed_set:
            raise ScopeViolation("Access denied. Insufficient permissions.")
        return actor

    return dep


def get_notifier(request: Request) -> NotificationDispatcher | None:
    return getattr(request.app.state, "notifier", None)


def rate_limited(state_attr: str, allowed: Iterable[str]) -> Callable:
    """Role check plus the per-caller limiter stored on ``app.state.<state_attr>``."""

    role_dep = require_roles(allowed)

    def dep(request: Request, actor: ActorContext = Depends(role_dep)) -> ActorContext:
        limiter: SlidingWindowRateLimiter | None = getattr(request.app.state, state_attr, None)
        if limiter is not None and get_settings().rate_limit_enabled:
            limiter.check(actor.user_id)
        return actor

    return dep
