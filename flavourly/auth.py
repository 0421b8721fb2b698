"""Authorization guard.

Call sites ask for a capability (``require(principal, Capability.REVIEW_RECIPES)``)
or for ownership (``require_owner``) instead of comparing role strings.
"""
import enum
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from . import models
from .config import get_settings
from .db import get_db
from .errors import AuthenticationError, AuthorizationError, NotFoundError
from .models import Role

logger = logging.getLogger(__name__)


class Capability(str, enum.Enum):
    AUTHOR_RECIPES = "author_recipes"
    REVIEW_RECIPES = "review_recipes"


ROLE_CAPABILITIES = {
    Role.RECIPE_DEVELOPER: frozenset({Capability.AUTHOR_RECIPES}),
    Role.NUTRITIONIST: frozenset({Capability.REVIEW_RECIPES}),
}


@dataclass(frozen=True)
class Principal:
    user_id: int
    role: Role

    def can(self, capability: Capability) -> bool:
        return capability in ROLE_CAPABILITIES.get(self.role, frozenset())


def require(principal: Principal, capability: Capability) -> None:
    if not principal.can(capability):
        logger.info(
            "user %s (%s) lacks capability %s",
            principal.user_id,
            principal.role.value,
            capability.value,
        )
        raise AuthorizationError(f"{capability.value} requires a different role")


def is_owner(principal: Principal, resource, owner_attr: str = "author_id") -> bool:
    return getattr(resource, owner_attr) == principal.user_id


def require_owner(
    principal: Principal,
    resource,
    owner_attr: str = "author_id",
    label: str = "Recipe",
):
    """Return ``resource`` if the caller owns it.

    Something owned by someone else is reported exactly like a missing one.
    """
    if resource is None or not is_owner(principal, resource, owner_attr):
        raise NotFoundError(f"{label} not found")
    return resource


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def resolve_principal(db: Session, token: Optional[str]) -> Principal:
    if not token:
        raise AuthenticationError("Unauthorized")
    session = db.get(models.UserSession, token)
    if session is None:
        raise AuthenticationError("Unauthorized")
    if session.expires_at is not None and _as_utc(session.expires_at) <= datetime.now(
        timezone.utc
    ):
        raise AuthenticationError("Session expired")
    user = session.user
    if user is None:
        raise AuthenticationError("Unauthorized")
    return Principal(user_id=user.id, role=Role(user.role))


def get_current_principal(request: Request, db: Session = Depends(get_db)) -> Principal:
    token = request.cookies.get(get_settings().session_cookie_name)
    return resolve_principal(db, token)
