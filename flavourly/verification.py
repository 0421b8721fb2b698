"""Recipe verification state machine.

    pending_verification --verify------------> verified
    pending_verification --request_revision--> needs_revision
    needs_revision -------verify------------> verified
    needs_revision -------resubmit----------> pending_verification

``verified`` has no way out. Status changes are kept apart from content
changes (health tips, nutrition, tags): ``apply_event`` never touches content
beyond the revision notes, and ``update_content`` never touches status.
"""
import enum
import logging
from typing import Optional

from sqlalchemy.orm import Session

from . import models, schemas
from .auth import Capability, Principal, is_owner, require
from .crud import lock_recipe, transaction
from .errors import (
    NotFoundError,
    RecipeLockedError,
    StateTransitionError,
    ValidationError,
)
from .models import NutritionDataSource, VerificationStatus, utcnow

logger = logging.getLogger(__name__)


class Event(str, enum.Enum):
    VERIFY = "verify"
    REQUEST_REVISION = "request_revision"
    RESUBMIT = "resubmit"


TRANSITIONS = {
    (VerificationStatus.PENDING_VERIFICATION, Event.VERIFY): VerificationStatus.VERIFIED,
    (VerificationStatus.PENDING_VERIFICATION, Event.REQUEST_REVISION): VerificationStatus.NEEDS_REVISION,
    (VerificationStatus.NEEDS_REVISION, Event.VERIFY): VerificationStatus.VERIFIED,
    (VerificationStatus.NEEDS_REVISION, Event.RESUBMIT): VerificationStatus.PENDING_VERIFICATION,
}

# Events a reviewer triggers; resubmit belongs to the author instead
REVIEWER_EVENTS = frozenset({Event.VERIFY, Event.REQUEST_REVISION})

_EVENT_FOR_TARGET = {
    VerificationStatus.VERIFIED: Event.VERIFY,
    VerificationStatus.NEEDS_REVISION: Event.REQUEST_REVISION,
    VerificationStatus.PENDING_VERIFICATION: Event.RESUBMIT,
}


def next_status(current: VerificationStatus, event: Event) -> VerificationStatus:
    try:
        return TRANSITIONS[(VerificationStatus(current), event)]
    except KeyError:
        raise StateTransitionError(
            f"Cannot {event.value} a recipe in status {VerificationStatus(current).value}"
        )


def event_for_status(status: str) -> Event:
    """Map a requested target status onto the event that reaches it."""
    try:
        return _EVENT_FOR_TARGET[VerificationStatus(status)]
    except ValueError:
        raise ValidationError(f"Invalid verification status {status!r}")


def apply_event(
    db: Session,
    recipe_id: int,
    principal: Principal,
    event: Event,
    notes: Optional[str] = None,
) -> models.Recipe:
    """Move a recipe through one transition and record its side effects."""
    if event in REVIEWER_EVENTS:
        require(principal, Capability.REVIEW_RECIPES)
    notes = (notes or "").strip()
    if event is Event.REQUEST_REVISION and not notes:
        raise ValidationError("Revision notes are required")

    with transaction(db, f"{event.value} recipe"):
        recipe = lock_recipe(db, recipe_id)
        if recipe is None:
            raise NotFoundError("Recipe not found")
        previous = VerificationStatus(recipe.status)
        target = next_status(previous, event)
        # state before ownership: a bad resubmit fails alike for every caller
        if event is Event.RESUBMIT and not is_owner(principal, recipe):
            raise NotFoundError("Recipe not found")

        now = utcnow()
        recipe.status = target
        recipe.updated_at = now
        if event is Event.VERIFY:
            recipe.verified_by_id = principal.user_id
            recipe.verified_at = now
        elif event is Event.REQUEST_REVISION:
            recipe.health_tips = notes
            # reviewer stays linked to the feedback
            recipe.verified_by_id = principal.user_id
            recipe.verified_at = None
        else:
            recipe.verified_by_id = None
            recipe.verified_at = None

    logger.info(
        "recipe %s: %s -> %s by user %s",
        recipe_id,
        previous.value,
        target.value,
        principal.user_id,
    )
    return recipe


def verify(db: Session, recipe_id: int, principal: Principal) -> models.Recipe:
    return apply_event(db, recipe_id, principal, Event.VERIFY)


def request_revision(
    db: Session, recipe_id: int, principal: Principal, notes: str
) -> models.Recipe:
    return apply_event(db, recipe_id, principal, Event.REQUEST_REVISION, notes)


def resubmit(db: Session, recipe_id: int, principal: Principal) -> models.Recipe:
    return apply_event(db, recipe_id, principal, Event.RESUBMIT)


_NUTRITION_FIELDS = (
    "calories",
    "protein_grams",
    "carbohydrates_grams",
    "fat_grams",
    "fiber_grams",
    "sugar_grams",
    "sodium_mg",
)


def update_content(
    db: Session, recipe_id: int, principal: Principal, update: schemas.ContentUpdate
) -> models.Recipe:
    """Reviewer-side edit of health tips, nutrition and tags.

    Fields left out of the request are untouched. Verified recipes are
    read-only.
    """
    require(principal, Capability.REVIEW_RECIPES)
    fields = update.model_fields_set

    with transaction(db, "update recipe content"):
        recipe = lock_recipe(db, recipe_id)
        if recipe is None:
            raise NotFoundError("Recipe not found")
        if recipe.status == VerificationStatus.VERIFIED:
            raise RecipeLockedError("Verified recipes are read-only")

        if "health_tips" in fields:
            recipe.health_tips = update.health_tips

        if "nutritional_info" in fields and update.nutritional_info is not None:
            info = update.nutritional_info
            row = recipe.nutritional_info
            if row is None:
                row = models.NutritionalInformation(recipe_id=recipe.id)
                recipe.nutritional_info = row
            for name in _NUTRITION_FIELDS:
                setattr(row, name, getattr(info, name))
            row.data_source = info.data_source or NutritionDataSource.VERIFIED_NUTRITIONIST

        if "tags" in fields:
            tag_ids = list(dict.fromkeys(update.tag_ids()))
            if tag_ids:
                found = {
                    tag_id
                    for (tag_id,) in db.query(models.Tag.id)
                    .filter(models.Tag.id.in_(tag_ids))
                    .all()
                }
                missing = [t for t in tag_ids if t not in found]
                if missing:
                    raise ValidationError(f"Unknown tag id(s): {missing}")
            db.query(models.RecipeTag).filter(
                models.RecipeTag.recipe_id == recipe.id
            ).delete()
            db.add_all(models.RecipeTag(recipe_id=recipe.id, tag_id=t) for t in tag_ids)

        recipe.updated_at = utcnow()

    logger.info("recipe %s content updated by user %s", recipe_id, principal.user_id)
    return recipe
