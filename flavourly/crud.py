import logging
import secrets
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from typing import List, Optional

from sqlalchemy import or_, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import models, schemas
from .auth import Capability, Principal, require, require_owner
from .config import get_settings
from .errors import (
    NotFoundError,
    PersistenceError,
    ReferenceResolutionError,
    ValidationError,
)
from .media import MediaItem, MediaStore, cleanup_media
from .models import MediaType, VerificationStatus, utcnow
from .normalize import normalize_ingredient, normalize_unit, resolve_references

logger = logging.getLogger(__name__)


# Content validation


@dataclass
class IngredientLine:
    name: str
    quantity: Decimal
    unit: str
    notes: Optional[str] = None


@dataclass
class MediaDraft:
    media_type: MediaType
    url: str
    caption: Optional[str] = None


@dataclass
class RecipeDraft:
    title: str
    description: Optional[str]
    cooking_time_minutes: Optional[int]
    servings: Optional[int]
    ingredients: List[IngredientLine] = field(default_factory=list)
    steps: List[str] = field(default_factory=list)
    # None leaves stored media untouched
    media: Optional[List[MediaDraft]] = None


def _clean(s: Optional[str]) -> str:
    return (s or "").strip()


# RecipeIngredient.quantity is Numeric(10, 3)
_QUANTITY_STEP = Decimal("0.001")
_QUANTITY_LIMIT = Decimal(10) ** 7


def _parse_quantity(raw: str, name: str) -> Decimal:
    try:
        quantity = Decimal(raw)
    except InvalidOperation:
        raise ValidationError(f"Invalid quantity {raw!r} for {name}")
    if not quantity.is_finite() or quantity <= 0:
        raise ValidationError(f"Quantity for {name} must be a positive number")
    if quantity >= _QUANTITY_LIMIT:
        raise ValidationError(f"Quantity for {name} must be below {_QUANTITY_LIMIT:,}")
    if quantity != quantity.quantize(_QUANTITY_STEP):
        raise ValidationError(f"Quantity for {name} allows at most 3 decimal places")
    return quantity


def validate_content(content: schemas.RecipeContent) -> RecipeDraft:
    """Check submitted recipe content and return it trimmed and typed.

    Raises ValidationError before anything touches the database.
    """
    title = _clean(content.title)
    if not title:
        raise ValidationError("Recipe title is required")

    for label, value in (
        ("cookingTimeMinutes", content.cooking_time_minutes),
        ("servings", content.servings),
    ):
        if value is not None and value < 1:
            raise ValidationError(f"{label} must be a positive integer")

    lines = []
    seen = set()
    for item in content.ingredients:
        name, quantity = _clean(item.name), _clean(item.quantity)
        if not name or not quantity:
            continue
        key = normalize_ingredient(name)
        if key in seen:
            raise ValidationError(f"Ingredient {name!r} is listed more than once")
        seen.add(key)
        lines.append(
            IngredientLine(
                name=name,
                quantity=_parse_quantity(quantity, name),
                unit=normalize_unit(item.unit),
                notes=_clean(item.notes) or None,
            )
        )
    if not lines:
        raise ValidationError("At least one ingredient with a name and quantity is required")

    steps = [_clean(s) for s in content.steps if _clean(s)]
    if not steps:
        raise ValidationError("At least one preparation step is required")

    media = None
    if content.replaces_media:
        media = []
        for item in content.media:
            url = _clean(item.url)
            if not url:
                continue
            if item.type is None:
                raise ValidationError(f"Media type is required for {url}")
            media.append(MediaDraft(item.type, url, _clean(item.caption) or None))

    return RecipeDraft(
        title=title,
        description=_clean(content.description) or None,
        cooking_time_minutes=content.cooking_time_minutes,
        servings=content.servings,
        ingredients=lines,
        steps=steps,
        media=media,
    )


# Transaction plumbing


class _Deadline:
    def __init__(self, seconds: float):
        self.seconds = seconds
        self.expires = time.monotonic() + seconds

    def check(self, stage: str):
        if time.monotonic() >= self.expires:
            raise PersistenceError(
                f"Transaction exceeded {self.seconds:g}s during {stage}"
            )


def _start_deadline(db: Session, timeout_seconds: Optional[float]) -> _Deadline:
    if timeout_seconds is None:
        timeout_seconds = get_settings().transaction_timeout_seconds
    if db.get_bind().dialect.name == "postgresql":
        db.execute(text(f"SET LOCAL statement_timeout = {int(timeout_seconds * 1000)}"))
    return _Deadline(timeout_seconds)


@contextmanager
def transaction(db: Session, action: str):
    """Commit on success; roll back everything on any failure."""
    try:
        yield
        db.commit()
    except (ReferenceResolutionError, SQLAlchemyError) as exc:
        db.rollback()
        logger.warning("%s rolled back: %s", action, exc)
        raise PersistenceError(f"Failed to {action}") from exc
    except Exception:
        db.rollback()
        raise


def lock_recipe(db: Session, recipe_id: int) -> Optional[models.Recipe]:
    return (
        db.query(models.Recipe)
        .filter(models.Recipe.id == recipe_id)
        .with_for_update()
        .first()
    )


def _write_children(
    db: Session,
    recipe_id: int,
    draft: RecipeDraft,
    deadline: _Deadline,
    replace: bool,
):
    if replace:
        db.query(models.RecipeIngredient).filter(
            models.RecipeIngredient.recipe_id == recipe_id
        ).delete()
        db.query(models.PreparationStep).filter(
            models.PreparationStep.recipe_id == recipe_id
        ).delete()
        deadline.check("clearing ingredients and steps")

    refs = resolve_references(db, [(line.name, line.unit) for line in draft.ingredients])
    deadline.check("resolving ingredients and units")

    rows = []
    for line in draft.ingredients:
        ingredient_id = refs.ingredient_id(line.name)
        unit_id = refs.unit_id(line.unit)
        if ingredient_id is None or unit_id is None:
            raise ReferenceResolutionError(
                f"Missing ingredient or unit mapping for {line.name!r} ({line.unit!r})"
            )
        rows.append(
            models.RecipeIngredient(
                recipe_id=recipe_id,
                ingredient_id=ingredient_id,
                unit_id=unit_id,
                quantity=line.quantity,
                notes=line.notes,
            )
        )
    db.add_all(rows)
    db.add_all(
        models.PreparationStep(recipe_id=recipe_id, step_number=n, instruction=s)
        for n, s in enumerate(draft.steps, start=1)
    )
    db.flush()
    deadline.check("writing ingredients and steps")

    if draft.media is not None:
        if replace:
            db.query(models.Media).filter(models.Media.recipe_id == recipe_id).delete()
        db.add_all(
            models.Media(
                recipe_id=recipe_id,
                media_type=m.media_type,
                url=m.url,
                caption=m.caption,
            )
            for m in draft.media
        )
        db.flush()
        deadline.check("writing media")


# Recipe writer


def create_recipe(
    db: Session,
    principal: Principal,
    content: schemas.RecipeContent,
    timeout_seconds: Optional[float] = None,
) -> models.Recipe:
    require(principal, Capability.AUTHOR_RECIPES)
    draft = validate_content(content)
    with transaction(db, "create recipe"):
        deadline = _start_deadline(db, timeout_seconds)
        recipe = models.Recipe(
            title=draft.title,
            description=draft.description,
            cooking_time_minutes=draft.cooking_time_minutes,
            servings=draft.servings,
            status=VerificationStatus.PENDING_VERIFICATION,
            author_id=principal.user_id,
        )
        db.add(recipe)
        db.flush()
        _write_children(db, recipe.id, draft, deadline, replace=False)
        deadline.check("commit")
    logger.info("recipe %s created by user %s", recipe.id, principal.user_id)
    return recipe


def update_recipe(
    db: Session,
    recipe_id: int,
    principal: Principal,
    content: schemas.RecipeContent,
    timeout_seconds: Optional[float] = None,
) -> int:
    """Replace a recipe's fields, ingredient lines, steps and (optionally) media.

    Ownership and content are checked before the write transaction opens.
    Children are deleted and recreated rather than diffed; the whole write is
    one transaction, so a failure anywhere leaves the recipe as it was.
    """
    require_owner(principal, get_recipe(db, recipe_id))
    draft = validate_content(content)
    with transaction(db, "update recipe"):
        deadline = _start_deadline(db, timeout_seconds)
        # the recipe may have been deleted since the first read
        recipe = require_owner(principal, lock_recipe(db, recipe_id))
        recipe.title = draft.title
        recipe.description = draft.description
        recipe.cooking_time_minutes = draft.cooking_time_minutes
        recipe.servings = draft.servings
        recipe.updated_at = utcnow()
        db.flush()
        _write_children(db, recipe_id, draft, deadline, replace=True)
        deadline.check("commit")
    logger.info("recipe %s updated by user %s", recipe_id, principal.user_id)
    return recipe_id


@dataclass
class DeleteOutcome:
    recipe_id: int
    cleanup_failures: list = field(default_factory=list)


def delete_recipe(
    db: Session, recipe_id: int, principal: Principal, media_store: MediaStore
) -> DeleteOutcome:
    with transaction(db, "delete recipe"):
        recipe = require_owner(principal, lock_recipe(db, recipe_id))
        items = [MediaItem(m.url, MediaType(m.media_type)) for m in recipe.media]
        db.delete(recipe)
    logger.info("recipe %s deleted by user %s", recipe_id, principal.user_id)
    failures = cleanup_media(media_store, items)
    if failures:
        logger.warning(
            "recipe %s deleted; %d media file(s) left on the CDN", recipe_id, len(failures)
        )
    return DeleteOutcome(recipe_id, failures)


# Reads


def get_recipe(db: Session, recipe_id: int) -> Optional[models.Recipe]:
    return db.query(models.Recipe).filter(models.Recipe.id == recipe_id).first()


def get_recipe_or_404(db: Session, recipe_id: int) -> models.Recipe:
    recipe = get_recipe(db, recipe_id)
    if recipe is None:
        raise NotFoundError("Recipe not found")
    return recipe


def _user_summary(user: Optional[models.User]) -> Optional[schemas.UserSummary]:
    if user is None:
        return None
    return schemas.UserSummary.model_validate(user)


def recipe_summary(recipe: models.Recipe) -> schemas.RecipeSummary:
    return schemas.RecipeSummary(
        id=recipe.id,
        title=recipe.title,
        description=recipe.description,
        cooking_time_minutes=recipe.cooking_time_minutes,
        servings=recipe.servings,
        status=recipe.status,
        author=_user_summary(recipe.author),
        verified_at=recipe.verified_at,
        created_at=recipe.created_at,
        media=[schemas.MediaOut.model_validate(m) for m in recipe.media],
    )


def recipe_detail(recipe: models.Recipe) -> schemas.RecipeDetail:
    ratings = [r.rating for r in recipe.reviews]
    summary = recipe_summary(recipe)
    return schemas.RecipeDetail(
        **dict(summary),
        health_tips=recipe.health_tips,
        updated_at=recipe.updated_at,
        author_id=recipe.author_id,
        verified_by_id=recipe.verified_by_id,
        verified_by=_user_summary(recipe.verified_by),
        nutritional_info=(
            schemas.NutritionalInfoOut.model_validate(recipe.nutritional_info)
            if recipe.nutritional_info is not None
            else None
        ),
        steps=[schemas.StepOut.model_validate(s) for s in recipe.steps],
        ingredients=[
            schemas.RecipeIngredientOut.model_validate(i) for i in recipe.ingredients
        ],
        tags=[
            schemas.TagOut(
                id=rt.tag.id,
                tag_name=rt.tag.tag_name,
                tag_type=schemas.TagTypeRef.model_validate(rt.tag.tag_type),
            )
            for rt in recipe.tags
        ],
        reviews=[schemas.ReviewOut.model_validate(r) for r in recipe.reviews],
        average_rating=sum(ratings) / len(ratings) if ratings else None,
        review_count=len(ratings),
    )


def get_public_recipes(db: Session, skip: int = 0, limit: int = 12):
    """Verified recipes only; everything else stays off public listings."""
    query = db.query(models.Recipe).filter(
        models.Recipe.status == VerificationStatus.VERIFIED
    )
    total = query.count()
    recipes = (
        query.order_by(models.Recipe.verified_at.desc(), models.Recipe.id.desc())
        .offset(skip)
        .limit(limit)
        .all()
    )
    return recipes, total


def get_author_recipes(db: Session, principal: Principal):
    return (
        db.query(models.Recipe)
        .filter(models.Recipe.author_id == principal.user_id)
        .order_by(
            models.Recipe.verified_at.is_(None),
            models.Recipe.verified_at.desc(),
            models.Recipe.created_at.desc(),
            models.Recipe.id.desc(),
        )
        .all()
    )


def get_pending_recipes(db: Session, principal: Principal, limit: int = 20):
    require(principal, Capability.REVIEW_RECIPES)
    return (
        db.query(models.Recipe)
        .filter(models.Recipe.status == VerificationStatus.PENDING_VERIFICATION)
        .order_by(models.Recipe.created_at.asc(), models.Recipe.id.asc())
        .limit(limit)
        .all()
    )


_VERIFIED_SORTS = {
    "verified_at": models.Recipe.verified_at,
    "title": models.Recipe.title,
    "created_at": models.Recipe.created_at,
}


def get_verified_by(
    db: Session,
    principal: Principal,
    skip: int = 0,
    limit: int = 12,
    search: Optional[str] = None,
    sort_by: str = "verified_at",
    descending: bool = True,
):
    """Recipes the calling nutritionist verified, as ``(recipes, total)``.

    ``search`` matches title, description and author name, ignoring case.
    """
    require(principal, Capability.REVIEW_RECIPES)
    if sort_by not in _VERIFIED_SORTS:
        raise ValidationError(f"Cannot sort by {sort_by!r}")
    query = db.query(models.Recipe).filter(
        models.Recipe.status == VerificationStatus.VERIFIED,
        models.Recipe.verified_by_id == principal.user_id,
    )
    search = _clean(search)
    if search:
        pattern = f"%{search}%"
        query = query.join(models.Recipe.author).filter(
            or_(
                models.Recipe.title.ilike(pattern),
                models.Recipe.description.ilike(pattern),
                models.User.username.ilike(pattern),
                models.User.full_name.ilike(pattern),
            )
        )
    total = query.count()
    column = _VERIFIED_SORTS[sort_by]
    recipes = (
        query.order_by(column.desc() if descending else column.asc(), models.Recipe.id.desc())
        .offset(skip)
        .limit(limit)
        .all()
    )
    return recipes, total


def get_nutritionist_stats(db: Session, principal: Principal) -> schemas.NutritionistStats:
    require(principal, Capability.REVIEW_RECIPES)
    recipes = db.query(models.Recipe)
    return schemas.NutritionistStats(
        pending_reviews=recipes.filter(
            models.Recipe.status == VerificationStatus.PENDING_VERIFICATION
        ).count(),
        verified_recipes=recipes.filter(
            models.Recipe.status == VerificationStatus.VERIFIED,
            models.Recipe.verified_by_id == principal.user_id,
        ).count(),
        total_recipes=recipes.count(),
    )


# Reviews


def _check_rating(rating: int):
    if not 1 <= rating <= 5:
        raise ValidationError("Rating must be between 1 and 5")


def get_reviews(db: Session, recipe_id: int):
    get_recipe_or_404(db, recipe_id)
    return (
        db.query(models.Review)
        .filter(models.Review.recipe_id == recipe_id)
        .order_by(models.Review.created_at.desc(), models.Review.id.desc())
        .all()
    )


def create_review(
    db: Session, recipe_id: int, principal: Principal, review: schemas.ReviewIn
) -> models.Review:
    _check_rating(review.rating)
    get_recipe_or_404(db, recipe_id)
    existing = (
        db.query(models.Review)
        .filter(
            models.Review.recipe_id == recipe_id,
            models.Review.user_id == principal.user_id,
        )
        .first()
    )
    if existing is not None:
        raise ValidationError("You have already reviewed this recipe")
    db_review = models.Review(
        recipe_id=recipe_id,
        user_id=principal.user_id,
        rating=review.rating,
        comment=_clean(review.comment) or None,
    )
    with transaction(db, "create review"):
        db.add(db_review)
    db.refresh(db_review)
    return db_review


def _own_review(db: Session, review_id: int, principal: Principal) -> models.Review:
    review = db.query(models.Review).filter(models.Review.id == review_id).first()
    return require_owner(principal, review, owner_attr="user_id", label="Review")


def update_review(
    db: Session, review_id: int, principal: Principal, review: schemas.ReviewIn
) -> models.Review:
    _check_rating(review.rating)
    db_review = _own_review(db, review_id, principal)
    with transaction(db, "update review"):
        db_review.rating = review.rating
        db_review.comment = _clean(review.comment) or None
    db.refresh(db_review)
    return db_review


def delete_review(db: Session, review_id: int, principal: Principal) -> int:
    """Delete the caller's own review and return its recipe id."""
    db_review = _own_review(db, review_id, principal)
    recipe_id = db_review.recipe_id
    with transaction(db, "delete review"):
        db.delete(db_review)
    logger.info("review %s on recipe %s deleted by user %s", review_id, recipe_id, principal.user_id)
    return recipe_id


# Tags


def get_tag_types(db: Session, principal: Principal):
    require(principal, Capability.REVIEW_RECIPES)
    return db.query(models.TagType).order_by(models.TagType.type_name).all()


# Users and sessions


def get_user_by_username(db: Session, username: str) -> Optional[models.User]:
    return db.query(models.User).filter(models.User.username == username).first()


def create_session(
    db: Session, user_id: int, ttl: Optional[timedelta] = None
) -> str:
    """Issue a session token for ``user_id``; used by seeding and tests."""
    token = secrets.token_urlsafe(32)
    expires_at = datetime.now(timezone.utc) + ttl if ttl is not None else None
    db.add(models.UserSession(token=token, user_id=user_id, expires_at=expires_at))
    db.commit()
    return token
