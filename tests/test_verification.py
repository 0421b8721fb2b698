from decimal import Decimal

import pytest

from flavourly import crud, models, schemas, verification
from flavourly.errors import (
    AuthorizationError,
    NotFoundError,
    RecipeLockedError,
    StateTransitionError,
    ValidationError,
)
from flavourly.models import VerificationStatus
from flavourly.verification import Event, next_status

from conftest import recipe_payload


@pytest.fixture
def recipe_id(db, developer):
    content = schemas.RecipeContent.model_validate(recipe_payload())
    return crud.create_recipe(db, developer.principal, content).id


def add_tags(db, type_name, *names):
    tag_type = models.TagType(type_name=type_name)
    db.add(tag_type)
    db.flush()
    tags = [models.Tag(tag_name=n, tag_type_id=tag_type.id) for n in names]
    db.add_all(tags)
    db.commit()
    return [t.id for t in tags]


@pytest.mark.parametrize(
    "current,event,expected",
    [
        (VerificationStatus.PENDING_VERIFICATION, Event.VERIFY, VerificationStatus.VERIFIED),
        (
            VerificationStatus.PENDING_VERIFICATION,
            Event.REQUEST_REVISION,
            VerificationStatus.NEEDS_REVISION,
        ),
        (VerificationStatus.NEEDS_REVISION, Event.VERIFY, VerificationStatus.VERIFIED),
        (
            VerificationStatus.NEEDS_REVISION,
            Event.RESUBMIT,
            VerificationStatus.PENDING_VERIFICATION,
        ),
    ],
)
def test_allowed_transitions(current, event, expected):
    assert next_status(current, event) == expected


@pytest.mark.parametrize(
    "current,event",
    [
        (VerificationStatus.PENDING_VERIFICATION, Event.RESUBMIT),
        (VerificationStatus.NEEDS_REVISION, Event.REQUEST_REVISION),
        (VerificationStatus.VERIFIED, Event.VERIFY),
        (VerificationStatus.VERIFIED, Event.REQUEST_REVISION),
        (VerificationStatus.VERIFIED, Event.RESUBMIT),
    ],
)
def test_rejected_transitions(current, event):
    with pytest.raises(StateTransitionError):
        next_status(current, event)


def test_event_for_status():
    assert verification.event_for_status("verified") is Event.VERIFY
    assert verification.event_for_status("needs_revision") is Event.REQUEST_REVISION
    assert verification.event_for_status("pending_verification") is Event.RESUBMIT
    with pytest.raises(ValidationError):
        verification.event_for_status("approved")


def test_revision_round_trip(db, recipe_id, developer, nutritionist):
    reviewer = nutritionist.principal

    recipe = verification.request_revision(db, recipe_id, reviewer, "Reduce salt")
    assert recipe.status == VerificationStatus.NEEDS_REVISION
    assert recipe.health_tips == "Reduce salt"
    assert recipe.verified_by_id == nutritionist.id
    assert recipe.verified_at is None

    recipe = verification.resubmit(db, recipe_id, developer.principal)
    assert recipe.status == VerificationStatus.PENDING_VERIFICATION
    assert recipe.verified_by_id is None and recipe.verified_at is None
    # feedback stays visible after resubmission
    assert recipe.health_tips == "Reduce salt"

    recipe = verification.verify(db, recipe_id, reviewer)
    assert recipe.status == VerificationStatus.VERIFIED
    assert recipe.verified_by_id == nutritionist.id
    assert recipe.verified_at is not None

    with pytest.raises(StateTransitionError):
        verification.request_revision(db, recipe_id, reviewer, "Too late")
    with pytest.raises(StateTransitionError):
        verification.resubmit(db, recipe_id, developer.principal)
    db.expire_all()
    assert crud.get_recipe(db, recipe_id).status == VerificationStatus.VERIFIED


def test_verify_from_needs_revision(db, recipe_id, nutritionist):
    verification.request_revision(db, recipe_id, nutritionist.principal, "More detail")
    recipe = verification.verify(db, recipe_id, nutritionist.principal)
    assert recipe.status == VerificationStatus.VERIFIED


def test_reviewer_events_need_nutritionist(db, recipe_id, developer):
    with pytest.raises(AuthorizationError):
        verification.verify(db, recipe_id, developer.principal)
    with pytest.raises(AuthorizationError):
        verification.request_revision(db, recipe_id, developer.principal, "")
    assert crud.get_recipe(db, recipe_id).status == VerificationStatus.PENDING_VERIFICATION


@pytest.mark.parametrize("notes", [None, "", "   "])
def test_revision_requires_notes(db, recipe_id, nutritionist, notes):
    with pytest.raises(ValidationError):
        verification.apply_event(
            db, recipe_id, nutritionist.principal, Event.REQUEST_REVISION, notes
        )
    assert crud.get_recipe(db, recipe_id).status == VerificationStatus.PENDING_VERIFICATION


def test_resubmit_pending_fails_for_anyone(
    db, recipe_id, developer, other_developer, nutritionist
):
    for user in (developer, other_developer, nutritionist):
        with pytest.raises(StateTransitionError):
            verification.resubmit(db, recipe_id, user.principal)


def test_resubmit_by_non_author_looks_missing(
    db, recipe_id, other_developer, nutritionist
):
    verification.request_revision(db, recipe_id, nutritionist.principal, "Fix it")

    with pytest.raises(NotFoundError):
        verification.resubmit(db, recipe_id, other_developer.principal)
    db.expire_all()
    assert crud.get_recipe(db, recipe_id).status == VerificationStatus.NEEDS_REVISION


def test_missing_recipe(db, nutritionist):
    with pytest.raises(NotFoundError):
        verification.verify(db, 999, nutritionist.principal)


def test_update_content_sets_tips_nutrition_and_tags(db, recipe_id, nutritionist):
    vegan, quick = add_tags(db, "Dietary", "Vegan", "Quick")
    update = schemas.ContentUpdate.model_validate(
        {
            "healthTips": "Serve with greens",
            "nutritionalInfo": {"calories": "320", "proteinGrams": 18, "sodiumMg": ""},
            "tags": [vegan, {"id": quick}, vegan],
        }
    )

    verification.update_content(db, recipe_id, nutritionist.principal, update)

    db.expire_all()
    recipe = crud.get_recipe(db, recipe_id)
    assert recipe.status == VerificationStatus.PENDING_VERIFICATION
    assert recipe.health_tips == "Serve with greens"
    info = recipe.nutritional_info
    assert info.calories == Decimal("320")
    assert info.protein_grams == Decimal("18")
    assert info.sodium_mg is None
    assert info.data_source == models.NutritionDataSource.VERIFIED_NUTRITIONIST
    assert sorted(rt.tag_id for rt in recipe.tags) == sorted([vegan, quick])


def test_update_content_leaves_omitted_fields(db, recipe_id, nutritionist):
    (vegan,) = add_tags(db, "Dietary", "Vegan")
    verification.update_content(
        db,
        recipe_id,
        nutritionist.principal,
        schemas.ContentUpdate.model_validate(
            {"healthTips": "Original", "nutritionalInfo": {"calories": 100}, "tags": [vegan]}
        ),
    )

    verification.update_content(
        db,
        recipe_id,
        nutritionist.principal,
        schemas.ContentUpdate.model_validate({"nutritionalInfo": {"calories": 150}}),
    )

    db.expire_all()
    recipe = crud.get_recipe(db, recipe_id)
    assert recipe.health_tips == "Original"
    assert recipe.nutritional_info.calories == Decimal("150")
    assert [rt.tag_id for rt in recipe.tags] == [vegan]
    assert db.query(models.NutritionalInformation).count() == 1


def test_update_content_empty_tags_clears(db, recipe_id, nutritionist):
    (vegan,) = add_tags(db, "Dietary", "Vegan")
    principal = nutritionist.principal
    verification.update_content(
        db, recipe_id, principal, schemas.ContentUpdate.model_validate({"tags": [vegan]})
    )
    verification.update_content(
        db, recipe_id, principal, schemas.ContentUpdate.model_validate({"tags": []})
    )
    assert db.query(models.RecipeTag).count() == 0


def test_update_content_unknown_tag_changes_nothing(db, recipe_id, nutritionist):
    update = schemas.ContentUpdate.model_validate({"healthTips": "New", "tags": [42]})

    with pytest.raises(ValidationError):
        verification.update_content(db, recipe_id, nutritionist.principal, update)

    db.expire_all()
    assert crud.get_recipe(db, recipe_id).health_tips is None


def test_update_content_on_verified_recipe_is_locked(db, recipe_id, nutritionist):
    verification.verify(db, recipe_id, nutritionist.principal)

    with pytest.raises(RecipeLockedError):
        verification.update_content(
            db,
            recipe_id,
            nutritionist.principal,
            schemas.ContentUpdate.model_validate({"healthTips": "Late advice"}),
        )


def test_update_content_needs_nutritionist(db, recipe_id, developer):
    with pytest.raises(AuthorizationError):
        verification.update_content(
            db,
            recipe_id,
            developer.principal,
            schemas.ContentUpdate.model_validate({"healthTips": "Self praise"}),
        )


def test_pending_queue_lists_only_pending(db, recipe_id, developer, nutritionist):
    content = schemas.RecipeContent.model_validate(recipe_payload(title="Second"))
    second = crud.create_recipe(db, developer.principal, content).id
    verification.verify(db, recipe_id, nutritionist.principal)

    pending = crud.get_pending_recipes(db, nutritionist.principal)

    assert [r.id for r in pending] == [second]
    with pytest.raises(AuthorizationError):
        crud.get_pending_recipes(db, developer.principal)
