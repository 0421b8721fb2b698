from flavourly import models
from flavourly.normalize import (
    normalize_ingredient,
    normalize_unit,
    resolve_references,
)


def test_normalize_ingredient_trims_and_lowercases():
    assert normalize_ingredient("  Olive   Oil ") == "olive oil"
    assert normalize_ingredient("") == ""
    assert normalize_ingredient(None) == ""


def test_normalize_unit_only_trims():
    assert normalize_unit(" Cup ") == "Cup"
    assert normalize_unit(None) == ""


def test_resolve_creates_each_name_once(db):
    refs = resolve_references(
        db, [("Flour", "g"), ("flour ", "g"), ("Sugar", "tbsp")]
    )
    db.commit()

    assert set(refs.ingredients) == {"flour", "sugar"}
    assert set(refs.units) == {"g", "tbsp"}
    assert db.query(models.Ingredient).count() == 2
    assert db.query(models.MeasurementUnit).count() == 2
    assert refs.ingredient_id("FLOUR") == refs.ingredients["flour"]


def test_resolve_reuses_existing_rows(db):
    first = resolve_references(db, [("Flour", "cup")])
    db.commit()
    second = resolve_references(db, [("Flour", "cup"), ("Egg", "piece")])
    db.commit()

    assert second.ingredient_id("Flour") == first.ingredient_id("Flour")
    assert second.unit_id("cup") == first.unit_id("cup")
    assert db.query(models.Ingredient).filter_by(name="flour").count() == 1


def test_units_match_case_sensitively(db):
    refs = resolve_references(db, [("Milk", "Cup"), ("Water", "cup")])
    db.commit()

    assert refs.unit_id("Cup") != refs.unit_id("cup")
    unit = db.query(models.MeasurementUnit).filter_by(unit_name="Cup").one()
    assert unit.abbreviation == "Cup"


def test_empty_unit_stays_unresolved(db):
    refs = resolve_references(db, [("Salt", ""), ("Pepper", None)])

    assert refs.ingredient_id("Salt") is not None
    assert refs.unit_id("") is None
    assert db.query(models.MeasurementUnit).count() == 0


def test_rows_roll_back_with_the_caller(db):
    resolve_references(db, [("Saffron", "pinch")])
    db.rollback()

    assert db.query(models.Ingredient).count() == 0
