"""Reference normalizer: free-text ingredient and unit names -> shared rows.

Exact matches only, no fuzzy matching and no synonym folding. Ingredient
names are compared on a normalized key (trimmed, inner whitespace collapsed,
lower-cased); unit names are compared exactly after trimming.

New names are inserted with ON CONFLICT DO NOTHING and then read back, so two
submissions racing to create the same name both end up with the one row the
first of them created.
"""
import logging
import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, Optional, Tuple

from sqlalchemy import insert as generic_insert
from sqlalchemy.orm import Session

from . import models

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")


def normalize_ingredient(s: Optional[str]) -> str:
    if not s:
        return ""
    return _WHITESPACE.sub(" ", s.strip()).lower()


def normalize_unit(s: Optional[str]) -> str:
    if not s:
        return ""
    return s.strip()


@dataclass
class ReferenceMap:
    ingredients: Dict[str, int] = field(default_factory=dict)
    units: Dict[str, int] = field(default_factory=dict)

    def ingredient_id(self, name: str) -> Optional[int]:
        return self.ingredients.get(normalize_ingredient(name))

    def unit_id(self, unit: str) -> Optional[int]:
        return self.units.get(normalize_unit(unit))


def _insert_ignore(db: Session, model, rows):
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert

        stmt = insert(model).on_conflict_do_nothing()
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert

        stmt = insert(model).on_conflict_do_nothing()
    elif dialect in ("mysql", "mariadb"):
        stmt = generic_insert(model).prefix_with("IGNORE")
    else:
        raise NotImplementedError(f"no conflict-tolerant insert for {dialect}")
    db.execute(stmt, rows)


def upsert_ingredients(db: Session, names: Iterable[str]) -> Dict[str, int]:
    keys = sorted({normalize_ingredient(n) for n in names} - {""})
    if not keys:
        return {}
    _insert_ignore(db, models.Ingredient, [{"name": k} for k in keys])
    rows = (
        db.query(models.Ingredient.name, models.Ingredient.id)
        .filter(models.Ingredient.name.in_(keys))
        .all()
    )
    return {name: ingredient_id for name, ingredient_id in rows}


def upsert_units(db: Session, units: Iterable[str]) -> Dict[str, int]:
    keys = sorted({normalize_unit(u) for u in units} - {""})
    if not keys:
        return {}
    _insert_ignore(
        db,
        models.MeasurementUnit,
        [{"unit_name": k, "abbreviation": k[:20]} for k in keys],
    )
    rows = (
        db.query(models.MeasurementUnit.unit_name, models.MeasurementUnit.id)
        .filter(models.MeasurementUnit.unit_name.in_(keys))
        .all()
    )
    return {unit_name: unit_id for unit_name, unit_id in rows}


def resolve_references(
    db: Session, pairs: Iterable[Tuple[str, Optional[str]]]
) -> ReferenceMap:
    """Upsert every distinct ingredient name and unit in ``pairs``.

    Runs inside the caller's transaction; rows created here roll back with it.
    Empty units are skipped, so a line without a unit stays unresolved.
    """
    pairs = list(pairs)
    refs = ReferenceMap(
        ingredients=upsert_ingredients(db, (name for name, _ in pairs)),
        units=upsert_units(db, (unit for _, unit in pairs if unit)),
    )
    logger.debug(
        "resolved %d ingredient(s) and %d unit(s)",
        len(refs.ingredients),
        len(refs.units),
    )
    return refs
