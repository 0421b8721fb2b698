from pathlib import Path

from flavourly import crud, models, schemas, verification
from flavourly.auth import Principal
from flavourly.db import SessionLocal, init_db
from flavourly.errors import FlavourlyError
from flavourly.recipes import load_seed


def _seed_users(db, users):
    added = 0
    for u in users:
        if crud.get_user_by_username(db, u["username"]):
            continue
        db.add(
            models.User(
                username=u["username"],
                email=u["email"],
                password_hash=u.get("password_hash", "!"),
                full_name=u.get("full_name"),
                role=models.Role(u.get("role", "RecipeDeveloper")),
                bio=u.get("bio"),
            )
        )
        added += 1
    db.commit()
    return added


def _seed_tags(db, tag_types):
    for tt in tag_types:
        tag_type = (
            db.query(models.TagType)
            .filter(models.TagType.type_name == tt["type_name"])
            .first()
        )
        if tag_type is None:
            tag_type = models.TagType(type_name=tt["type_name"])
            db.add(tag_type)
            db.flush()
        existing = {t.tag_name for t in tag_type.tags}
        for name in tt.get("tags", []):
            if name not in existing:
                db.add(models.Tag(tag_name=name, tag_type_id=tag_type.id))
    db.commit()


def _principal(db, username):
    user = crud.get_user_by_username(db, username)
    if user is None:
        return None
    return Principal(user_id=user.id, role=models.Role(user.role))


def _seed_recipes(db, recipes):
    added = 0
    for r in recipes:
        author = _principal(db, r.get("author", ""))
        if author is None:
            print(f"skipping {r.get('title')!r}: unknown author {r.get('author')!r}")
            continue
        exists = (
            db.query(models.Recipe)
            .filter(
                models.Recipe.title == r.get("title"),
                models.Recipe.author_id == author.user_id,
            )
            .first()
        )
        if exists:
            continue
        content = schemas.RecipeContent.model_validate(r)
        try:
            recipe = crud.create_recipe(db, author, content)
            reviewer = _principal(db, r.get("reviewer", ""))
            if reviewer is not None and r.get("status") == "verified":
                verification.verify(db, recipe.id, reviewer)
            elif reviewer is not None and r.get("status") == "needs_revision":
                verification.request_revision(
                    db, recipe.id, reviewer, r.get("revision_notes", "")
                )
        except FlavourlyError as exc:
            print(f"skipping {r.get('title')!r}: {exc.message}")
            continue
        added += 1
    return added


def main():
    init_db()
    p = Path(__file__).resolve().parents[1] / "data" / "seed.json"
    if not p.exists():
        print("data/seed.json not found")
        return
    seed = load_seed(p)
    db = SessionLocal()
    try:
        users = _seed_users(db, seed["users"])
        _seed_tags(db, seed["tag_types"])
        recipes = _seed_recipes(db, seed["recipes"])
    finally:
        db.close()
    print(f"Imported {users} users and {recipes} recipes")


if __name__ == "__main__":
    main()
