import json
from pathlib import Path


def load_seed(path):
    """Load seed data (users, tag types, recipes) from a JSON file.

    Args:
        path (str or Path): Path to the JSON file.

    Returns:
        dict: with ``users``, ``tag_types`` and ``recipes`` lists; missing
        keys (or a missing file) give empty lists.
    """
    p = Path(path)
    data = {}
    if p.exists():
        with p.open("r", encoding="utf-8") as f:
            data = json.load(f)
    return {
        "users": data.get("users", []),
        "tag_types": data.get("tag_types", []),
        "recipes": data.get("recipes", []),
    }
