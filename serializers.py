"""Document -> JSON helpers and the user-reference population step."""
from datetime import datetime
from typing import Any, Dict, Iterable, List, Sequence

from bson import ObjectId
from pymongo.database import Database

HIDDEN_FIELDS = {"password"}

USER_BRIEF = ("name", "avatar")
USER_CARD = ("name", "email", "avatar", "role", "company")
USER_PROFILE = ("name", "email", "avatar", "role", "company", "batch")


def to_json(value: Any) -> Any:
    """Convert ``_id`` to ``id`` and ObjectId/datetime values to strings."""
    if isinstance(value, dict):
        out = {}
        for k, v in value.items():
            if k in HIDDEN_FIELDS:
                continue
            out["id" if k == "_id" else k] = to_json(v)
        return out
    if isinstance(value, (list, tuple)):
        return [to_json(v) for v in value]
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def user_to_public(u: dict) -> dict:
    if not u:
        return u
    return to_json(u)


def _refs_at(doc: dict, path: str) -> Iterable[Any]:
    head, _, tail = path.partition(".")
    value = doc.get(head)
    if tail:
        for item in value or []:
            if isinstance(item, dict) and item.get(tail) is not None:
                yield item[tail]
    elif isinstance(value, list):
        yield from value
    elif value is not None:
        yield value


def _replace_at(doc: dict, path: str, lookup: Dict[str, dict]) -> None:
    head, _, tail = path.partition(".")
    value = doc.get(head)
    if tail:
        doc[head] = [
            {**item, tail: lookup.get(str(item.get(tail)))} if isinstance(item, dict) else item
            for item in value or []
        ]
    elif isinstance(value, list):
        doc[head] = [lookup.get(str(v)) for v in value if str(v) in lookup]
    elif value is not None:
        doc[head] = lookup.get(str(value))


def populate(db: Database, docs: List[dict], paths: Dict[str, Sequence[str]]) -> List[dict]:
    """Resolve user references at ``paths`` (``"organizer"``, ``"attendees.user"``...).

    ``paths`` maps each path to the user fields to load for it. Returns
    shallow copies; the input documents are left untouched.
    """
    out = [dict(d) for d in docs]
    for path, fields in paths.items():
        ids = {ref for d in out for ref in _refs_at(d, path)}
        if not ids:
            continue
        projection = {f: 1 for f in fields}
        users = db["user"].find({"_id": {"$in": list(ids)}}, projection)
        lookup = {str(u["_id"]): u for u in users}
        for d in out:
            _replace_at(d, path, lookup)
    return out


def populate_one(db: Database, doc: dict, paths: Dict[str, Sequence[str]]) -> dict:
    return populate(db, [doc], paths)[0]
