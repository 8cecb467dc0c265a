"""
Controller owner references.

Dependents point back at their SQLiteDB through a controller owner
reference; the Kubernetes garbage collector deletes them when the
SQLiteDB goes away.
"""
from typing import Any, Dict, Optional

from sqlite_operator.exceptions import AlreadyOwnedError
from sqlite_operator.models.sqlitedb import SQLiteDB


def owner_reference(owner: SQLiteDB) -> Dict[str, Any]:
    """Build the controller reference for ``owner``."""
    return {
        "apiVersion": owner.api_version,
        "kind": owner.kind,
        "name": owner.name,
        "uid": owner.metadata.uid,
        "controller": True,
        "blockOwnerDeletion": True,
    }


def set_controller_reference(owner: SQLiteDB, obj: Dict[str, Any]) -> None:
    """
    Make ``owner`` the controller of ``obj``.

    Non-controller references and references to other owners are kept. An
    existing reference to the same owner is replaced so a recreated owner
    with a new UID takes over.

    Raises:
        AlreadyOwnedError: If a different object already controls ``obj``
    """
    metadata = obj.setdefault("metadata", {})
    refs = metadata.setdefault("ownerReferences", [])
    ref = owner_reference(owner)

    for existing in refs:
        if existing.get("controller") and not _same_owner(existing, ref):
            raise AlreadyOwnedError(
                kind=obj.get("kind", "object"),
                name=metadata.get("name", ""),
                owner=f"{existing.get('kind')}/{existing.get('name')}",
            )

    for index, existing in enumerate(refs):
        if _same_owner(existing, ref):
            if existing != ref:
                refs[index] = ref
            return
    refs.append(ref)


def controller_of(obj: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Return the controller owner reference of ``obj``, if any."""
    for ref in (obj.get("metadata") or {}).get("ownerReferences") or []:
        if ref.get("controller"):
            return ref
    return None


def _same_owner(a: Dict[str, Any], b: Dict[str, Any]) -> bool:
    # Owner identity is group, kind and name; the API version may change.
    return (
        _group(a.get("apiVersion", "")) == _group(b.get("apiVersion", ""))
        and a.get("kind") == b.get("kind")
        and a.get("name") == b.get("name")
    )


def _group(api_version: str) -> str:
    return api_version.split("/")[0] if "/" in api_version else ""
