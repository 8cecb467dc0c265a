"""
Helpers for applying desired fragments onto live objects.

Live objects come back from the API server with defaults and fields written
by other actors. These helpers only overwrite the keys present in the
desired fragment so everything else survives a write.
"""
from typing import Any, Dict, List

# Named lists whose items carry exactly one source (emptyDir, configMap, value,
# valueFrom, ...). An item whose keys differ from the desired item is replaced.
SOURCE_LISTS = {"volumes", "env"}


def _is_named_list(value: Any) -> bool:
    return (
        isinstance(value, list)
        and bool(value)
        and all(isinstance(item, dict) and "name" in item for item in value)
    )


def deep_merge(target: Dict[str, Any], desired: Dict[str, Any]) -> Dict[str, Any]:
    """
    Merge ``desired`` into ``target`` in place.

    Dicts are merged key by key. Lists of named dicts (containers, volumes,
    volume mounts, env) are merged item by item on ``name``; existing items
    that are not named in ``desired`` are kept. In ``SOURCE_LISTS`` an item
    with a different source is replaced whole. Any other value replaces the
    target value.

    Returns:
        The mutated ``target``
    """
    for key, value in desired.items():
        current = target.get(key)
        if isinstance(value, dict) and isinstance(current, dict):
            deep_merge(current, value)
        elif _is_named_list(value) and isinstance(current, list):
            for item in value:
                upsert_named(current, item, replace_reshaped=key in SOURCE_LISTS)
        else:
            target[key] = _copy(value)
    return target


def upsert_named(
    items: List[Dict[str, Any]], desired: Dict[str, Any], replace_reshaped: bool = False
) -> None:
    """
    Merge ``desired`` into the item with the same name, or append it.

    With ``replace_reshaped`` an existing item whose top-level keys differ
    from ``desired`` is swapped out instead of merged.
    """
    for index, item in enumerate(items):
        if item.get("name") != desired["name"]:
            continue
        if replace_reshaped and set(item) != set(desired):
            items[index] = _copy(desired)
        else:
            deep_merge(item, desired)
        return
    items.append(_copy(desired))


def remove_named(items: List[Dict[str, Any]], name: str) -> None:
    """Remove every item called ``name``."""
    items[:] = [item for item in items if item.get("name") != name]


def _copy(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: _copy(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_copy(v) for v in value]
    return value
