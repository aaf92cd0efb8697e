from __future__ import annotations

"""Small helpers for coercing loosely-typed build options."""

from typing import Any, Dict, Iterable, Tuple


# camelCase keys accepted for options written in the original gulpfile style
OPTION_ALIASES: Dict[str, str] = {
    "createSubTasks": "create_sub_tasks",
    "watchSubTasks": "watch_sub_tasks",
    "watchTasks": "watch_tasks",
    "WatchName": "watch_name",
    "watchName": "watch_name",
    "taskDelimiter": "task_delimiter",
    "ignoreCommon": "ignore_common",
    "displayName": "display_name",
    "minifyDependsOn": "minify_depends_on",
    "depMin": "minify_depends_on",
    "alsoMin": "also_minify",
    "dep": "depends_on",
}


def canonical_keys(d: Dict[str, Any] | None) -> Dict[str, Any]:
    """Return a copy of `d` with aliased keys renamed; explicit snake_case wins."""
    out: Dict[str, Any] = {}
    for k, v in (d or {}).items():
        key = OPTION_ALIASES.get(k, k)
        if key != k and key in (d or {}):
            continue
        out[key] = v
    return out


def is_sequence(value: Any) -> bool:
    return isinstance(value, (list, tuple))


def as_sequence(value: Any, default: Iterable[Any] = ()) -> Tuple[Any, ...]:
    if is_sequence(value):
        return tuple(value)
    if not value:
        return tuple(default or ())
    return (value,)


def flatten_globs(value: Any) -> Tuple[str, ...]:
    if not value or value is True:
        return ()
    if not is_sequence(value):
        return (str(value),)
    out: list[str] = []
    for item in value:
        out.extend(flatten_globs(item))
    return tuple(out)
