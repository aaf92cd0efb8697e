"""Config normalization for build groups.

Turns the loosely-typed variant mappings a caller declares into
`NormalizedVariant` records:

- merges package defaults, common defaults, process-wide options and the
  variant's own fields (later wins);
- fans an `id` sequence out into one record per id/src pair;
- coerces `pre`/`post`/`watch` into tuples (`watch: true` mirrors `src`);
- synthesizes the minified sibling when asked to.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field, fields, replace
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Tuple

from .utils import as_sequence, canonical_keys, flatten_globs, is_sequence


MINIFY_MARKER = "min"

# Package defaults, always applied
DEFAULTS: Dict[str, Any] = {
    "create_sub_tasks": False,
    "ignore_common": False,
    "task_delimiter": " > ",
    "watch_name": "watch",
    "watch_sub_tasks": False,
    "watch_tasks": False,
    "pre": (),
    "post": (),
    "watch": (),
    "src": None,
    "minify": False,
}

# Not used by the compiler itself; handed to every work function unless
# `ignore_common` is set.
COMMON: Dict[str, Any] = {
    "debug": False,
    "depends_on": False,
    "dest": False,
    "exclude": ["./**/*", "!./fonts/**/*", "!./node_modules/**/*", "!./vendor/**/*"],
    "match": {"min": re.compile(r"(?<!\.min)\.(js|css)$")},
    "minify": False,
    "post": (),
    "pre": (),
    "src": False,
    "watch": False,
}


class BuildConfigError(ValueError):
    """Base class for problems found while compiling build groups."""


class MissingWork(BuildConfigError):
    pass


class MissingVariants(BuildConfigError):
    pass


class InvalidVariants(BuildConfigError):
    pass


class UnresolvedReference(BuildConfigError):
    pass


class DisplayNameCollision(BuildConfigError):
    pass


class WatchMode(str, Enum):
    """How a variant's `watch` field is read.

    `True`, `"mirror src"` and `"mirror_src"` all mean "watch `src`".
    """

    DISABLED = "disabled"
    CUSTOM = "custom"
    MIRROR_SOURCE = "mirror_src"

    @classmethod
    def of(cls, value: Any) -> "WatchMode":
        if isinstance(value, WatchMode):
            return value
        if value is True or value in (cls.MIRROR_SOURCE.value, "mirror src"):
            return cls.MIRROR_SOURCE
        if not value:
            return cls.DISABLED
        return cls.CUSTOM


@dataclass(frozen=True)
class TaskRef:
    """Symbolic reference to another task by display name."""

    name: str

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class BuildGroup:
    work: Callable[..., Any] | None
    variants: List[Mapping[str, Any]] | None


@dataclass(frozen=True)
class NormalizedVariant:
    group: str
    id: Any
    src: Any
    name: str
    display_name: str
    pre: Tuple[Any, ...] = ()
    post: Tuple[Any, ...] = ()
    watch: Tuple[str, ...] = ()
    minify: bool = False
    depends_on: Any = False
    filename: str = ""
    options: Mapping[str, Any] = field(default_factory=dict)

    def as_dict(self) -> Dict[str, Any]:
        out = dict(self.options)
        for f in fields(self):
            if f.name == "options":
                continue
            value = getattr(self, f.name)
            out[f.name] = list(value) if isinstance(value, tuple) else value
        return out


_FIELDS = {f.name for f in fields(NormalizedVariant)}
_TRIGGERS = ("minify_depends_on", "also_minify")


def build_options(options: Mapping[str, Any] | None = None) -> Dict[str, Any]:
    """Merge package defaults, common defaults and process-wide options."""
    opts = canonical_keys(dict(options or {}))
    merged = dict(DEFAULTS)
    if not opts.get("ignore_common"):
        merged.update(COMMON)
    merged.update(opts)
    return merged


def group_fields(name: str, build: Any) -> Tuple[Callable[..., Any], list]:
    """Return `(work, variants)` for a build group or raise a per-group error."""
    if isinstance(build, Mapping):
        build = canonical_keys(dict(build))
        work = build.get("work", build.get("cb"))
        variants = build.get("variants", build.get("configs"))
    else:
        work = getattr(build, "work", None)
        variants = getattr(build, "variants", None)
    if work is None:
        raise MissingWork(f"`{name}` work is NOT defined")
    if not callable(work):
        raise MissingWork(f"`{name}` work is NOT a function")
    if variants is None:
        raise MissingVariants(f"`{name}` variants is NOT defined")
    if not is_sequence(variants):
        raise InvalidVariants(f"`{name}` variants is NOT a list")
    return work, list(variants)


def _refs(items: Tuple[Any, ...]) -> Tuple[Any, ...]:
    return tuple(TaskRef(i) if isinstance(i, str) else i for i in items)


def normalize_variant(
    group: str, spec: Mapping[str, Any], options: Mapping[str, Any]
) -> List[NormalizedVariant]:
    """Normalize one variant declaration into one or more records.

    Minified siblings directly follow their base variant in the result.
    """
    if not isinstance(spec, Mapping):
        raise InvalidVariants(f"`{group}` variant must be a mapping, got {spec!r}")
    merged = {**options, **canonical_keys(dict(spec))}
    delim = merged["task_delimiter"]

    ids, srcs = merged.get("id"), merged.get("src")
    mode = WatchMode.of(merged.get("watch"))
    if mode is WatchMode.MIRROR_SOURCE:
        watch = flatten_globs(srcs)
    elif mode is WatchMode.CUSTOM:
        watch = flatten_globs(merged["watch"])
    else:
        watch = flatten_globs(options.get("watch"))

    if not is_sequence(ids):
        ids = (ids,)
        srcs = (srcs or options.get("src"),)
    elif not is_sequence(srcs) or len(srcs) != len(ids):
        raise InvalidVariants(
            f"`{group}` variant src must match id arity ({len(ids)}), got {srcs!r}"
        )

    pre = _refs(as_sequence(merged.get("pre"), options.get("pre")))
    post = _refs(as_sequence(merged.get("post"), options.get("post")))
    extra = {k: v for k, v in merged.items() if k not in _FIELDS}

    out: List[NormalizedVariant] = []
    for id_, src in zip(ids, srcs):
        name = merged.get("name") or id_ or merged.get("display_name")
        if name is None:
            raise InvalidVariants(f"`{group}` variant declares no id")
        base = NormalizedVariant(
            group=group,
            id=id_,
            src=src,
            name=name,
            display_name=merged.get("display_name") or f"{group}{delim}{name}",
            pre=pre,
            post=post,
            watch=watch,
            minify=False,
            depends_on=merged.get("depends_on", False),
            filename=merged.get("filename") or f"{id_}.{group}",
            options=extra,
        )
        out.append(base)
        if merged.get("minify") or any(merged.get(k) for k in _TRIGGERS):
            out.append(minified_sibling(base, merged, delim))
    return out


def minified_sibling(
    base: NormalizedVariant, merged: Mapping[str, Any], delim: str
) -> NormalizedVariant:
    name = f"{base.name}{delim}{MINIFY_MARKER}"
    if merged.get("display_name"):
        display_name = f"{base.display_name}{delim}{MINIFY_MARKER}"
    else:
        display_name = f"{base.group}{delim}{name}"
    depends_on = merged.get("minify_depends_on") or base.depends_on
    return replace(
        base,
        name=name,
        display_name=display_name,
        minify=True,
        depends_on=depends_on,
    )
