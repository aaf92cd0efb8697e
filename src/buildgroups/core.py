from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, List, Mapping, Tuple, Union

from .compose import Parallel, Sequence, WorkUnit
from .config import (
    BuildConfigError,
    DisplayNameCollision,
    InvalidVariants,
    MissingVariants,
    MissingWork,
    NormalizedVariant,
    TaskRef,
    UnresolvedReference,
    build_options,
    group_fields,
    normalize_variant,
)
from .logging import get_logger
from .scheduler import Scheduler


log = get_logger("buildgroups.core")

WATCH_SUFFIX = "watch"


@dataclass(frozen=True)
class GroupConfig:
    """Aggregate configuration of a build group, folded from its children."""

    name: str
    pre: Tuple[Any, ...] = ()
    post: Tuple[Any, ...] = ()
    watch: Tuple[str, ...] = ()


@dataclass
class Entry:
    config: Union[NormalizedVariant, GroupConfig]
    callbacks: Tuple[Callable[..., Any], ...]


@dataclass
class Compilation:
    """Variant registry and build hierarchy produced by one compile pass."""

    options: Dict[str, Any]
    registry: Dict[str, Entry] = field(default_factory=dict)
    hierarchy: Dict[str, List[str]] = field(default_factory=dict)
    diagnostics: List[BuildConfigError] = field(default_factory=list)
    units: Dict[str, Callable[..., Any]] = field(default_factory=dict)
    _assembled: Dict[str, Sequence] = field(default_factory=dict, repr=False)

    @property
    def delimiter(self) -> str:
        return self.options["task_delimiter"]

    def register(self, name: str, entry: Entry) -> None:
        if name in self.registry:
            raise DisplayNameCollision(f"Display name registered twice: {name}")
        self.registry[name] = entry

    def assemble(self, name: str) -> Sequence:
        """`sequence(pre..., parallel(callbacks...), post...)` for a task name."""
        if name not in self._assembled:
            entry = self.registry[name]
            cfg = entry.config
            self._assembled[name] = Sequence(
                [*cfg.pre, Parallel(entry.callbacks, name), *cfg.post], name
            )
        return self._assembled[name]

    def watch_task_name(self, name: str) -> str:
        return f"{name}{self.delimiter}{WATCH_SUFFIX}"


def build_children(ctx: Compilation, builds: Mapping[str, Any]) -> None:
    """Normalize every group's variants into the registry and hierarchy.

    A group with unusable work or variants is reported and kept as an empty
    group; the other groups are unaffected.
    """
    for name, build in builds.items():
        ctx.hierarchy[name] = []
        try:
            work, specs = group_fields(name, build)
            variants: List[NormalizedVariant] = []
            for spec in specs:
                variants.extend(normalize_variant(name, spec, ctx.options))
        except (MissingWork, MissingVariants, InvalidVariants) as e:
            log.error("***%s***", e)
            ctx.diagnostics.append(e)
            continue

        base: WorkUnit | None = None
        for variant in variants:
            if variant.minify and base is not None:
                # Minified sibling re-runs its base variant's work
                unit = base
            else:
                unit = base = WorkUnit(work, variant, ctx.units)
            ctx.register(variant.display_name, Entry(variant, (unit,)))
            ctx.units[variant.display_name] = unit
            ctx.hierarchy[name].append(variant.display_name)


def build_parents(ctx: Compilation) -> None:
    """Fold children's pre/post/watch and callbacks into one entry per group."""
    for name, children in ctx.hierarchy.items():
        pre: list = []
        post: list = []
        watch: list = []
        callbacks: list = []
        for child in children:
            entry = ctx.registry[child]
            pre.extend(entry.config.pre)
            post.extend(entry.config.post)
            watch.extend(entry.config.watch)
            callbacks.extend(entry.callbacks)
        ctx.register(
            name,
            Entry(
                GroupConfig(name, tuple(pre), tuple(post), tuple(watch)),
                tuple(callbacks),
            ),
        )


def _resolve_chain(ctx: Compilation, owner: str, items: Tuple[Any, ...]) -> Tuple[Any, ...]:
    out: list = []
    for item in items:
        if not isinstance(item, TaskRef):
            out.append(item)
            continue
        target = ctx.registry.get(item.name)
        if target is None:
            raise UnresolvedReference(f"`{owner}` references unknown task `{item.name}`")
        out.extend(target.callbacks)
    return tuple(out)


def resolve_references(ctx: Compilation) -> None:
    """Splice each TaskRef in pre/post into the referenced task's callbacks.

    Safe to call more than once.
    """
    for name, entry in ctx.registry.items():
        cfg = entry.config
        entry.config = replace(
            cfg,
            pre=_resolve_chain(ctx, name, cfg.pre),
            post=_resolve_chain(ctx, name, cfg.post),
        )


class ArmWatch:
    """Task unit that starts watching globs and re-runs `unit` on change."""

    def __init__(
        self,
        scheduler: Scheduler,
        targets: List[Tuple[Tuple[str, ...], Callable[..., Any]]],
        display_name: str,
    ):
        self.scheduler = scheduler
        self.targets = targets
        self.display_name = display_name

    def __call__(self) -> None:
        for globs, unit in self.targets:
            self.scheduler.watch(list(globs), unit, ignore_initial=False)


def plan_tasks(
    ctx: Compilation, scheduler: Scheduler
) -> List[Tuple[str, Callable[..., Any]]]:
    """Every `(task name, unit)` pair `register_tasks` would register.

    Raises DisplayNameCollision when two tasks share a name, or when a
    derived watch task name is also a registered display name.
    """
    opts = ctx.options
    planned: List[Tuple[str, Callable[..., Any]]] = []
    derived: set = set()

    def add_watcher(name: str) -> None:
        globs = ctx.registry[name].config.watch
        if globs:
            watch_name = ctx.watch_task_name(name)
            derived.add(watch_name)
            planned.append(
                (watch_name, ArmWatch(scheduler, [(globs, ctx.assemble(name))], watch_name))
            )

    for name, children in ctx.hierarchy.items():
        for child in children:
            if opts.get("create_sub_tasks"):
                planned.append((child, ctx.assemble(child)))
            if opts.get("watch_sub_tasks"):
                add_watcher(child)
        planned.append((name, ctx.assemble(name)))
        if opts.get("watch_tasks"):
            add_watcher(name)

    if opts.get("watch_name"):
        targets = [
            (ctx.registry[name].config.watch, ctx.assemble(name))
            for name in ctx.hierarchy
            if ctx.registry[name].config.watch
        ]
        derived.add(opts["watch_name"])
        planned.append((opts["watch_name"], ArmWatch(scheduler, targets, opts["watch_name"])))

    seen: set = set()
    for name, _ in planned:
        if name in seen:
            raise DisplayNameCollision(f"Task name registered twice: {name}")
        if name in derived and name in ctx.registry:
            raise DisplayNameCollision(f"Watch task name is also a display name: {name}")
        seen.add(name)
    return planned


def register_tasks(ctx: Compilation, scheduler: Scheduler) -> None:
    for name, unit in plan_tasks(ctx, scheduler):
        scheduler.task(name, unit)


def compile_builds(
    builds: Mapping[str, Any],
    options: Mapping[str, Any] | None = None,
    scheduler: Scheduler | None = None,
) -> Compilation:
    """Compile build groups and register their tasks with `scheduler`.

    Structural problems (display name collisions, unresolved references)
    raise before anything is registered.
    """
    ctx = Compilation(options=build_options(options))
    build_children(ctx, builds)
    build_parents(ctx)
    resolve_references(ctx)
    log.info(
        "Compiled %d groups, %d variants",
        len(ctx.hierarchy),
        sum(len(c) for c in ctx.hierarchy.values()),
    )
    if scheduler is not None:
        register_tasks(ctx, scheduler)
    return ctx
