"""Compile named build groups into a two-level task hierarchy.

Each group's variants become child tasks, the group itself becomes a parent
task running every child in parallel, and `pre`/`post` references to other
tasks are spliced into their execution chains before anything is handed to
the scheduler.
"""

from .config import (  # re-export for convenience
    BuildConfigError,
    BuildGroup,
    DisplayNameCollision,
    InvalidVariants,
    MissingVariants,
    MissingWork,
    NormalizedVariant,
    TaskRef,
    UnresolvedReference,
    WatchMode,
)
from .core import Compilation, compile_builds
from .scheduler import Scheduler, TaskRunner, Watcher

__all__ = [
    "BuildConfigError",
    "BuildGroup",
    "Compilation",
    "DisplayNameCollision",
    "InvalidVariants",
    "MissingVariants",
    "MissingWork",
    "NormalizedVariant",
    "Scheduler",
    "TaskRef",
    "TaskRunner",
    "UnresolvedReference",
    "WatchMode",
    "Watcher",
    "compile_builds",
]
