"""Scheduler boundary and a small in-process implementation.

`compile_builds` only needs something with `task(name, unit)` and
`watch(globs, unit, ignore_initial=...)`. `TaskRunner` provides both: it keeps
registrations by name, runs them on demand and arms polling `Watcher`s.
"""

from __future__ import annotations

import threading
from typing import Any, Callable, Dict, Iterable, List, Protocol

from . import cache as cache_mod
from .compose import describe, settle
from .logging import get_logger


class Scheduler(Protocol):
    def task(self, name: str, unit: Callable[..., Any]) -> None:
        ...

    def watch(
        self,
        globs: Iterable[str],
        unit: Callable[..., Any],
        ignore_initial: bool = False,
    ) -> Any:
        ...


def _spawn(fn: Callable[[], None]) -> None:
    threading.Thread(target=fn, daemon=True).start()


class Watcher:
    """Re-runs `unit` for every change seen under `globs`.

    Each changed path starts one fresh run; overlapping runs are not
    coalesced.
    """

    def __init__(
        self,
        globs: Iterable[str],
        unit: Callable[..., Any],
        interval: float = 0.5,
        ignore_initial: bool = False,
        checksum: bool = False,
        dispatch: Callable[[Callable[[], None]], None] = _spawn,
    ):
        self.globs = list(globs)
        self.unit = unit
        self.interval = interval
        self.ignore_initial = ignore_initial
        self.checksum = checksum
        self.dispatch = dispatch
        self.logger = get_logger(f"buildgroups.watch.{describe(unit)}")
        self._last: Dict[str, cache_mod.Fingerprint] = {}
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def arm(self) -> None:
        self._last = cache_mod.snapshot(self.globs, self.checksum)
        self.logger.info("Watching %d files: %s", len(self._last), ", ".join(self.globs))
        if not self.ignore_initial:
            self.dispatch(self._run)

    def poll(self) -> List[str]:
        current = cache_mod.snapshot(self.globs, self.checksum)
        changed = cache_mod.changed_paths(self._last, current)
        self._last = current
        for path in changed:
            self.logger.info("Changed: %s", path)
            self.dispatch(self._run)
        return changed

    def _run(self) -> None:
        try:
            settle(self.unit)
        except Exception:  # noqa: BLE001
            # Keep watching after a failed run
            self.logger.exception("Run failed: %s", describe(self.unit))

    def _loop(self) -> None:
        while not self._stop.wait(self.interval):
            self.poll()

    def start(self) -> "Watcher":
        self.arm()
        self._thread = threading.Thread(target=self._loop, daemon=True)
        self._thread.start()
        return self

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join()

    def join(self) -> None:
        if self._thread is not None:
            self._thread.join()


class TaskRunner:
    def __init__(self, interval: float = 0.5, checksum: bool = False):
        self.interval = interval
        self.checksum = checksum
        self.tasks: Dict[str, Callable[..., Any]] = {}
        self.watchers: List[Watcher] = []
        self.logger = get_logger("buildgroups.runner")

    def task(self, name: str, unit: Callable[..., Any]) -> None:
        if name in self.tasks:
            raise ValueError(f"Task already registered: {name}")
        self.tasks[name] = unit

    def names(self) -> List[str]:
        return sorted(self.tasks)

    def run(self, name: str) -> None:
        if name not in self.tasks:
            raise KeyError(f"Unknown task: {name}")
        self.logger.info("Run: %s", name)
        settle(self.tasks[name])
        self.logger.info("Done: %s", name)

    def watch(
        self,
        globs: Iterable[str],
        unit: Callable[..., Any],
        ignore_initial: bool = False,
    ) -> Watcher:
        watcher = Watcher(
            globs,
            unit,
            interval=self.interval,
            ignore_initial=ignore_initial,
            checksum=self.checksum,
        )
        self.watchers.append(watcher)
        return watcher.start()

    def wait(self) -> None:
        for watcher in list(self.watchers):
            watcher.join()

    def stop(self) -> None:
        for watcher in self.watchers:
            watcher.stop()
