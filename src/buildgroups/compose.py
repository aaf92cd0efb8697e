from __future__ import annotations

import asyncio
import inspect
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Any, Callable, Iterable, Mapping

from .config import NormalizedVariant
from .logging import get_logger


log = get_logger("buildgroups.compose")


def describe(unit: Any) -> str:
    return getattr(unit, "display_name", None) or getattr(unit, "__name__", repr(unit))


def _positional_capacity(fn: Callable[..., Any]) -> int:
    try:
        sig = inspect.signature(fn)
    except (TypeError, ValueError):
        return 0
    kinds = (
        inspect.Parameter.POSITIONAL_ONLY,
        inspect.Parameter.POSITIONAL_OR_KEYWORD,
    )
    return sum(
        1
        for p in sig.parameters.values()
        if p.kind in kinds and p.default is inspect.Parameter.empty
    )


async def _await(awaitable: Any) -> Any:
    return await awaitable


def settle(fn: Callable[..., Any], *args: Any) -> None:
    """Call `fn(*args)` and block until it signals completion.

    A function with room for one more positional parameter receives a
    `done(error=None)` callback and completes when it is called. Otherwise
    a returned awaitable is run to completion, and anything else counts as
    synchronous completion.
    """
    if _positional_capacity(fn) > len(args):
        finished = threading.Event()
        outcome: dict = {}

        def done(error: BaseException | None = None) -> None:
            outcome["error"] = error
            finished.set()

        fn(*args, done)
        finished.wait()
        error = outcome.get("error")
        if error is not None:
            if isinstance(error, BaseException):
                raise error
            raise RuntimeError(f"{describe(fn)} failed: {error}")
        return
    result = fn(*args)
    if inspect.isawaitable(result):
        asyncio.run(_await(result))


class WorkUnit:
    """A group's work function bound to one normalized variant."""

    def __init__(
        self,
        work: Callable[..., Any],
        variant: NormalizedVariant,
        units: Mapping[str, Any],
    ):
        self.work = work
        self.variant = variant
        self.units = units
        self.display_name = variant.display_name

    def config(self) -> dict:
        cfg = self.variant.as_dict()
        cfg["unit"] = self.units.get(self.display_name, self)
        cfg["units"] = dict(self.units)
        return cfg

    def __call__(self) -> None:
        log.debug("Run: %s", self.display_name)
        settle(self.work, self.config())

    def __repr__(self) -> str:
        return f"WorkUnit({self.display_name!r})"


class Sequence:
    """Runs its units strictly one after another."""

    def __init__(self, units: Iterable[Any], display_name: str = "sequence"):
        self.units = tuple(units)
        self.display_name = display_name

    def __call__(self) -> None:
        for unit in self.units:
            settle(unit)

    def __repr__(self) -> str:
        return f"Sequence({self.display_name!r}, {len(self.units)} units)"


class Parallel:
    """Starts all units at once and returns when every one has finished.

    The first failure is re-raised after the others complete.
    """

    def __init__(self, units: Iterable[Any], display_name: str = "parallel"):
        self.units = tuple(units)
        self.display_name = display_name

    def __call__(self) -> None:
        if len(self.units) <= 1:
            for unit in self.units:
                settle(unit)
            return
        first_error: BaseException | None = None
        with ThreadPoolExecutor(max_workers=len(self.units)) as executor:
            futures = {executor.submit(settle, unit): unit for unit in self.units}
            for fut in as_completed(futures):
                try:
                    fut.result()
                except Exception as e:  # noqa: BLE001
                    log.exception("Unit failed: %s", describe(futures[fut]))
                    if first_error is None:
                        first_error = e
        if first_error is not None:
            raise first_error

    def __repr__(self) -> str:
        return f"Parallel({self.display_name!r}, {len(self.units)} units)"
