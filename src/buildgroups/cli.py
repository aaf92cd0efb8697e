from __future__ import annotations

import importlib
from pathlib import Path
from typing import List, Optional, Tuple

import typer
import yaml

from .config import BuildConfigError
from .core import Compilation, compile_builds
from .logging import get_logger
from .scheduler import TaskRunner


app = typer.Typer(add_completion=False, help="Compile and run build group tasks")
log = get_logger("buildgroups.cli")


def load_config(path: str | Path | None) -> dict:
    if not path:
        return {}
    p = Path(path)
    with open(p, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def load_builds(module: str) -> Tuple[dict, dict]:
    """Import `module` and return its `BUILDS` and optional `OPTIONS`."""
    mod = importlib.import_module(module)
    builds = getattr(mod, "BUILDS", None)
    if not isinstance(builds, dict):
        raise typer.BadParameter(f"{module} does not define a BUILDS mapping")
    return builds, dict(getattr(mod, "OPTIONS", None) or {})


def _compile(
    builds_module: str,
    config: str | None,
    overrides: dict,
    interval: float = 0.5,
) -> Tuple[Compilation, TaskRunner]:
    builds, module_options = load_builds(builds_module)
    options = {**load_config(config), **module_options}
    options.update({k: v for k, v in overrides.items() if v is not None})
    runner = TaskRunner(interval=interval)
    try:
        ctx = compile_builds(builds, options, runner)
    except BuildConfigError as e:
        typer.echo(f"Invalid build configuration: {e}", err=True)
        raise typer.Exit(code=2)
    return ctx, runner


BuildsOpt = typer.Option(..., "--builds", "-b", help="Module exposing BUILDS (and OPTIONS)")
ConfigOpt = typer.Option(None, "--config", "-c", help="Path to YAML options file")
SubTasksOpt = typer.Option(
    None, "--create-sub-tasks/--no-create-sub-tasks", help="Register every variant as a task"
)
WatchSubTasksOpt = typer.Option(
    None, "--watch-sub-tasks/--no-watch-sub-tasks", help="Register a watch task per variant"
)
WatchTasksOpt = typer.Option(
    None, "--watch-tasks/--no-watch-tasks", help="Register a watch task per group"
)


@app.callback()
def setup(
    log_file: Optional[Path] = typer.Option(
        None,
        "--log-file",
        envvar="BUILDGROUPS_LOG_FILE",
        help="Also write logs to this rotating file",
    ),
):
    """Compile and run build group tasks."""
    if log_file:
        get_logger("buildgroups", log_file=log_file)


@app.command("list")
def list_tasks(
    builds: str = BuildsOpt,
    config: Optional[str] = ConfigOpt,
    create_sub_tasks: Optional[bool] = SubTasksOpt,
    watch_sub_tasks: Optional[bool] = WatchSubTasksOpt,
    watch_tasks: Optional[bool] = WatchTasksOpt,
):
    """Show the build hierarchy and the registered task names."""
    ctx, runner = _compile(
        builds,
        config,
        {
            "create_sub_tasks": create_sub_tasks,
            "watch_sub_tasks": watch_sub_tasks,
            "watch_tasks": watch_tasks,
        },
    )
    for group, children in ctx.hierarchy.items():
        typer.echo(group)
        for child in children:
            typer.echo(f"  {child}")
    for diag in ctx.diagnostics:
        typer.echo(f"! {diag}", err=True)
    typer.echo("Tasks:")
    for name in runner.names():
        typer.echo(f"- {name}")


@app.command()
def run(
    names: List[str] = typer.Argument(..., help="Task names, run in order"),
    builds: str = BuildsOpt,
    config: Optional[str] = ConfigOpt,
):
    """Run one or more tasks."""
    _, runner = _compile(builds, config, {"create_sub_tasks": True})
    for name in names:
        if name not in runner.tasks:
            typer.echo(f"Task not found: {name}")
            raise typer.Exit(code=1)
    for name in names:
        try:
            runner.run(name)
        except Exception:  # noqa: BLE001
            log.exception("Task failed: %s", name)
            raise typer.Exit(code=1)


@app.command()
def watch(
    name: Optional[str] = typer.Argument(None, help="Watch task to start"),
    builds: str = BuildsOpt,
    config: Optional[str] = ConfigOpt,
    interval: float = typer.Option(0.5, help="Polling interval in seconds"),
):
    """Arm a watch task and block until interrupted."""
    ctx, runner = _compile(
        builds,
        config,
        {"watch_tasks": True, "watch_sub_tasks": True, "create_sub_tasks": True},
        interval=interval,
    )
    task_name = name or ctx.options.get("watch_name")
    if not task_name or task_name not in runner.tasks:
        typer.echo(f"Watch task not found: {task_name}")
        raise typer.Exit(code=1)
    runner.run(task_name)
    try:
        runner.wait()
    except KeyboardInterrupt:  # pragma: no cover
        runner.stop()


def main():  # pragma: no cover
    app()


if __name__ == "__main__":  # pragma: no cover
    main()
