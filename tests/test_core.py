import threading

import pytest

from buildgroups.compose import Parallel, Sequence
from buildgroups.config import (
    DisplayNameCollision,
    InvalidVariants,
    MissingVariants,
    MissingWork,
    TaskRef,
    UnresolvedReference,
)
from buildgroups.core import compile_builds, resolve_references
from buildgroups.scheduler import TaskRunner


class RecordingScheduler:
    def __init__(self):
        self.tasks = {}
        self.watches = []

    def task(self, name, unit):
        self.tasks[name] = unit

    def watch(self, globs, unit, ignore_initial=False):
        self.watches.append((list(globs), unit, ignore_initial))


def _collector():
    seen = []
    lock = threading.Lock()

    def work(config):
        with lock:
            seen.append(config["display_name"])

    return work, seen


def test_css_group_runs_both_variants_in_parallel():
    work, seen = _collector()
    ctx = compile_builds(
        {"css": {"work": work, "variants": [{"id": ["main", "theme"], "src": ["m.scss", "t.scss"]}]}}
    )
    assert ctx.hierarchy == {"css": ["css > main", "css > theme"]}

    seq = ctx.assemble("css")
    assert isinstance(seq, Sequence)
    assert len(seq.units) == 1
    (par,) = seq.units
    assert isinstance(par, Parallel)
    assert len(par.units) == 2

    seq()
    assert sorted(seen) == ["css > main", "css > theme"]


def test_pre_reference_is_replaced_by_callback_chain():
    work, _ = _collector()
    ctx = compile_builds(
        {
            "a": {"work": work, "variants": [{"id": "y", "pre": ["b > x"]}]},
            "b": {"work": work, "variants": [{"id": "x"}]},
        }
    )
    pre = ctx.registry["a > y"].config.pre
    assert pre == ctx.registry["b > x"].callbacks
    assert not any(isinstance(p, (str, TaskRef)) for p in pre)


def test_group_reference_splices_every_child():
    work, _ = _collector()
    ctx = compile_builds(
        {
            "vendor": {"work": work, "variants": [{"id": ["jq", "lodash"]}]},
            "app": {"work": work, "variants": [{"id": "main", "pre": "vendor"}]},
        }
    )
    assert ctx.registry["app > main"].config.pre == ctx.registry["vendor"].callbacks
    assert len(ctx.registry["app > main"].config.pre) == 2


def test_resolution_is_idempotent():
    work, _ = _collector()
    ctx = compile_builds(
        {
            "a": {"work": work, "variants": [{"id": "y", "pre": ["b"], "post": "b > x"}]},
            "b": {"work": work, "variants": [{"id": "x"}]},
        }
    )
    before = {n: (e.config.pre, e.config.post) for n, e in ctx.registry.items()}
    resolve_references(ctx)
    after = {n: (e.config.pre, e.config.post) for n, e in ctx.registry.items()}
    assert before == after


def test_unresolved_reference_fails_compilation():
    work, _ = _collector()
    scheduler = RecordingScheduler()
    with pytest.raises(UnresolvedReference):
        compile_builds(
            {"a": {"work": work, "variants": [{"id": "y", "pre": ["nope"]}]}},
            scheduler=scheduler,
        )
    assert scheduler.tasks == {}


def test_duplicate_display_name_is_rejected():
    work, _ = _collector()
    scheduler = RecordingScheduler()
    with pytest.raises(DisplayNameCollision):
        compile_builds(
            {"css": {"work": work, "variants": [{"id": "main"}, {"id": "main"}]}},
            scheduler=scheduler,
        )
    assert scheduler.tasks == {}


def test_variant_named_like_a_group_is_rejected():
    work, _ = _collector()
    with pytest.raises(DisplayNameCollision):
        compile_builds(
            {
                "css": {"work": work, "variants": [{"id": "x", "display_name": "js"}]},
                "js": {"work": work, "variants": [{"id": "app"}]},
            }
        )


def test_bad_groups_are_reported_and_skipped(caplog):
    work, seen = _collector()
    ctx = compile_builds(
        {
            "nowork": {"variants": [{"id": "a"}]},
            "novariants": {"work": work},
            "notalist": {"work": work, "variants": "a"},
            "ok": {"work": work, "variants": [{"id": "a"}]},
        }
    )
    assert [type(d) for d in ctx.diagnostics] == [
        MissingWork,
        MissingVariants,
        InvalidVariants,
    ]
    assert ctx.hierarchy["nowork"] == []
    assert ctx.hierarchy["ok"] == ["ok > a"]
    assert "`nowork` work is NOT defined" in caplog.text

    ctx.assemble("nowork")()
    ctx.assemble("ok")()
    assert seen == ["ok > a"]


def test_minified_sibling_shares_base_work():
    work, seen = _collector()
    ctx = compile_builds(
        {"grp": {"work": work, "variants": [{"id": "x", "minify": True}, {"id": "y"}]}}
    )
    assert ctx.hierarchy["grp"] == ["grp > x", "grp > x > min", "grp > y"]
    base = ctx.registry["grp > x"].callbacks
    assert ctx.registry["grp > x > min"].callbacks == base
    assert ctx.registry["grp > x > min"].callbacks[0] is base[0]
    assert ctx.registry["grp > x > min"].config.minify is True
    assert ctx.units["grp > x > min"] is base[0]

    ctx.assemble("grp > x > min")()
    assert seen == ["grp > x"]


def test_parent_folds_children_fields_in_order():
    work, _ = _collector()
    p1, p2, q = (lambda: None), (lambda: None), (lambda: None)
    ctx = compile_builds(
        {
            "js": {
                "work": work,
                "variants": [
                    {"id": "a", "src": "a.js", "pre": p1, "watch": True},
                    {"id": "b", "src": "b.js", "pre": [p2, p1], "post": q},
                ],
            }
        }
    )
    parent = ctx.registry["js"]
    assert parent.config.pre == (p1, p2, p1)
    assert parent.config.post == (q,)
    assert parent.config.watch == ("a.js",)
    assert parent.callbacks == (
        ctx.registry["js > a"].callbacks + ctx.registry["js > b"].callbacks
    )


def test_parent_without_watch_globs_has_empty_watch():
    work, _ = _collector()
    ctx = compile_builds({"js": {"work": work, "variants": [{"id": "a"}]}})
    assert ctx.registry["js"].config.watch == ()


def test_execution_order_pre_parallel_post():
    events = []

    def clean():
        events.append("pre")

    def work(config, done):
        events.append("work")
        done()

    def report(done):
        events.append("post")
        done()

    ctx = compile_builds(
        {"js": {"work": work, "variants": [{"id": "a", "pre": clean, "post": report}]}}
    )
    ctx.assemble("js > a")()
    assert events == ["pre", "work", "post"]


def test_assemble_is_cached():
    work, _ = _collector()
    ctx = compile_builds({"js": {"work": work, "variants": [{"id": "a"}]}})
    assert ctx.assemble("js") is ctx.assemble("js")


def test_work_receives_merged_config():
    received = {}

    def work(config):
        received.update(config)

    ctx = compile_builds(
        {"css": {"work": work, "variants": [{"id": "main", "src": "m.scss", "dest": "public"}]}},
        {"debug": True},
    )
    ctx.assemble("css")()
    assert received["id"] == "main"
    assert received["src"] == "m.scss"
    assert received["dest"] == "public"
    assert received["debug"] is True
    assert received["filename"] == "main.css"
    assert received["unit"] is ctx.units["css > main"]
    assert set(received["units"]) == {"css > main"}


def test_default_registration_is_groups_and_aggregate_watch():
    work, _ = _collector()
    scheduler = RecordingScheduler()
    ctx = compile_builds(
        {
            "css": {"work": work, "variants": [{"id": "main", "src": "m.scss", "watch": True}]},
            "js": {"work": work, "variants": [{"id": "app"}]},
        },
        scheduler=scheduler,
    )
    assert set(scheduler.tasks) == {"css", "js", "watch"}
    assert scheduler.tasks["css"] is ctx.assemble("css")

    scheduler.tasks["watch"]()
    assert scheduler.watches == [(["m.scss"], ctx.assemble("css"), False)]


def test_sub_tasks_and_watch_tasks_registration():
    work, _ = _collector()
    scheduler = RecordingScheduler()
    ctx = compile_builds(
        {"css": {"work": work, "variants": [{"id": ["a", "b"], "src": ["a.scss", "b.scss"], "watch": True}]}},
        {"createSubTasks": True, "watchSubTasks": True, "watchTasks": True, "WatchName": False},
        scheduler,
    )
    assert set(scheduler.tasks) == {
        "css",
        "css > a",
        "css > b",
        "css > watch",
        "css > a > watch",
        "css > b > watch",
    }

    scheduler.tasks["css > a > watch"]()
    assert scheduler.watches == [(["a.scss", "b.scss"], ctx.assemble("css > a"), False)]


def test_group_named_like_aggregate_watch_task_is_rejected():
    work, _ = _collector()
    runner = TaskRunner()
    with pytest.raises(DisplayNameCollision):
        compile_builds(
            {"watch": {"work": work, "variants": [{"id": "a", "src": "a.js", "watch": True}]}},
            {},
            runner,
        )
    assert runner.tasks == {}


def test_variant_named_like_group_watch_task_is_rejected():
    work, _ = _collector()
    scheduler = RecordingScheduler()
    with pytest.raises(DisplayNameCollision):
        compile_builds(
            {
                "css": {
                    "work": work,
                    "variants": [{"id": ["a", "watch"], "src": ["a.scss", "w.scss"], "watch": True}],
                }
            },
            {"createSubTasks": True, "watchTasks": True},
            scheduler,
        )
    assert scheduler.tasks == {}


def test_watch_task_name_matching_unregistered_variant_is_rejected():
    work, _ = _collector()
    scheduler = RecordingScheduler()
    with pytest.raises(DisplayNameCollision):
        compile_builds(
            {
                "css": {
                    "work": work,
                    "variants": [{"id": ["a", "watch"], "src": ["a.scss", "w.scss"], "watch": True}],
                }
            },
            {"watchTasks": True},
            scheduler,
        )
    assert scheduler.tasks == {}
