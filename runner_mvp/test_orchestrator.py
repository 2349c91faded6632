"""Tests for the run lifecycle, worker pool and cancellation."""
from __future__ import annotations

import threading
from datetime import datetime

import pytest

from runner_mvp.browser import BrowserProvisionError
from runner_mvp.models import CaseResult, CaseStatus, Run, RunConfig, RunStatus, TestCase
from runner_mvp.orchestrator import RunOrchestrator
from runner_mvp.settings import RunnerSettings
from runner_mvp.store import InMemoryRunStore, JsonRunStore, PersistenceError


def _result(status=CaseStatus.PASS, error=None):
    now = datetime.utcnow()
    return CaseResult(status=status, message=status.value, started_at=now, completed_at=now, duration_ms=1, error=error)


class ScriptedRunner:
    """Case runner double; ``behaviors`` maps case id to a callable(cancel_event)."""

    def __init__(self, behaviors=None):
        self.behaviors = behaviors or {}
        self.calls = []
        self.base_urls = []
        self._lock = threading.Lock()

    def run(self, test_case, cancel_event, base_url=None):
        with self._lock:
            self.calls.append(test_case.id)
            self.base_urls.append(base_url)
        behavior = self.behaviors.get(test_case.id)
        if behavior is None:
            return _result()
        return behavior(cancel_event)


class FailingStore(InMemoryRunStore):
    def save(self, run):
        raise PersistenceError("disk full")


class RecordingStore(InMemoryRunStore):
    """Keeps every saved snapshot, not just the latest."""

    def __init__(self):
        super().__init__()
        self.history = []

    def save(self, run):
        super().save(run)
        self.history.append(run.to_dict())


def _cases(*ids):
    return [TestCase(id=case_id, title=f"Case {case_id}", steps=["navigate to example.com"]) for case_id in ids]


def _run(ids=("a", "b", "c"), **config):
    return Run.create("proj-1", _cases(*ids), RunConfig(**config))


def test_run_completes_and_aggregates():
    runner = ScriptedRunner({"b": lambda _cancel: _result(CaseStatus.FAIL, "AssertionFailed")})
    store = InMemoryRunStore()
    orchestrator = RunOrchestrator(case_runner=runner, store=store)
    run = _run(concurrency=2, base_url="https://app.test")
    orchestrator.register_run(run)
    subscription = orchestrator.subscribe(run.id)

    orchestrator.start_run(run)
    events = list(subscription)
    assert orchestrator.wait(run.id, timeout=5)

    types = [event.type for event in events]
    assert types[0] == "progress"
    assert types[1] == "started"
    assert types[-1] == "completed"
    assert types.count("test_completed") == 3
    progress = [event.completed for event in events if event.type == "progress"]
    assert progress == sorted(progress)
    assert progress[-1] == 3

    final = orchestrator.get_run(run.id)
    assert final.status == RunStatus.COMPLETED
    assert (final.results.passed, final.results.failed, final.results.pending) == (2, 1, 0)
    assert final.started_at is not None and final.completed_at is not None
    assert final.case_results["b"].error == "AssertionFailed"
    assert store.load(run.id)["status"] == "completed"
    assert set(runner.base_urls) == {"https://app.test"}


def test_cases_run_in_parallel():
    barrier = threading.Barrier(2, timeout=5)

    def meet(_cancel):
        barrier.wait()
        return _result()

    runner = ScriptedRunner({"a": meet, "b": meet})
    orchestrator = RunOrchestrator(case_runner=runner)
    run = _run(concurrency=2)
    orchestrator.start_run(run)

    assert orchestrator.wait(run.id, timeout=10)
    final = orchestrator.get_run(run.id)
    assert final.status == RunStatus.COMPLETED
    assert final.results.passed == 3


def test_cancel_pending_run():
    runner = ScriptedRunner()
    orchestrator = RunOrchestrator(case_runner=runner)
    run = _run()
    orchestrator.register_run(run)

    assert orchestrator.cancel_run(run.id) is True
    assert orchestrator.cancel_run(run.id) is False
    assert orchestrator.wait(run.id, timeout=1)

    final = orchestrator.get_run(run.id)
    assert final.status == RunStatus.CANCELLED
    assert final.results.pending == final.results.total == 3

    orchestrator.start_run(run)
    assert orchestrator.wait(run.id, timeout=5)
    assert runner.calls == []
    assert orchestrator.get_run(run.id).status == RunStatus.CANCELLED


def test_cancel_running_run_discards_later_results():
    started = threading.Event()

    def block(cancel):
        started.set()
        cancel.wait(5)
        return _result(CaseStatus.FAIL, "Cancelled")

    runner = ScriptedRunner({case_id: block for case_id in "abc"})
    orchestrator = RunOrchestrator(case_runner=runner)
    run = _run(concurrency=1)
    orchestrator.register_run(run)
    subscription = orchestrator.subscribe(run.id)
    orchestrator.start_run(run)
    assert started.wait(5)

    assert orchestrator.cancel_run(run.id) is True
    assert orchestrator.cancel_run(run.id) is False
    assert orchestrator.wait(run.id, timeout=5)

    types = [event.type for event in subscription]
    assert types[-1] == "cancelled"
    assert types.count("cancelled") == 1
    assert "test_completed" not in types
    final = orchestrator.get_run(run.id)
    assert final.status == RunStatus.CANCELLED
    assert final.results.pending == 3
    assert runner.calls == ["a"]


def test_terminal_run_is_immutable():
    orchestrator = RunOrchestrator(case_runner=ScriptedRunner())
    run = _run()
    orchestrator.start_run(run)
    assert orchestrator.wait(run.id, timeout=5)

    snapshot = orchestrator.get_run(run.id)
    snapshot.results.passed = 99
    snapshot.status = RunStatus.RUNNING

    assert orchestrator.cancel_run(run.id) is False
    again = orchestrator.get_run(run.id)
    assert again.status == RunStatus.COMPLETED
    assert again.results.passed == 3


def test_provision_failure_fails_run():
    def no_browser(_cancel):
        raise BrowserProvisionError("chromium missing")

    orchestrator = RunOrchestrator(case_runner=ScriptedRunner({"a": no_browser, "b": no_browser, "c": no_browser}))
    run = _run(concurrency=1)
    orchestrator.register_run(run)
    subscription = orchestrator.subscribe(run.id)
    orchestrator.start_run(run)
    events = list(subscription)
    assert orchestrator.wait(run.id, timeout=5)

    assert events[-1].type == "error"
    assert "chromium missing" in events[-1].message
    final = orchestrator.get_run(run.id)
    assert final.status == RunStatus.FAILED
    assert "Browser provisioning failed" in final.error


def test_run_timeout_fails_run():
    def block(cancel):
        cancel.wait(5)
        return _result(CaseStatus.FAIL, "Cancelled")

    orchestrator = RunOrchestrator(case_runner=ScriptedRunner({"a": block}))
    run = _run(ids=("a",), timeout_ms=50)
    orchestrator.start_run(run)
    assert orchestrator.wait(run.id, timeout=5)

    final = orchestrator.get_run(run.id)
    assert final.status == RunStatus.FAILED
    assert final.error.startswith("Run timed out")
    assert final.results.pending == 1


def test_runner_crash_is_recorded_as_failed_case():
    def crash(_cancel):
        raise RuntimeError("unexpected")

    orchestrator = RunOrchestrator(case_runner=ScriptedRunner({"b": crash}))
    run = _run()
    orchestrator.start_run(run)
    assert orchestrator.wait(run.id, timeout=5)

    final = orchestrator.get_run(run.id)
    assert final.status == RunStatus.COMPLETED
    assert final.case_results["b"].error == "ExecutionError"
    assert final.results.failed == 1


def test_persistence_failure_does_not_change_state():
    orchestrator = RunOrchestrator(case_runner=ScriptedRunner(), store=FailingStore())
    run = _run()
    orchestrator.start_run(run)
    assert orchestrator.wait(run.id, timeout=5)
    assert orchestrator.get_run(run.id).status == RunStatus.COMPLETED


def test_subscribe_to_terminal_run_gets_snapshot_then_ends():
    orchestrator = RunOrchestrator(case_runner=ScriptedRunner())
    run = _run()
    orchestrator.start_run(run)
    assert orchestrator.wait(run.id, timeout=5)

    events = list(orchestrator.subscribe(run.id))
    assert len(events) == 1
    assert (events[0].type, events[0].completed, events[0].total) == ("progress", 3, 3)


def test_unknown_run():
    orchestrator = RunOrchestrator(case_runner=ScriptedRunner())
    assert orchestrator.get_run("missing") is None
    assert orchestrator.cancel_run("missing") is False
    with pytest.raises(KeyError):
        orchestrator.subscribe("missing")


def test_register_twice_is_rejected():
    orchestrator = RunOrchestrator(case_runner=ScriptedRunner())
    run = _run()
    orchestrator.register_run(run)
    with pytest.raises(ValueError):
        orchestrator.register_run(run)


def test_shutdown_cancels_active_runs():
    def block(cancel):
        cancel.wait(5)
        return _result(CaseStatus.FAIL, "Cancelled")

    orchestrator = RunOrchestrator(case_runner=ScriptedRunner({"a": block}))
    run = _run(ids=("a",))
    orchestrator.start_run(run)
    orchestrator.shutdown(timeout=5)
    assert orchestrator.get_run(run.id).status == RunStatus.CANCELLED


def test_aggregate_counts_add_up_in_every_saved_snapshot():
    runner = ScriptedRunner({"b": lambda _cancel: _result(CaseStatus.FAIL, "AssertionFailed")})
    store = RecordingStore()
    orchestrator = RunOrchestrator(case_runner=runner, store=store)
    run = _run(ids=("a", "b", "c", "d"), concurrency=2)
    orchestrator.start_run(run)
    assert orchestrator.wait(run.id, timeout=5)

    # register, start, four results, finish
    assert len(store.history) == 7
    for snapshot in store.history:
        results = snapshot["results"]
        assert results["passed"] + results["failed"] + results["pending"] == results["total"] == 4
    assert [snapshot["status"] for snapshot in store.history][-1] == "completed"


def test_registered_run_is_detached_from_caller():
    orchestrator = RunOrchestrator(case_runner=ScriptedRunner())
    run = _run()
    orchestrator.register_run(run)

    run.status = RunStatus.COMPLETED
    run.results.passed = 99
    run.test_cases.clear()

    stored = orchestrator.get_run(run.id)
    assert stored.status == RunStatus.PENDING
    assert stored.results.passed == 0
    assert len(stored.test_cases) == 3

    orchestrator.start_run(run)
    assert orchestrator.wait(run.id, timeout=5)
    assert orchestrator.get_run(run.id).results.passed == 3
    assert run.results.passed == 99


def test_finished_runs_beyond_retention_are_evicted():
    store = InMemoryRunStore()
    orchestrator = RunOrchestrator(
        case_runner=ScriptedRunner(), store=store, settings=RunnerSettings(retain_terminal_runs=2)
    )
    runs = [_run(ids=("a",)) for _ in range(5)]
    for run in runs:
        orchestrator.start_run(run)
        assert orchestrator.wait(run.id, timeout=5)

    assert [run.id for run in runs if orchestrator.get_run(run.id) is not None] == [runs[3].id, runs[4].id]
    assert len(orchestrator._runs) == 2  # pylint: disable=protected-access

    evicted = runs[0].id
    snapshot = orchestrator.get_run_snapshot(evicted)
    assert snapshot["status"] == "completed"
    assert snapshot["results"]["passed"] == 1
    assert orchestrator.wait(evicted, timeout=0)
    assert orchestrator.cancel_run(evicted) is False
    events = list(orchestrator.subscribe(evicted))
    assert [(event.type, event.completed, event.total) for event in events] == [("progress", 1, 1)]
    with pytest.raises(ValueError):
        orchestrator.register_run(runs[0])


def test_active_runs_are_never_evicted():
    gate = threading.Event()
    started = threading.Event()

    def slow(_cancel):
        started.set()
        gate.wait(5)
        return _result()

    orchestrator = RunOrchestrator(
        case_runner=ScriptedRunner({"slow": slow}),
        settings=RunnerSettings(retain_terminal_runs=0),
    )
    active = _run(ids=("slow",))
    orchestrator.start_run(active)
    assert started.wait(5)
    finished = _run(ids=("a",))
    orchestrator.start_run(finished)
    assert orchestrator.wait(finished.id, timeout=5)

    assert orchestrator.get_run(finished.id) is None
    assert orchestrator.get_run(active.id).status == RunStatus.RUNNING
    gate.set()
    assert orchestrator.wait(active.id, timeout=5)
    assert orchestrator.get_run_snapshot(active.id)["status"] == "completed"


def test_snapshot_survives_restart_with_json_store(tmp_path):
    first = RunOrchestrator(case_runner=ScriptedRunner(), store=JsonRunStore(tmp_path))
    run = _run()
    first.start_run(run)
    assert first.wait(run.id, timeout=5)
    first.shutdown()

    second = RunOrchestrator(case_runner=ScriptedRunner(), store=JsonRunStore(tmp_path))
    assert second.get_run(run.id) is None
    snapshot = second.get_run_snapshot(run.id)
    assert snapshot["id"] == run.id
    assert snapshot["status"] == "completed"
    assert snapshot["results"]["passed"] == 3
    assert second.get_run_snapshot("missing") is None
    assert second.get_run_snapshot("../etc") is None
