"""Run lifecycle management: dispatch, aggregation, cancellation and progress events."""
from __future__ import annotations

import copy
import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Deque, Dict, List, Optional

from .broadcaster import ProgressBroadcaster, Subscription
from .browser import BrowserProvisionError
from .case_runner import CaseRunner
from .events import CancelledEvent, CaseCompletedEvent, CompletedEvent, ErrorEvent, ProgressEvent, StartedEvent
from .executor import ErrorKind
from .models import CaseResult, CaseStatus, Run, RunStatus, TestCase
from .settings import RunnerSettings
from .store import InMemoryRunStore, PersistenceError


@dataclass
class _RunState:
    run: Run
    lock: threading.Lock = field(default_factory=threading.Lock)
    cancel_event: threading.Event = field(default_factory=threading.Event)
    done: threading.Event = field(default_factory=threading.Event)
    thread: Optional[threading.Thread] = None
    timer: Optional[threading.Timer] = None


class RunOrchestrator:
    """Owns every registered run and is the only writer of its state.

    Cases execute on a per-run worker pool; workers return results and the
    dispatch thread folds them into the run under the run's lock.
    """

    def __init__(
        self,
        case_runner=None,
        store=None,
        broadcaster: Optional[ProgressBroadcaster] = None,
        settings: Optional[RunnerSettings] = None,
    ) -> None:
        self.settings = settings or RunnerSettings()
        self.case_runner = case_runner or CaseRunner(settings=self.settings)
        self.store = store if store is not None else InMemoryRunStore()
        self.broadcaster = broadcaster or ProgressBroadcaster()
        self.logger = logging.getLogger("runner_mvp.orchestrator")
        self._lock = threading.Lock()
        self._runs: Dict[str, _RunState] = {}
        self._retired: Deque[str] = deque()

    # ------------------------------------------------------------------ public API

    def register_run(self, run: Run) -> None:
        """Take ownership of a pending run. The orchestrator keeps its own copy."""
        if run.status != RunStatus.PENDING:
            raise ValueError(f"Run {run.id} must be pending to register, got {run.status.value}")
        if self._load_snapshot(run.id) is not None:
            raise ValueError(f"Run {run.id} is already registered")
        with self._lock:
            if run.id in self._runs:
                raise ValueError(f"Run {run.id} is already registered")
            state = _RunState(run=copy.deepcopy(run))
            self._runs[run.id] = state
        with state.lock:
            self._persist(state.run)
        self.logger.info("Registered run %s with %d test cases", run.id, len(run.test_cases))

    def start_run(self, run: Run) -> None:
        """Begin executing ``run`` in the background and return immediately."""
        with self._lock:
            known = run.id in self._runs
        if not known:
            self.register_run(run)
        state = self._get_state(run.id)
        with state.lock:
            if state.thread is not None:
                raise ValueError(f"Run {run.id} has already been started")
            state.thread = threading.Thread(
                target=self._dispatch, args=(state,), name=f"run-{run.id}", daemon=True
            )
        state.thread.start()

    def cancel_run(self, run_id: str) -> bool:
        """Cancel a pending or running run. Returns False when there is nothing to cancel."""
        with self._lock:
            state = self._runs.get(run_id)
        if state is None:
            return False
        with state.lock:
            run = state.run
            if run.status not in (RunStatus.PENDING, RunStatus.RUNNING):
                return False
            was_pending = run.status == RunStatus.PENDING
            state.cancel_event.set()
            self._finish(run, RunStatus.CANCELLED)
            self.logger.info("Run %s cancelled (%d/%d cases finished)", run_id, run.results.completed, run.results.total)
            self.broadcaster.publish(run.id, CancelledEvent(run.id, run=run.to_dict()))
            never_dispatched = was_pending and state.thread is None
        if never_dispatched:
            self._retire(run_id)
            state.done.set()
        return True

    def get_run(self, run_id: str) -> Optional[Run]:
        """Return a detached copy of a run held in memory, or None."""
        with self._lock:
            state = self._runs.get(run_id)
        if state is None:
            return None
        with state.lock:
            return copy.deepcopy(state.run)

    def get_run_snapshot(self, run_id: str) -> Optional[Dict[str, Any]]:
        """Wire snapshot of a run, read from the store once it has been evicted from memory."""
        with self._lock:
            state = self._runs.get(run_id)
        if state is not None:
            with state.lock:
                return state.run.to_dict()
        return self._load_snapshot(run_id)

    def wait(self, run_id: str, timeout: Optional[float] = None) -> bool:
        """Block until the run has stopped dispatching. Returns False on timeout."""
        with self._lock:
            state = self._runs.get(run_id)
        if state is None:
            if self._load_snapshot(run_id) is not None:
                return True
            raise KeyError(run_id)
        return state.done.wait(timeout)

    def subscribe(self, run_id: str) -> Subscription:
        """Open an event stream that starts with the run's current progress."""
        with self._lock:
            state = self._runs.get(run_id)
        if state is None:
            snapshot = self._load_snapshot(run_id)
            if snapshot is None:
                raise KeyError(run_id)
            results = snapshot["results"]
            progress = ProgressEvent(run_id, completed=results["passed"] + results["failed"], total=results["total"])
            subscription = Subscription(run_id)
            subscription.put(progress)
            subscription.close()
            return subscription
        with state.lock:
            run = state.run
            progress = ProgressEvent(run.id, completed=run.results.completed, total=run.results.total)
            subscription = self.broadcaster.subscribe(run.id, [progress])
            if run.status.is_terminal:
                subscription.close()
        return subscription

    def shutdown(self, wait: bool = True, timeout: Optional[float] = None) -> None:
        with self._lock:
            states: List[_RunState] = list(self._runs.values())
        for state in states:
            self.cancel_run(state.run.id)
        if wait:
            for state in states:
                if state.thread is not None:
                    state.done.wait(timeout)

    # ------------------------------------------------------------------- dispatch

    def _dispatch(self, state: _RunState) -> None:
        run = state.run
        try:
            with state.lock:
                if run.status != RunStatus.PENDING:
                    self.logger.info("Run %s is %s, not dispatching", run.id, run.status.value)
                    return
                run.status = RunStatus.RUNNING
                run.started_at = datetime.utcnow()
                self._persist(run)
                self.broadcaster.publish(run.id, StartedEvent(run.id, run=run.to_dict()))

            workers = min(run.config.concurrency, self.settings.max_concurrency)
            self.logger.info(
                "Run %s started: %d cases, %d workers, environment=%s, aiOptimization=%s",
                run.id,
                len(run.test_cases),
                workers,
                run.config.environment,
                run.config.ai_optimization,
            )
            state.timer = threading.Timer(run.config.timeout_ms / 1000.0, self._on_timeout, args=(state,))
            state.timer.daemon = True
            state.timer.start()

            try:
                self._execute_cases(state, workers)
            except Exception as exc:  # pylint: disable=broad-except
                self.logger.exception("Dispatcher for run %s crashed", run.id)
                with state.lock:
                    self._fail(state, f"Dispatcher error: {exc}")

            with state.lock:
                if run.status == RunStatus.RUNNING:
                    self._finish(run, RunStatus.COMPLETED)
                    self.logger.info(
                        "Run %s completed: %d passed, %d failed",
                        run.id,
                        run.results.passed,
                        run.results.failed,
                    )
                    self.broadcaster.publish(run.id, CompletedEvent(run.id, run=run.to_dict()))
        finally:
            if state.timer is not None:
                state.timer.cancel()
            self._retire(run.id)
            state.done.set()

    def _execute_cases(self, state: _RunState, workers: int) -> None:
        run = state.run
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix=f"case-{run.id[-8:]}") as pool:
            futures = {pool.submit(self._run_case, state, case): case for case in run.test_cases}
            for future in as_completed(futures):
                case = futures[future]
                try:
                    result = future.result()
                except BrowserProvisionError as exc:
                    self.logger.error("Browser provisioning failed for case %s: %s", case.id, exc)
                    with state.lock:
                        self._fail(state, f"Browser provisioning failed: {exc}")
                    pool.shutdown(wait=False, cancel_futures=True)
                    return
                if result is not None:
                    self._record(state, case, result)

    def _run_case(self, state: _RunState, case: TestCase) -> Optional[CaseResult]:
        """Worker body. Never touches the run; provisioning failures propagate."""
        if state.cancel_event.is_set():
            return None
        try:
            return self.case_runner.run(case, state.cancel_event, base_url=state.run.config.base_url)
        except BrowserProvisionError:
            raise
        except Exception as exc:  # pylint: disable=broad-except
            self.logger.exception("Case runner crashed on %s", case.id)
            now = datetime.utcnow()
            return CaseResult(
                status=CaseStatus.FAIL,
                message=f"Unexpected error: {exc}",
                started_at=now,
                completed_at=now,
                duration_ms=0,
                error=ErrorKind.EXECUTION_ERROR.value,
            )

    def _record(self, state: _RunState, case: TestCase, result: CaseResult) -> None:
        run = state.run
        with state.lock:
            if run.status != RunStatus.RUNNING or run.case_results.get(case.id) is not None:
                self.logger.debug("Discarding result for %s in run %s (%s)", case.id, run.id, run.status.value)
                return
            run.case_results[case.id] = result
            run.results.pending -= 1
            if result.status == CaseStatus.PASS:
                run.results.passed += 1
            else:
                run.results.failed += 1
            self._persist(run)
            self.logger.info(
                "Case %s %s (%d/%d)", case.id, result.status.value, run.results.completed, run.results.total
            )
            self.broadcaster.publish(
                run.id, ProgressEvent(run.id, completed=run.results.completed, total=run.results.total)
            )
            self.broadcaster.publish(
                run.id, CaseCompletedEvent(run.id, case_id=case.id, title=case.title, result=result)
            )

    def _on_timeout(self, state: _RunState) -> None:
        with state.lock:
            if state.run.status == RunStatus.RUNNING:
                self.logger.warning("Run %s exceeded %d ms", state.run.id, state.run.config.timeout_ms)
                self._fail(state, f"Run timed out after {state.run.config.timeout_ms} ms")

    # --------------------------------------------------------------------- helpers

    def _fail(self, state: _RunState, message: str) -> None:
        """Move a running run to Failed. Caller holds the run lock."""
        run = state.run
        if run.status.is_terminal:
            return
        state.cancel_event.set()
        run.error = message
        self._finish(run, RunStatus.FAILED)
        self.logger.error("Run %s failed: %s", run.id, message)
        self.broadcaster.publish(run.id, ErrorEvent(run.id, message=message))

    def _finish(self, run: Run, status: RunStatus) -> None:
        """Enter a terminal state. Caller holds the run lock."""
        run.status = status
        run.completed_at = datetime.utcnow()
        run.results.duration_ms = int((run.completed_at - (run.started_at or run.created_at)).total_seconds() * 1000)
        self._persist(run)

    def _persist(self, run: Run) -> None:
        try:
            self.store.save(run)
        except PersistenceError as exc:
            self.logger.warning("Failed to persist run %s: %s", run.id, exc)

    def _retire(self, run_id: str) -> None:
        """Queue a finished run for eviction, dropping the oldest beyond the retention limit."""
        with self._lock:
            if run_id in self._retired or run_id not in self._runs:
                return
            self._retired.append(run_id)
            while len(self._retired) > self.settings.retain_terminal_runs:
                evicted = self._retired.popleft()
                self._runs.pop(evicted, None)
                self.logger.debug("Evicted run %s from memory", evicted)

    def _load_snapshot(self, run_id: str) -> Optional[Dict[str, Any]]:
        try:
            return self.store.load(run_id)
        except (OSError, ValueError) as exc:
            self.logger.warning("Failed to load run %s: %s", run_id, exc)
            return None

    def _get_state(self, run_id: str) -> _RunState:
        with self._lock:
            state = self._runs.get(run_id)
        if state is None:
            raise KeyError(run_id)
        return state
