"""Command-line interface for the test runner."""
from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Optional, Sequence

from dotenv import load_dotenv
from jsonschema import ValidationError

from .case_runner import CaseRunner
from .events import CaseCompletedEvent, ErrorEvent, ProgressEvent, RunEvent
from .loader import load_suite
from .models import Run, RunStatus
from .orchestrator import RunOrchestrator
from .report import SimpleReportGenerator
from .settings import RunnerSettings
from .store import JsonRunStore

logger = logging.getLogger("runner_mvp.cli")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run a natural-language browser test suite")
    parser.add_argument("--suite", required=True, help="Path to the suite JSON file")
    parser.add_argument(
        "--case",
        action="append",
        dest="cases",
        help="Only run the test case with this id (repeatable)",
    )
    parser.add_argument("--concurrency", type=int, help="Number of cases executed in parallel (1-20)")
    parser.add_argument("--environment", help="Environment label recorded on the run (default: staging)")
    parser.add_argument("--timeout", type=int, help="Run timeout in milliseconds (default: 300000)")
    parser.add_argument(
        "--output",
        help="Directory where run artifacts will be stored (default: results or RUNNER_OUTPUT_ROOT)",
    )
    parser.add_argument(
        "--headed",
        action="store_true",
        help="Run browser in headed mode (default is headless)",
    )
    parser.add_argument(
        "--summary",
        action="store_true",
        help="Print the run.json payload to stdout upon completion",
    )
    return parser


def _attach_run_logger(log_path: Path) -> logging.Handler:
    handler = logging.FileHandler(log_path, encoding="utf-8")
    handler.setFormatter(logging.Formatter("%(asctime)s | %(levelname)s | %(message)s"))
    logging.getLogger("runner_mvp").addHandler(handler)
    return handler


def _print_event(event: RunEvent) -> None:
    if isinstance(event, ProgressEvent):
        print(f"[{event.completed}/{event.total}]")
    elif isinstance(event, CaseCompletedEvent) and event.result is not None:
        marker = "✓" if event.result.passed else "✗"
        detail = event.result.message if event.result.passed else f"{event.result.error}: {event.result.message}"
        print(f"{marker} {event.case_id} {event.title} ({event.result.duration_ms} ms) - {detail}")
    elif isinstance(event, ErrorEvent):
        print(f"Run error: {event.message}")
    else:
        print(f"Run {event.type}")


def _stream_until_done(orchestrator: RunOrchestrator, run: Run) -> None:
    subscription = orchestrator.subscribe(run.id)
    orchestrator.start_run(run)
    try:
        for event in subscription:
            _print_event(event)
    except KeyboardInterrupt:
        print("\nCancelling run...")
        orchestrator.cancel_run(run.id)
        for event in subscription:
            _print_event(event)
    orchestrator.wait(run.id)


def main(argv: Optional[Sequence[str]] = None) -> int:
    load_dotenv()
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO)

    settings = RunnerSettings.from_env()
    if args.headed:
        settings.headless = False
    if args.output:
        settings.output_root = Path(args.output)
    # The report is built from the in-memory run after it finishes.
    settings.retain_terminal_runs = max(settings.retain_terminal_runs, 1)

    overrides = {"concurrency": args.concurrency, "environment": args.environment, "timeout": args.timeout}
    try:
        suite = load_suite(args.suite, config_overrides=overrides)
        cases = suite.test_cases
        if args.cases:
            wanted = set(args.cases)
            missing = sorted(wanted - {case.id for case in cases})
            if missing:
                raise ValueError(f"Unknown test case id(s): {', '.join(missing)}")
            cases = [case for case in cases if case.id in wanted]
    except (FileNotFoundError, ValueError, ValidationError) as exc:
        logger.error("Failed to load suite: %s", getattr(exc, "message", exc))
        return 2

    run = Run.create(suite.project, cases, suite.config)
    store = JsonRunStore(settings.output_root)
    run_dir = store.run_dir(run.id)
    run_dir.mkdir(parents=True, exist_ok=True)
    log_handler = _attach_run_logger(run_dir / "runner.log")

    orchestrator = RunOrchestrator(case_runner=CaseRunner(settings=settings), store=store, settings=settings)
    try:
        orchestrator.register_run(run)
        _stream_until_done(orchestrator, run)
        final = orchestrator.get_run(run.id)
        report_path = SimpleReportGenerator().generate_run_report(final, run_dir)
    finally:
        orchestrator.shutdown()
        logging.getLogger("runner_mvp").removeHandler(log_handler)
        log_handler.close()

    results = final.results
    print("")
    print("=" * 80)
    print("Run finished")
    print("=" * 80)
    print(f"Run ID: {final.id}")
    print(f"Status: {final.status.value}")
    if final.error:
        print(f"Error: {final.error}")
    print(f"Passed: {results.passed}/{results.total}")
    print(f"Failed: {results.failed}")
    print(f"Not run: {results.pending}")
    print(f"Duration: {results.duration_ms / 1000:.2f}s")
    print("")
    print(f"Results directory: {run_dir}")
    print("  - run.json: run snapshot")
    print("  - runner.log: execution log")
    print(f"  - {report_path.name}: test report")
    print("")

    if args.summary:
        print(json.dumps(final.to_dict(), ensure_ascii=False, indent=2))

    return 0 if final.status == RunStatus.COMPLETED and results.failed == 0 else 1


if __name__ == "__main__":
    sys.exit(main())
