"""Markdown run report, no LLM involved."""
from __future__ import annotations

import base64
import binascii
import logging
import re
from datetime import datetime
from pathlib import Path
from typing import Optional

from .models import CaseResult, Run

DATA_URL_PREFIX = "data:image/png;base64,"

logger = logging.getLogger(__name__)


def _safe_name(case_id: str) -> str:
    return re.sub(r"[^\w.-]+", "_", case_id) or "case"


def _cell(text: Optional[str]) -> str:
    if not text:
        return "N/A"
    return " ".join(text.split()).replace("|", "\\|")


class SimpleReportGenerator:
    """Writes ``test_report.md`` and failure screenshots for a run."""

    @staticmethod
    def write_screenshot(result: CaseResult, path: Path) -> Optional[Path]:
        if not result.screenshot or not result.screenshot.startswith(DATA_URL_PREFIX):
            return None
        try:
            payload = base64.b64decode(result.screenshot[len(DATA_URL_PREFIX):], validate=True)
        except (binascii.Error, ValueError) as exc:
            logger.warning("Invalid screenshot data for %s: %s", path.stem, exc)
            return None
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(payload)
        return path

    # pylint: disable=too-many-locals
    def generate_run_report(self, run: Run, output_dir: Path) -> Path:
        output_dir.mkdir(parents=True, exist_ok=True)
        report_path = output_dir / "test_report.md"
        results = run.results
        started_at = run.started_at or run.created_at
        finished_at = run.completed_at or datetime.utcnow()
        total_duration = (finished_at - started_at).total_seconds()

        passed_rows = []
        failed_rows = []
        pending_rows = []
        for case in run.test_cases:
            result = run.case_results.get(case.id)
            if result is None:
                pending_rows.append(f"| `{case.id}` | {_cell(case.title)} |")
                continue
            duration = result.duration_ms / 1000
            if result.passed:
                passed_rows.append(f"| `{case.id}` | {_cell(case.title)} | {duration:.2f}s | {_cell(result.message)} |")
                continue
            screenshot = self.write_screenshot(result, output_dir / "screenshots" / f"{_safe_name(case.id)}.png")
            link = f"[png](screenshots/{screenshot.name})" if screenshot else "N/A"
            failed_rows.append(
                f"| `{case.id}` | {_cell(case.title)} | {duration:.2f}s | {_cell(result.error)} | "
                f"{_cell(result.message)} | {link} |"
            )

        success_rate = results.passed / results.total * 100 if results.total else 0.0
        lines = [
            "# Test Run Report",
            "",
            f"**Run ID**: `{run.id}`  ",
            f"**Project**: {run.project_ref}  ",
            f"**Status**: {run.status.value}  ",
            f"**Environment**: {run.config.environment}  ",
            f"**Executed**: {started_at.strftime('%Y-%m-%d %H:%M:%S')} - {finished_at.strftime('%Y-%m-%d %H:%M:%S')}  ",
            f"**Duration**: {total_duration:.2f}s  ",
        ]
        if run.error:
            lines.append(f"**Error**: {run.error}  ")
        lines += [
            "",
            "## Summary",
            "",
            "| Metric | Value |",
            "|------|------|",
            f"| Total cases | {results.total} |",
            f"| Passed | {results.passed} |",
            f"| Failed | {results.failed} |",
            f"| Not run | {results.pending} |",
            f"| Success rate | {success_rate:.1f}% |",
            f"| Parallel workers | {run.config.concurrency} |",
            "",
        ]
        if failed_rows:
            lines += [
                "## Failed cases",
                "",
                "| Case ID | Title | Duration | Error | Message | Screenshot |",
                "|---------|-------|----------|-------|---------|------------|",
                *failed_rows,
                "",
            ]
        if passed_rows:
            lines += [
                "## Passed cases",
                "",
                "| Case ID | Title | Duration | Message |",
                "|---------|-------|----------|---------|",
                *passed_rows,
                "",
            ]
        if pending_rows:
            lines += ["## Not run", "", "| Case ID | Title |", "|---------|-------|", *pending_rows, ""]
        lines += ["---", "", f"*Generated at {datetime.utcnow().strftime('%Y-%m-%d %H:%M:%S UTC')}*", ""]

        report_path.write_text("\n".join(lines), encoding="utf-8")
        return report_path
