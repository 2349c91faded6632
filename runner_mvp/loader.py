"""Helpers for loading test suites."""
from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from jsonschema import Draft7Validator

from .models import RunConfig, TestCase

SUITE_SCHEMA: Dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "required": ["testCases"],
    "properties": {
        "project": {"type": "string"},
        "config": {
            "type": "object",
            "properties": {
                "parallel": {"type": "integer"},
                "concurrency": {"type": "integer"},
                "environment": {"type": "string", "minLength": 1},
                "timeout": {"type": "integer", "exclusiveMinimum": 0},
                "aiOptimization": {"type": "boolean"},
                "baseUrl": {"type": ["string", "null"]},
                "suite": {"type": ["string", "null"]},
            },
        },
        "testCases": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["id", "title", "steps"],
                "properties": {
                    "id": {"type": ["string", "integer"]},
                    "title": {"type": "string"},
                    "description": {"type": "string"},
                    "steps": {"type": "array", "items": {"type": "string"}},
                    "expectedResult": {"type": "string"},
                },
            },
        },
    },
}

_VALIDATOR = Draft7Validator(SUITE_SCHEMA)


@dataclass
class Suite:
    """A project's test cases plus the run configuration they ship with."""

    project: str
    config: RunConfig
    test_cases: List[TestCase]


def _ensure_path(source: Any) -> Path:
    if isinstance(source, (str, Path)):
        return Path(source)
    raise TypeError(f"Unsupported path type: {type(source)!r}")


def load_json(source: Any) -> Dict[str, Any]:
    path = _ensure_path(source)
    if not path.exists():
        raise FileNotFoundError(f"Suite file '{path}' not found")
    with path.open("r", encoding="utf-8") as handle:
        return json.load(handle)


def validate_suite(raw: Dict[str, Any]) -> None:
    """Raise ``jsonschema.ValidationError`` for the first schema violation."""
    errors = sorted(_VALIDATOR.iter_errors(raw), key=lambda error: list(error.path))
    if errors:
        raise errors[0]


def parse_config(raw: Optional[Dict[str, Any]], overrides: Optional[Dict[str, Any]] = None) -> RunConfig:
    raw = dict(raw or {})
    for key, value in (overrides or {}).items():
        if value is not None:
            raw[key] = value
    kwargs: Dict[str, Any] = {}
    concurrency = raw.get("concurrency", raw.get("parallel"))
    if concurrency is not None:
        kwargs["concurrency"] = concurrency
    if raw.get("environment") is not None:
        kwargs["environment"] = raw["environment"]
    if raw.get("timeout") is not None:
        kwargs["timeout_ms"] = raw["timeout"]
    if raw.get("aiOptimization") is not None:
        kwargs["ai_optimization"] = bool(raw["aiOptimization"])
    kwargs["base_url"] = raw.get("baseUrl")
    kwargs["suite"] = raw.get("suite")
    return RunConfig(**kwargs)


def parse_test_cases(raw_cases: Sequence[Dict[str, Any]]) -> List[TestCase]:
    cases: List[TestCase] = []
    seen = set()
    for raw_case in raw_cases:
        case_id = str(raw_case["id"])
        if case_id in seen:
            raise ValueError(f"Duplicate test case id '{case_id}'")
        seen.add(case_id)
        cases.append(
            TestCase(
                id=case_id,
                title=raw_case["title"],
                description=raw_case.get("description", ""),
                steps=list(raw_case.get("steps", [])),
                expected_result=raw_case.get("expectedResult", ""),
            )
        )
    return cases


def parse_suite(raw: Dict[str, Any], config_overrides: Optional[Dict[str, Any]] = None) -> Suite:
    validate_suite(raw)
    return Suite(
        project=raw.get("project") or "default",
        config=parse_config(raw.get("config"), config_overrides),
        test_cases=parse_test_cases(raw["testCases"]),
    )


def load_suite(source: Any, config_overrides: Optional[Dict[str, Any]] = None) -> Suite:
    return parse_suite(load_json(source), config_overrides)


def load_test_cases(source: Any, case_ids: Optional[Sequence[str]] = None) -> List[TestCase]:
    """Load the suite's cases, optionally restricted to ``case_ids`` in suite order."""
    cases = load_suite(source).test_cases
    if not case_ids:
        return cases
    wanted = {str(case_id) for case_id in case_ids}
    known = {case.id for case in cases}
    missing = sorted(wanted - known)
    if missing:
        raise ValueError(f"Unknown test case id(s): {', '.join(missing)}")
    return [case for case in cases if case.id in wanted]
