"""Tests for StepExecutor against a fake page."""
from __future__ import annotations

import pytest

from runner_mvp.executor import ErrorKind, ExecutionError, StepExecutor
from runner_mvp.models import ActionType, ParsedStep
from runner_mvp.step_parser import parse_step


def _executor(page, **kwargs):
    logs = []
    return StepExecutor(page, log=logs.append, **kwargs), logs


def test_click_uses_first_visible_candidate_only(fake_page, fake_element):
    page = fake_page(elements={
        'button:has-text("login")': fake_element(visible=False),
        'a:has-text("login")': fake_element(),
        '[role="button"]:has-text("login")': fake_element(),
    })
    executor, _ = _executor(page)
    executor.execute(parse_step("click the login button"))

    assert page.actions == [("click", 'a:has-text("login")')]
    # Nothing after the matching candidate is tried.
    assert '[role="button"]:has-text("login")' not in page.locator_calls
    assert page.timeouts == [200]


def test_click_target_not_found(fake_page):
    page = fake_page()
    executor, _ = _executor(page)
    with pytest.raises(ExecutionError) as excinfo:
        executor.execute(parse_step("click the missing widget"))
    assert excinfo.value.kind == ErrorKind.TARGET_NOT_FOUND
    assert all(wait[2] == 5000 for wait in page.waits)


def test_action_failure_on_found_element_is_interaction_failed(fake_page, fake_element):
    page = fake_page(elements={
        "#go": fake_element(fail_on={"click"}),
        'button:has-text("#go")': fake_element(),
    })
    executor, _ = _executor(page)
    with pytest.raises(ExecutionError) as excinfo:
        executor.execute(parse_step("click #go"))
    assert excinfo.value.kind == ErrorKind.INTERACTION_FAILED
    assert 'button:has-text("#go")' not in page.locator_calls


def test_type_focuses_clears_and_types(fake_page, fake_element):
    page = fake_page(elements={"#email": fake_element()})
    executor, _ = _executor(page)
    executor.execute(parse_step("type 'a@b.co' into #email"))
    assert page.actions == [
        ("focus", "#email"),
        ("fill", "#email", ""),
        ("press_sequentially", "#email", "a@b.co"),
    ]


def test_type_without_value_is_invalid(fake_page):
    executor, _ = _executor(fake_page())
    with pytest.raises(ExecutionError) as excinfo:
        executor.execute(ParsedStep(action=ActionType.TYPE, target="#email", original_text="type into #email"))
    assert excinfo.value.kind == ErrorKind.INVALID_STEP


def test_select_option(fake_page, fake_element):
    page = fake_page(elements={"select": fake_element()})
    executor, _ = _executor(page)
    executor.execute(parse_step("Select 'Canada' from the country dropdown"))
    assert page.actions == [("select_option", "select", "Canada")]


def test_navigate_normalizes_and_waits_for_load(fake_page):
    page = fake_page()
    executor, logs = _executor(page)
    executor.execute(parse_step("navigate to example.com"))
    assert page.gotos == [("https://example.com", "domcontentloaded", 60000)]
    assert ("<page>", "load", 10000) in page.waits
    assert any("Navigated to https://example.com" in line for line in logs)


def test_navigate_relative_path_joins_base_url(fake_page):
    page = fake_page()
    executor, _ = _executor(page, base_url="https://app.test/root/")
    executor.execute(parse_step("go to /login"))
    assert page.gotos[0][0] == "https://app.test/root/login"


def test_navigate_relative_without_base_url_is_invalid(fake_page):
    executor, _ = _executor(fake_page())
    with pytest.raises(ExecutionError) as excinfo:
        executor.execute(parse_step("go to /login"))
    assert excinfo.value.kind == ErrorKind.INVALID_STEP


def test_navigate_retries_once_with_load(fake_page):
    page = fake_page(goto_failures=1)
    executor, _ = _executor(page)
    executor.execute(parse_step("open https://example.com"))
    assert [goto[1:] for goto in page.gotos] == [("domcontentloaded", 60000), ("load", 30000)]


def test_navigate_fails_after_retry(fake_page):
    page = fake_page(goto_failures=2)
    executor, _ = _executor(page)
    with pytest.raises(ExecutionError) as excinfo:
        executor.execute(parse_step("open https://example.com"))
    assert excinfo.value.kind == ErrorKind.NAVIGATION_FAILED


def test_navigate_without_target_is_invalid(fake_page):
    executor, _ = _executor(fake_page())
    with pytest.raises(ExecutionError) as excinfo:
        executor.execute(parse_step("navigate somewhere"))
    assert excinfo.value.kind == ErrorKind.INVALID_STEP


def test_wait_and_scroll(fake_page):
    page = fake_page()
    executor, _ = _executor(page)
    executor.execute(parse_step("wait 2 seconds"))
    executor.execute(parse_step("scroll to the bottom"))
    executor.execute(ParsedStep(action=ActionType.SCROLL, target="sideways", original_text="scroll sideways"))
    assert page.timeouts == [2000]
    assert page.scripts == [
        "window.scrollTo(0, document.body.scrollHeight)",
        "window.scrollBy(0, window.innerHeight)",
    ]


def test_assert_matches_body_text_case_insensitively(fake_page):
    page = fake_page(body_text="Hello, WELCOME back")
    executor, _ = _executor(page)
    executor.execute(parse_step("assert Welcome appears"))
    assert page.locator_calls == []


def test_assert_falls_back_to_attached_candidate(fake_page, fake_element):
    page = fake_page(elements={"#banner": fake_element(visible=False)})
    executor, _ = _executor(page)
    executor.execute(parse_step("verify #banner"))
    assert page.waits[0] == ("#banner", "attached", 2000)


def test_assert_failure(fake_page):
    executor, _ = _executor(fake_page(body_text="Nothing here"))
    with pytest.raises(ExecutionError) as excinfo:
        executor.execute(parse_step("assert 'Welcome' appears"))
    assert excinfo.value.kind == ErrorKind.ASSERTION_FAILED


def test_validate_expected(fake_page):
    page = fake_page(body_text="x" * 1000)
    executor, _ = _executor(page)
    executor.validate_expected("")
    executor.validate_expected("   ")
    executor.validate_expected("XXX")
    with pytest.raises(ExecutionError) as excinfo:
        executor.validate_expected("Dashboard")
    assert excinfo.value.kind == ErrorKind.ASSERTION_FAILED
    assert excinfo.value.message.endswith("x" * 500)
    assert "x" * 501 not in excinfo.value.message


def test_validate_expected_url(fake_page):
    page = fake_page()
    executor, _ = _executor(page)
    executor.execute(parse_step("open https://example.com/welcome"))
    executor.validate_expected("https://example.com/welcome")
    executor.validate_expected("/welcome")
