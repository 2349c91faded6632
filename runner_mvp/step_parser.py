"""Step parser: turns a free-text instruction into a ParsedStep.

Parsing never fails. An instruction that matches no keyword family is treated as
a click on its quoted text, or on the whole instruction.
"""
from __future__ import annotations

import re
from typing import Callable, List, Optional, Sequence, Tuple

from .models import ActionType, ParsedStep

DEFAULT_WAIT_MS = 3000

NAVIGATE_TRIGGERS = ("navigate", "go to", "open", "visit")
CLICK_TRIGGERS = ("click", "press", "tap")
TYPE_TRIGGERS = ("type", "enter", "input", "fill")
WAIT_TRIGGERS = ("wait", "pause", "delay")
ASSERT_TRIGGERS = ("verify", "check", "assert", "should", "expect")
SELECT_TRIGGERS = ("select", "choose", "pick")
SCROLL_TRIGGERS = ("scroll", "swipe")
HOVER_TRIGGERS = ("hover", "mouseover")

# Tags that count as a selector when they are the whole object of a step.
BARE_TAGS = frozenset({
    "a", "button", "input", "select", "textarea", "form", "div", "span", "img", "label", "li", "nav",
    "h1", "h2", "h3", "h4", "h5", "h6",
})

_URL_PATTERN = re.compile(r"https?://[^\s'\"<>]+", re.IGNORECASE)
_DOMAIN_PATTERN = re.compile(
    r"(?<![@\w.-])((?:[a-z0-9](?:[a-z0-9-]*[a-z0-9])?\.)+[a-z]{2,}(?::\d+)?(?:/[^\s'\"<>]*)?)",
    re.IGNORECASE,
)
_PATH_PATTERN = re.compile(r"(?:^|\s)(/[\w\-./?=&%#]*)")
# Quotes touching a word character on the outside are apostrophes, not delimiters.
_QUOTED_PATTERN = re.compile(r"(?<!\w)[\"'“‘](.+?)[\"'”’](?!\w)")
_SELECTOR_PATTERNS = (
    re.compile(r"(?:(?<=\s)|^)#[A-Za-z_][\w-]*"),
    re.compile(r"(?:(?<=\s)|^)\.[A-Za-z_][\w-]*"),
    re.compile(r"\[data-[\w-]+=[\"'].*?[\"']\]"),
    re.compile(r"\[[^\]]+\]"),
)
_VALUE_PATTERNS = (
    re.compile(r"\bwith\s+[\"'](.*?)[\"'](?!\w)", re.IGNORECASE),
    re.compile(r"\bvalue\s+[\"'](.*?)[\"'](?!\w)", re.IGNORECASE),
)
_UNQUOTED_VALUE_PATTERNS = (
    re.compile(r"^\s*(?:type|enter|input|fill(?:\s+in)?|select|choose|pick)\s+(.+?)\s+(?:into|in|on|from)\s+", re.IGNORECASE),
    re.compile(r"\bwith\s+(\S+)\s*$", re.IGNORECASE),
)
_TIMEOUT_PATTERN = re.compile(
    r"(\d+(?:\.\d+)?)\s*(milliseconds?|ms|seconds?|secs?|s)\b",
    re.IGNORECASE,
)
_TRAILING_PUNCTUATION = ".,;:!?)"

# (field keyword pattern, locator) in priority order.
_INPUT_FIELDS: Sequence[Tuple[re.Pattern, str]] = (
    (re.compile(r"user\s*name|\buser\b|login", re.IGNORECASE),
     'input[name*="user" i], input[id*="user" i], input[type="text"]'),
    (re.compile(r"password|\bpass\b", re.IGNORECASE), 'input[type="password"]'),
    (re.compile(r"e-?mail|\bmail\b", re.IGNORECASE), 'input[type="email"], input[name*="email" i]'),
    (re.compile(r"\bname\b|full\s*name", re.IGNORECASE), 'input[name*="name" i], input[id*="name" i]'),
    (re.compile(r"phone|mobile", re.IGNORECASE), 'input[type="tel"], input[name*="phone" i]'),
    (re.compile(r"address", re.IGNORECASE), 'input[name*="address" i], textarea[name*="address" i]'),
    (re.compile(r"search|query", re.IGNORECASE), 'input[type="search"], input[name="q"], input[name*="search" i]'),
)

_LEADING_FILLER = re.compile(
    r"^(?:(?:on|at|that|the|a|an|to|for|over|onto|if|whether|there\s+is|page\s+(?:contains|shows|displays|has))\s+)+",
    re.IGNORECASE,
)
_TRAILING_FILLER = re.compile(
    r"\s+(?:appears|is\s+(?:displayed|visible|shown|present)|exists|shows\s+up|on\s+(?:the\s+)?(?:page|screen))\s*$",
    re.IGNORECASE,
)


def _trigger_regex(keywords: Sequence[str]) -> re.Pattern:
    alternatives = "|".join(re.escape(keyword).replace(r"\ ", r"\s+") for keyword in keywords)
    return re.compile(rf"\b(?:{alternatives})(?:s|es|ed|ing)?\b", re.IGNORECASE)


class StepParser:
    """Classifies instructions by keyword family in a fixed priority order."""

    def __init__(self) -> None:
        self._families: List[Tuple[re.Pattern, Callable[[str], ParsedStep]]] = [
            (_trigger_regex(NAVIGATE_TRIGGERS), self._parse_navigate),
            (_trigger_regex(CLICK_TRIGGERS), self._parse_click),
            (_trigger_regex(TYPE_TRIGGERS), self._parse_type),
            (_trigger_regex(WAIT_TRIGGERS), self._parse_wait),
            (_trigger_regex(ASSERT_TRIGGERS), self._parse_assert),
            (_trigger_regex(SELECT_TRIGGERS), self._parse_select),
            (_trigger_regex(SCROLL_TRIGGERS), self._parse_scroll),
            (_trigger_regex(HOVER_TRIGGERS), self._parse_hover),
        ]

    def parse(self, instruction: str) -> ParsedStep:
        text = (instruction or "").strip()
        lowered = text.lower()
        for trigger, handler in self._families:
            if trigger.search(lowered):
                return handler(text)
        return ParsedStep(
            action=ActionType.CLICK,
            target=extract_quoted_text(text) or text,
            original_text=text,
        )

    # ------------------------------------------------------------------ families

    @staticmethod
    def _parse_navigate(text: str) -> ParsedStep:
        target = extract_url(text) or extract_quoted_text(text)
        return ParsedStep(action=ActionType.NAVIGATE, target=target, original_text=text)

    @staticmethod
    def _parse_click(text: str) -> ParsedStep:
        target = (extract_selector(text) or extract_quoted_text(text)
                  or _object_phrase(text, CLICK_TRIGGERS))
        return ParsedStep(action=ActionType.CLICK, target=target, original_text=text)

    @staticmethod
    def _parse_type(text: str) -> ParsedStep:
        value = extract_value(text)
        remainder = _without(text, value)
        target = extract_selector(remainder) or extract_input_field(remainder)
        return ParsedStep(action=ActionType.TYPE, target=target, value=value, original_text=text)

    @staticmethod
    def _parse_wait(text: str) -> ParsedStep:
        timeout = extract_timeout(text)
        return ParsedStep(
            action=ActionType.WAIT,
            timeout_ms=timeout if timeout is not None else DEFAULT_WAIT_MS,
            original_text=text,
        )

    @staticmethod
    def _parse_assert(text: str) -> ParsedStep:
        target = (extract_quoted_text(text) or extract_selector(text)
                  or _object_phrase(text, ASSERT_TRIGGERS))
        return ParsedStep(action=ActionType.ASSERT, target=target, original_text=text)

    @staticmethod
    def _parse_select(text: str) -> ParsedStep:
        value = extract_value(text)
        remainder = _without(text, value)
        target = extract_selector(remainder)
        if not target:
            target = extract_dropdown_field(remainder)
        return ParsedStep(action=ActionType.SELECT, target=target, value=value, original_text=text)

    @staticmethod
    def _parse_scroll(text: str) -> ParsedStep:
        return ParsedStep(action=ActionType.SCROLL, target=extract_scroll_target(text), original_text=text)

    @staticmethod
    def _parse_hover(text: str) -> ParsedStep:
        target = (extract_selector(text) or extract_quoted_text(text)
                  or _object_phrase(text, HOVER_TRIGGERS))
        return ParsedStep(action=ActionType.HOVER, target=target, original_text=text)


# ---------------------------------------------------------------------- extractors


def extract_url(text: str) -> Optional[str]:
    """Return the first URL-shaped substring, normalizing bare domains to https."""
    match = _URL_PATTERN.search(text)
    if match:
        return match.group(0).rstrip(_TRAILING_PUNCTUATION)
    match = _DOMAIN_PATTERN.search(text)
    if match:
        return "https://" + match.group(1).rstrip(_TRAILING_PUNCTUATION)
    match = _PATH_PATTERN.search(text)
    if match:
        return match.group(1).rstrip(_TRAILING_PUNCTUATION)
    return None


def extract_quoted_text(text: str) -> Optional[str]:
    match = _QUOTED_PATTERN.search(text)
    if match and match.group(1).strip():
        return match.group(1)
    return None


def extract_selector(text: str) -> Optional[str]:
    """Return a CSS-selector-shaped substring (#id, .class or [attr])."""
    for pattern in _SELECTOR_PATTERNS:
        match = pattern.search(text)
        if match:
            return match.group(0).rstrip(_TRAILING_PUNCTUATION.replace(")", ""))
    return None


def extract_value(text: str) -> Optional[str]:
    for pattern in _VALUE_PATTERNS:
        match = pattern.search(text)
        if match:
            return match.group(1)
    quoted = extract_quoted_text(text)
    if quoted is not None:
        return quoted
    for pattern in _UNQUOTED_VALUE_PATTERNS:
        match = pattern.search(text)
        if match:
            return match.group(1).strip().rstrip(_TRAILING_PUNCTUATION)
    return None


def extract_input_field(text: str) -> str:
    for pattern, locator in _INPUT_FIELDS:
        if pattern.search(text):
            return locator
    return "input"


def extract_dropdown_field(text: str) -> str:
    """Dropdown to act on; any native ``select`` element when none is named."""
    if "dropdown" in text.lower():
        return "select"
    match = re.search(r"\bfrom\s+(?:the\s+)?(.+?)\s*$", text, re.IGNORECASE)
    if match:
        field = match.group(1).rstrip(_TRAILING_PUNCTUATION).strip(" \"'")
        if field:
            return field
    return "select"


def extract_scroll_target(text: str) -> str:
    lowered = text.lower()
    for keyword in ("top", "bottom", "up", "down"):
        if re.search(rf"\b{keyword}\b", lowered):
            return keyword
    return "down"


def extract_timeout(text: str) -> Optional[int]:
    match = _TIMEOUT_PATTERN.search(text)
    if not match:
        return None
    amount = float(match.group(1))
    unit = match.group(2).lower()
    if unit.startswith("ms") or unit.startswith("milli"):
        return int(amount)
    return int(amount * 1000)


def _without(text: str, value: Optional[str]) -> str:
    if not value:
        return text
    return text.replace(value, " ", 1)


def _object_phrase(text: str, triggers: Sequence[str]) -> Optional[str]:
    """Descriptive object of a step: the words after the trigger, minus filler."""
    match = _trigger_regex(triggers).search(text)
    if not match:
        return None
    phrase = text[match.end():].strip().rstrip(_TRAILING_PUNCTUATION).strip()
    phrase = _LEADING_FILLER.sub("", phrase)
    phrase = _TRAILING_FILLER.sub("", phrase).strip()
    if not phrase:
        return None
    if phrase.lower() in BARE_TAGS:
        return phrase.lower()
    return phrase


_default_parser = StepParser()


def parse_step(instruction: str) -> ParsedStep:
    """Parse one instruction with the shared parser instance."""
    return _default_parser.parse(instruction)
