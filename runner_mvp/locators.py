"""Selector resolver: maps a target phrase to an ordered sequence of locator candidates.

Candidates are produced lazily so the executor stops generating as soon as one
of them matches an element.
"""
from __future__ import annotations

import re
from typing import Iterable, Iterator, Set

KNOWN_TAGS = frozenset({
    "a", "button", "input", "select", "textarea", "form", "div", "span", "img", "label", "li", "ul",
    "nav", "header", "footer", "section", "table", "tr", "td", "h1", "h2", "h3", "h4", "h5", "h6", "p",
})

PROBE_ATTRIBUTES = ("data-testid", "data-test", "id", "name", "placeholder", "aria-label", "title", "value", "alt")

SEARCH_SELECTORS = (
    'input[name="q"]',
    'input[name="search"]',
    'input[type="search"]',
    'input[placeholder*="search" i]',
    '[aria-label*="search" i]',
    "#search",
    ".search-input",
    '[data-testid="search"]',
)

SUBMIT_SELECTORS = ('button[type="submit"]', 'input[type="submit"]')

_SUBMIT_WORDS = re.compile(r"\b(?:button|submit|search|log\s*in|login|sign\s*in|sign\s*up|register)\b", re.IGNORECASE)
_CONTROL_WORDS = re.compile(r"\b(?:button|btn|link|field|input|box|icon|tab|menu item|option)\b", re.IGNORECASE)
_TAG_PREFIX = re.compile(r"^([a-z][a-z0-9]*)(?=$|[\s#.\[:>+~,])")


def looks_like_selector(phrase: str) -> bool:
    """True when the phrase is already CSS, e.g. ``#email`` or ``input[type="email"]``."""
    if not phrase:
        return False
    if phrase[0] in "#.[":
        return True
    match = _TAG_PREFIX.match(phrase)
    if not match or match.group(1) not in KNOWN_TAGS:
        return False
    # "button" alone or "input[...]" are selectors, "button labelled Login" is prose.
    rest = phrase[match.end():]
    return not rest or not rest[0].isspace()


def _quote(text: str) -> str:
    return text.replace("\\", "\\\\").replace('"', '\\"')


def _label_of(phrase: str) -> str:
    """Strip control words so "login button" yields the visible label "login"."""
    label = _CONTROL_WORDS.sub(" ", phrase)
    label = re.sub(r"^\s*(?:the|a|an)\s+", "", label, flags=re.IGNORECASE)
    return " ".join(label.split())


def _generate(phrase: str) -> Iterator[str]:
    if looks_like_selector(phrase):
        yield phrase

    lowered = phrase.lower()
    label = _label_of(phrase) or phrase
    quoted_label = _quote(label)

    if "search" in lowered:
        yield from SEARCH_SELECTORS

    yield f'button:has-text("{quoted_label}")'
    yield f'a:has-text("{quoted_label}")'
    yield f'[role="button"]:has-text("{quoted_label}")'

    if _SUBMIT_WORDS.search(lowered):
        yield from SUBMIT_SELECTORS
        yield f'input[value*="{quoted_label}" i]'

    for text in _unique((phrase, label)):
        quoted = _quote(text)
        for attribute in PROBE_ATTRIBUTES:
            yield f'[{attribute}*="{quoted}" i]'

    yield f'text="{_quote(phrase)}"'


def _unique(items: Iterable[str]) -> Iterator[str]:
    seen: Set[str] = set()
    for item in items:
        if item and item not in seen:
            seen.add(item)
            yield item


def resolve_locators(phrase: str) -> Iterator[str]:
    """Lazily yield de-duplicated locator candidates for ``phrase``, most specific first."""
    phrase = (phrase or "").strip()
    if not phrase:
        return iter(())
    return _unique(_generate(phrase))
