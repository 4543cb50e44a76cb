"""Element resolution cascade.

Every click, type and extract goes through the same ordered list of
locator strategies (evaluated top-to-bottom; first success wins):

    1. structural-locator    The descriptor used verbatim as a CSS/engine selector.
    2. text-match            Exact visible text.
    3. role-label            Accessible role + name, or an associated <label>.
    4. attribute-substring   aria-label / id / name / placeholder contain the
                             descriptor (case-insensitive).
    5. structural-path       Synthesized XPath on text containment.
    6. dom-scan              Script scan of interactive elements, scored by
                             word overlap (>= 50 %).
    7. raw-coordinate        Click only: an explicit ``x,y`` hint or a known
                             UI position (account menu, hamburger menu, search).

Each backend supplies its own locator callables for the strategies it
supports; ``ElementCascade`` only sequences them. A strategy "succeeds" when
it finds a node *and* the action on that node completes. Strategies never
share state: each attempt resolves a fresh handle.
"""

from __future__ import annotations

import enum
import json as _json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Sequence

from humanbrowse.exceptions import ElementNotFoundError, ProtocolUnavailableError
from humanbrowse.settings.config import Viewport

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Strategy enumeration
# ---------------------------------------------------------------------------


class Strategy(str, enum.Enum):
    """Locator strategies, in cascade order."""

    STRUCTURAL_LOCATOR = "structural-locator"
    TEXT_MATCH = "text-match"
    ROLE_LABEL = "role-label"
    ATTRIBUTE_SUBSTRING = "attribute-substring"
    STRUCTURAL_PATH = "structural-path"
    DOM_SCAN = "dom-scan"
    RAW_COORDINATE = "raw-coordinate"


CASCADE_ORDER: tuple[Strategy, ...] = tuple(Strategy)

# Strategies that only make sense for clicks.
CLICK_ONLY: frozenset[Strategy] = frozenset({Strategy.RAW_COORDINATE})


@dataclass(frozen=True)
class ResolvedElement:
    """A node located by one strategy; valid only for the current action."""

    handle: Any
    strategy: Strategy
    descriptor: str


@dataclass
class CascadeOutcome:
    """Successful cascade run: the strategy that won and what the action returned."""

    strategy: Strategy
    value: Any
    element: ResolvedElement
    attempts: list[tuple[str, str]] = field(default_factory=list)


Locator = Callable[[str], Awaitable[Any]]
Action = Callable[[ResolvedElement], Awaitable[Any]]


# ---------------------------------------------------------------------------
# Combinator
# ---------------------------------------------------------------------------


class ElementCascade:
    """Runs locator strategies strictly in order and short-circuits on success.

    Args:
        locators: ``(strategy, locate)`` pairs. ``locate(descriptor)`` returns
            a handle, or ``None`` when nothing matched.
    """

    def __init__(self, locators: Sequence[tuple[Strategy, Locator]]) -> None:
        self._locators = list(locators)

    @property
    def strategies(self) -> list[Strategy]:
        return [strategy for strategy, _ in self._locators]

    async def run(self, descriptor: str, action: str, act: Action) -> CascadeOutcome:
        """Resolve *descriptor* and apply *act* to the first node that works.

        ``act`` returns a falsy value (or raises) when the action did not
        complete on that node, which moves the cascade to the next strategy.

        Raises:
            ElementNotFoundError: Every applicable strategy failed. The error
                lists each strategy with the reason it failed.
            ProtocolUnavailableError: The browser connection is gone.
        """
        attempts: list[tuple[str, str]] = []
        for strategy, locate in self._locators:
            if strategy in CLICK_ONLY and action != "click":
                continue
            try:
                handle = await locate(descriptor)
                if handle is None:
                    attempts.append((strategy.value, "no match"))
                    logger.debug("%s: %s found nothing for %r", action, strategy.value, descriptor)
                    continue
                element = ResolvedElement(handle=handle, strategy=strategy, descriptor=descriptor)
                value = await act(element)
            except ProtocolUnavailableError:
                raise
            except Exception as e:
                attempts.append((strategy.value, f"error: {e}"))
                logger.debug("%s: %s failed for %r: %s", action, strategy.value, descriptor, e)
                continue

            if value is None or value is False:
                attempts.append((strategy.value, "action did not complete"))
                logger.debug("%s: %s matched %r but the action did not complete", action, strategy.value, descriptor)
                continue

            logger.info("%s %r resolved via %s", action, descriptor, strategy.value)
            return CascadeOutcome(strategy=strategy, value=value, element=element, attempts=attempts)

        logger.warning("All %s strategies failed for %r", action, descriptor)
        raise ElementNotFoundError(descriptor, action, attempts)


# ---------------------------------------------------------------------------
# Descriptor helpers
# ---------------------------------------------------------------------------

_SELECTOR_CHARS = re.compile(r"[#.\[\]>:=*~+()]")
_COORDINATE_HINT = re.compile(r"^\s*(?:coord(?:inate)?s?\s*[:=]?\s*)?\(?\s*(-?\d+(?:\.\d+)?)\s*,\s*(-?\d+(?:\.\d+)?)\s*\)?\s*$", re.I)
_WORD = re.compile(r"[a-z0-9]+")

# Known UI positions by keyword, as (x, y) functions of the viewport.
_KNOWN_POSITIONS: tuple[tuple[tuple[str, ...], Callable[[Viewport], tuple[float, float]]], ...] = (
    (("account", "sign in", "signin", "log in", "login", "profile", "avatar"), lambda vp: (vp.width - 80, 40)),
    (("menu", "hamburger", "navigation"), lambda vp: (40, 40)),
    (("search",), lambda vp: (vp.width / 2, 40)),
)


def strip_quotes(descriptor: str) -> str:
    """Drop one pair of enclosing quotes (``"Sign in"`` -> ``Sign in``)."""
    d = descriptor.strip()
    if len(d) >= 2 and d[0] == d[-1] and d[0] in "\"'`":
        return d[1:-1].strip()
    return d


def looks_like_selector(descriptor: str) -> bool:
    """True when *descriptor* reads like CSS/XPath rather than prose."""
    d = descriptor.strip()
    if d.startswith(("//", "xpath=", "css=", "text=", "role=")):
        return True
    if " " not in d and re.fullmatch(r"[a-zA-Z][a-zA-Z0-9-]*", d):
        # Bare tag names ("button", "input") are valid selectors too.
        return True
    return bool(_SELECTOR_CHARS.search(d))


def descriptor_words(text: str) -> list[str]:
    return _WORD.findall(text.lower())


def word_overlap(descriptor: str, candidate: str) -> float:
    """Fraction of the descriptor's words that appear in *candidate*."""
    words = descriptor_words(descriptor)
    if not words:
        return 0.0
    haystack = candidate.lower()
    return sum(1 for w in words if w in haystack) / len(words)


def xpath_literal(value: str) -> str:
    """Quote *value* as an XPath string literal (``concat()`` when both quote kinds occur)."""
    if "'" not in value:
        return f"'{value}'"
    if '"' not in value:
        return f'"{value}"'
    parts = value.split("'")
    return "concat(" + ", \"'\", ".join(f"'{p}'" for p in parts) + ")"


def css_string(value: str) -> str:
    """Quote *value* for use inside a CSS attribute selector."""
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


MATCH_ATTRIBUTES: tuple[str, ...] = ("aria-label", "id", "name", "placeholder")
EDITABLE_TAGS: tuple[str, ...] = ("input", "textarea", '[contenteditable="true"]')


def attribute_selector(descriptor: str, tags: Sequence[str] = ("",)) -> str:
    """Case-insensitive substring match on aria-label, id, name and placeholder.

    With *tags*, each attribute test is scoped to those element selectors.
    """
    v = css_string(strip_quotes(descriptor))
    return ", ".join(f"{tag}[{attr}*={v} i]" for tag in tags for attr in MATCH_ATTRIBUTES)


def structural_path_xpath(descriptor: str) -> str:
    """Innermost elements whose text, id or name contains *descriptor*."""
    lit = xpath_literal(strip_quotes(descriptor))
    return (
        f"//*[contains(normalize-space(text()), {lit}) or contains(@id, {lit}) or contains(@name, {lit})]"
        f"[not(self::script or self::style)]"
    )


def coordinate_hint(descriptor: str, viewport: Viewport) -> tuple[float, float] | None:
    """Return click coordinates for *descriptor*, or ``None`` if it names no position.

    Accepts an explicit ``"x,y"`` / ``"(x, y)"`` / ``"coords: x,y"`` hint, or a
    keyword for a commonly placed control.
    """
    m = _COORDINATE_HINT.match(descriptor)
    if m:
        return float(m.group(1)), float(m.group(2))
    lowered = descriptor.lower()
    for keywords, position in _KNOWN_POSITIONS:
        if any(k in lowered for k in keywords):
            return position(viewport)
    return None


# ---------------------------------------------------------------------------
# Shared page scripts
# ---------------------------------------------------------------------------

INTERACTIVE_SELECTOR = (
    'a, button, input, textarea, select, [role="button"], [role="link"], '
    '[role="menuitem"], [role="tab"], [onclick], [contenteditable="true"], label'
)

# Tags/roles that count as a real click target under a coordinate.
CLICKABLE_AT_POINT_JS = """
([x, y]) => {
    let el = document.elementFromPoint(x, y);
    while (el) {
        if (el.matches('a, button, input, select, textarea, label, summary, [role="button"], '
                + '[role="link"], [role="menuitem"], [role="tab"], [onclick]')) return true;
        el = el.parentElement;
    }
    return false;
}
"""


def dom_scan_js(descriptor: str, *, editable_only: bool = False) -> str:
    """Build a script returning the first qualifying element for *descriptor* (or ``null``).

    Scores visible interactive elements in document order by the fraction of
    descriptor words found in their text, value, aria-label, placeholder,
    title, name and id.
    The first element with at least 50 % overlap wins.
    """
    words = _json.dumps(descriptor_words(descriptor))
    selector = _json.dumps(
        'input:not([type="hidden"]), textarea, [contenteditable="true"]' if editable_only else INTERACTIVE_SELECTOR
    )
    return f"""
(() => {{
    const words = {words};
    if (words.length === 0) return null;
    const visible = (el) => {{
        const style = window.getComputedStyle(el);
        const rect = el.getBoundingClientRect();
        return style.display !== 'none' && style.visibility !== 'hidden' && rect.width > 0 && rect.height > 0;
    }};
    for (const el of document.querySelectorAll({selector})) {{
        if (!visible(el)) continue;
        const hay = [el.innerText, el.value, el.getAttribute('aria-label'), el.getAttribute('placeholder'),
                     el.getAttribute('title'), el.getAttribute('name'), el.id]
            .filter(Boolean).join(' ').toLowerCase();
        const score = words.filter(w => hay.includes(w)).length / words.length;
        if (score >= 0.5) return el;
    }}
    return null;
}})()
"""
