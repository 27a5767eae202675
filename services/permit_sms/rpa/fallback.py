"""
Selector fallback: try candidate locators in priority order, first visible wins.

Portal markup differs between deployments, so every interaction names several
candidate selectors. A candidate that errors or times out is skipped; running
out of candidates returns NOT_FOUND (a value, not an exception) and the caller
decides whether that is "no results" or an automation failure.
"""
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Sequence

from ..utils import get_logger

logger = get_logger("rpa.fallback")

DEFAULT_PROBE_TIMEOUT_MS = 2000

Probe = Callable[[Any, int], Awaitable[bool]]


class _NotFound:
    """Falsy sentinel for an exhausted candidate list."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "NOT_FOUND"


NOT_FOUND = _NotFound()


@dataclass(frozen=True)
class Match:
    """The selector that won and the locator it resolved to."""
    selector: str
    locator: Any


async def visible_probe(locator, timeout_ms: int) -> bool:
    """Default probe: wait up to timeout_ms for the element to become visible."""
    await locator.wait_for(state="visible", timeout=timeout_ms)
    return True


async def find_first_visible(
    page,
    candidates: Sequence[str],
    probe_timeout_ms: int = DEFAULT_PROBE_TIMEOUT_MS,
    probe: Optional[Probe] = None,
    scope=None,
) -> Match | _NotFound:
    """
    Return the first candidate whose element passes the probe, else NOT_FOUND.

    Args:
        page: Playwright page (anything with .locator()).
        candidates: Selectors in priority order.
        probe_timeout_ms: Bound for each individual probe.
        probe: Coroutine (locator, timeout_ms) -> bool; defaults to a visibility wait.
        scope: Optional locator to search within instead of the whole page.
    """
    probe = probe or visible_probe
    root = scope if scope is not None else page

    for selector in candidates:
        try:
            locator = root.locator(selector).first
            if await probe(locator, probe_timeout_ms):
                logger.debug(f"Selector matched: {selector}")
                return Match(selector=selector, locator=locator)
        except Exception as e:
            logger.debug(f"Selector failed: {selector} ({type(e).__name__}: {e})")
            continue

    return NOT_FOUND


@dataclass(frozen=True)
class SelectorStrategy:
    """A named, reusable list of candidate selectors with its own probe timeout."""
    name: str
    candidates: tuple[str, ...]
    probe_timeout_ms: Optional[int] = None

    async def find(self, page, probe_timeout_ms: int = DEFAULT_PROBE_TIMEOUT_MS, scope=None) -> Match | _NotFound:
        timeout = self.probe_timeout_ms if self.probe_timeout_ms is not None else probe_timeout_ms
        match = await find_first_visible(page, self.candidates, probe_timeout_ms=timeout, scope=scope)
        if not match:
            logger.debug(f"Strategy '{self.name}' found nothing ({len(self.candidates)} candidates)")
        return match
