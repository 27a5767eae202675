import pytest

from services.permit_sms.rpa.fallback import NOT_FOUND, Match, SelectorStrategy, find_first_visible

from fake_portal import FakeElement

CANDIDATES = ["#first", ".second", "text=Third", "[data-testid=fourth]", ".fifth"]


@pytest.mark.asyncio
@pytest.mark.parametrize("k", range(len(CANDIDATES)))
async def test_returns_kth_candidate_and_stops(page, k):
    element = page.add(CANDIDATES[k], FakeElement("hit"))

    match = await find_first_visible(page, CANDIDATES, probe_timeout_ms=10)

    assert isinstance(match, Match)
    assert match.selector == CANDIDATES[k]
    assert await match.locator.text_content() == element.text
    assert page.probed == CANDIDATES[:k + 1]


@pytest.mark.asyncio
async def test_nothing_present_returns_not_found(page):
    match = await find_first_visible(page, CANDIDATES, probe_timeout_ms=10)

    assert match is NOT_FOUND
    assert not match
    assert page.probed == CANDIDATES


@pytest.mark.asyncio
async def test_empty_candidate_list(page):
    assert await find_first_visible(page, []) is NOT_FOUND


@pytest.mark.asyncio
async def test_hidden_elements_are_skipped(page):
    page.add("#first", FakeElement("hidden", visible=False))
    page.add(".second", FakeElement("shown"))

    match = await find_first_visible(page, CANDIDATES, probe_timeout_ms=10)

    assert match.selector == ".second"


@pytest.mark.asyncio
async def test_probe_errors_are_skipped(page):
    page.add("#first", FakeElement("a"))
    page.add(".second", FakeElement("b"))

    async def probe(locator, timeout_ms):
        if locator.selector == "#first":
            raise RuntimeError("detached")
        return True

    match = await find_first_visible(page, CANDIDATES, probe=probe)

    assert match.selector == ".second"


@pytest.mark.asyncio
async def test_probe_returning_false_moves_on(page):
    page.add("#first", FakeElement(""))
    page.add(".second", FakeElement("value"))

    async def has_text(locator, timeout_ms):
        return bool(await locator.text_content())

    match = await find_first_visible(page, CANDIDATES, probe=has_text)

    assert match.selector == ".second"


@pytest.mark.asyncio
async def test_scope_limits_search(page):
    link = FakeElement("Permits")
    page.add(".nav", FakeElement(children={"a": [link]}))
    page.add("a", FakeElement("outside"))

    scope = page.locator(".nav").first
    match = await find_first_visible(page, ["a"], scope=scope)

    assert await match.locator.text_content() == "Permits"


@pytest.mark.asyncio
async def test_strategy_uses_own_timeout(page):
    seen = []

    class RecordingPage:
        def locator(self, selector):
            locator = page.locator(selector)

            class Wrapper:
                @property
                def first(self):
                    return self

                async def wait_for(self, state="visible", timeout=None):
                    seen.append(timeout)
                    await locator.first.wait_for(state=state, timeout=timeout)

            return Wrapper()

    strategy = SelectorStrategy("things", ("#missing",), probe_timeout_ms=500)
    assert not await strategy.find(RecordingPage(), probe_timeout_ms=2000)
    assert seen == [500]

    strategy = SelectorStrategy("things", ("#missing",))
    assert not await strategy.find(RecordingPage(), probe_timeout_ms=2000)
    assert seen == [500, 2000]


def test_not_found_is_a_falsy_singleton():
    from services.permit_sms.rpa.fallback import _NotFound

    assert _NotFound() is NOT_FOUND
    assert bool(NOT_FOUND) is False
    assert repr(NOT_FOUND) == "NOT_FOUND"
