"""Deep-linking to a permit's inspection request page. Nothing is ever submitted."""
from typing import Optional

from ..exceptions import NavigationError
from ..utils import get_logger
from .fallback import SelectorStrategy
from .permits import search_by_number
from .session import PortalSession

logger = get_logger("rpa.inspections")

INSPECTION_LINK = SelectorStrategy("inspection link", (
    'a:has-text("Request Inspection")',
    'button:has-text("Request Inspection")',
    'a:has-text("Inspection")',
    'button:has-text("Inspection")',
    'a:has-text("Schedule")',
    'button:has-text("Schedule")',
    '.inspection-link',
    '.schedule-inspection',
    '[data-testid="inspection-link"]',
    'a[href*="inspection"]',
    'button[data-action*="inspection"]',
))
INSPECTION_TAB = SelectorStrategy("inspection tab", (
    'a[role="tab"]:has-text("Inspection")',
    'button[role="tab"]:has-text("Inspection")',
    '.tab:has-text("Inspection")',
    '.tab-header:has-text("Inspection")',
))
INSPECTION_ACCORDION = SelectorStrategy("inspection accordion", (
    '.accordion-header:has-text("Inspection")',
    '.collapsible:has-text("Inspection")',
    '.expandable:has-text("Inspection")',
    'details summary:has-text("Inspection")',
))
INSPECTION_NAV_LINK = SelectorStrategy("inspection nav link", (
    '.navigation a:has-text("Inspection")',
    '.nav-menu a:has-text("Inspection")',
    '.main-nav a:has-text("Inspection")',
    '[role="navigation"] a:has-text("Inspection")',
    '.sidebar a:has-text("Inspection")',
    '.menu a:has-text("Inspection")',
))
SERVICE_DROPDOWN = SelectorStrategy("service dropdown", (
    '.dropdown:has-text("Service")',
    '.dropdown:has-text("Request")',
    '.dropdown:has-text("More")',
))
DROPDOWN_INSPECTION_LINK = SelectorStrategy(
    "dropdown inspection link",
    ('a:has-text("Inspection"), a:has-text("Schedule")',),
    probe_timeout_ms=1000,
)
INSPECTION_PAGE = SelectorStrategy("inspection page", (
    '.inspection-form',
    '.schedule-form',
    '[data-testid="inspection-form"]',
    'text=Inspection',
    'text=Schedule',
))


async def _click_dropdown_entry(session: PortalSession) -> bool:
    dropdown = await SERVICE_DROPDOWN.find(session.page, probe_timeout_ms=session.probe_timeout_ms)
    if not dropdown:
        return False
    await dropdown.locator.click()
    await session.settle(0.25)
    link = await DROPDOWN_INSPECTION_LINK.find(session.page, scope=dropdown.locator)
    if not link:
        return False
    await link.locator.click()
    return True


async def _click_inspection_entry(session: PortalSession) -> bool:
    for strategy in (INSPECTION_LINK, INSPECTION_TAB, INSPECTION_ACCORDION, INSPECTION_NAV_LINK):
        match = await strategy.find(session.page, probe_timeout_ms=session.probe_timeout_ms)
        if match:
            logger.debug(f"Opening inspections via {strategy.name}: {match.selector}")
            await match.locator.click()
            return True
    return await _click_dropdown_entry(session)


async def open_inspection_request(session: PortalSession, permit_number: str) -> Optional[str]:
    """
    Open the inspection request page for a permit and return its URL.

    Returns None if the permit cannot be found. Raises NavigationError when
    no inspection entry point exists on the permit page.
    """
    logger.debug(f"Opening inspection page for {permit_number}")

    permit = await search_by_number(session, permit_number)
    if permit is None:
        return None

    if not await _click_inspection_entry(session):
        raise NavigationError(f"Could not find inspection navigation for {permit_number}")

    await session.wait_for_network_idle()
    await session.settle()

    if not await INSPECTION_PAGE.find(session.page, probe_timeout_ms=session.probe_timeout_ms):
        logger.warning("Could not verify navigation to inspection page")

    url = session.url
    logger.info(f"Opened inspection page for {permit_number}: {url}")
    return url
