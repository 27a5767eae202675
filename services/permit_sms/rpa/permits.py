"""
Permit search, detail scraping and listing on the "My Permits" page.

Not finding a permit is a normal outcome (None / []); Playwright and
navigation errors propagate to the worker, which decides about retries.
"""
import re
from typing import Optional

from playwright.async_api import Error as PlaywrightError

from ..models import PermitData
from ..utils import extract_permit_number, get_logger
from .fallback import SelectorStrategy, find_first_visible
from .session import PortalSession, wait_for_permit_list

logger = get_logger("rpa.permits")

SEARCH_BOX = SelectorStrategy("search box", (
    'input[type="search"]',
    'input[name*="search"]',
    'input[placeholder*="search" i]',
    'input[placeholder*="permit" i]',
    'input[placeholder*="address" i]',
    'input[placeholder*="number" i]',
    '.search-input',
    '#search',
    '[data-testid="search-input"]',
))
SEARCH_BUTTON = SelectorStrategy("search button", (
    'button:has-text("Search")',
    'button[type="submit"]',
    'input[type="submit"]',
    '.search-button',
    '[data-testid="search-button"]',
), probe_timeout_ms=1000)

ROW_SELECTORS = (
    'table tbody tr',
    '.permit-item',
    '.application-item',
    '.result',
    '[data-testid="permit-row"]',
)
CELL_SELECTOR = 'td, .cell, .field'

DETAIL_FIELDS = {
    "permit_number": (
        'text=Permit Number >> xpath=following-sibling::*[1]',
        'text=Application Number >> xpath=following-sibling::*[1]',
        '.permit-number',
        '#permit-number',
    ),
    "address": (
        'text=Address >> xpath=following-sibling::*[1]',
        'text=Location >> xpath=following-sibling::*[1]',
        '.address',
        '#address',
    ),
    "type": (
        'text=Type >> xpath=following-sibling::*[1]',
        'text=Category >> xpath=following-sibling::*[1]',
        '.permit-type',
        '#permit-type',
    ),
    "status": (
        'text=Status >> xpath=following-sibling::*[1]',
        '.status',
        '#status',
    ),
    "last_action": (
        'text=Last Action >> xpath=following-sibling::*[1]',
        'text=Recent Activity >> xpath=following-sibling::*[1]',
        '.last-action',
    ),
    "next_action": (
        'text=Next Action >> xpath=following-sibling::*[1]',
        'text=Next Step >> xpath=following-sibling::*[1]',
        '.next-action',
    ),
    "submitted_date": (
        'text=Submitted >> xpath=following-sibling::*[1]',
        'text=Date >> xpath=following-sibling::*[1]',
        '.submitted-date',
    ),
}
DETAIL_VALUE = 'xpath=following-sibling::dd[1]'

ADDRESS_PATTERN = re.compile(r"^\d+\s+\w+")
STATUS_PATTERN = re.compile(r"approved|pending|review|rejected|complete|issued", re.IGNORECASE)
TYPE_PATTERN = re.compile(r"building|electrical|plumbing|mechanical|demo|alteration", re.IGNORECASE)


# ============================================================
# ROW EXTRACTION
# ============================================================

async def extract_permit_data_from_row(row) -> PermitData:
    """
    Classify the cells of one result row.

    The permit number comes from the row text; other cells are labelled by
    content: leading house number means address, status keywords mean
    status, trade keywords mean permit type.
    """
    text = (await row.text_content()) or ""
    cells = await row.locator(CELL_SELECTOR).all_text_contents()

    permit = PermitData(permit_number=extract_permit_number(text))

    if len(cells) < 2:
        return permit

    for index, cell in enumerate(cells):
        cell_text = cell.strip()
        if not cell_text:
            continue

        if index == 0 and not permit.permit_number:
            permit.permit_number = extract_permit_number(cell_text)

        if ADDRESS_PATTERN.match(cell_text):
            permit.address = cell_text
        if STATUS_PATTERN.search(cell_text):
            permit.status = cell_text
        if TYPE_PATTERN.search(cell_text):
            permit.type = cell_text

    return permit


async def _visible_rows(session: PortalSession):
    """Rows for the first row selector that yields any."""
    for selector in ROW_SELECTORS:
        rows = await session.page.locator(selector).all()
        if rows:
            logger.debug(f"Found {len(rows)} permit rows with {selector}")
            return rows
    return []


async def _find_row(session: PortalSession, matches) -> Optional[PermitData]:
    """Click the first visible row whose text satisfies `matches` and return its data."""
    for row in await _visible_rows(session):
        if not await row.is_visible():
            continue
        row_text = (await row.text_content()) or ""
        if not matches(row_text):
            continue

        permit = await extract_permit_data_from_row(row)
        await row.click()
        await session.settle(0.5)
        return permit
    return None


# ============================================================
# SEARCH
# ============================================================

async def _run_search(session: PortalSession, term: str):
    search_box = await SEARCH_BOX.find(session.page, probe_timeout_ms=session.probe_timeout_ms)
    if not search_box:
        logger.debug("No search box found, looking through existing results")
        return

    logger.debug(f"Searching portal for {term!r}")
    await search_box.locator.clear()
    await search_box.locator.fill(term)

    button = await SEARCH_BUTTON.find(session.page)
    if button:
        await button.locator.click()
    else:
        await search_box.locator.press("Enter")

    await session.settle()


async def search_by_number(session: PortalSession, raw: str) -> Optional[PermitData]:
    """Find a permit by number, open its row and return the row data (None if absent)."""
    permit_number = extract_permit_number(raw) or raw.strip().upper()
    logger.debug(f"Searching for permit by number: {permit_number}")

    await _run_search(session, permit_number)

    if await wait_for_permit_list(session) is None:
        logger.warning(f"Permit not found by number: {permit_number}")
        return None

    permit = await _find_row(session, lambda text: permit_number in text.upper())
    if permit is None:
        logger.warning(f"Permit not found by number: {permit_number}")
        return None

    if not permit.permit_number:
        permit.permit_number = permit_number
    logger.info(f"Found permit by number: {permit_number}")
    return permit


async def search_by_address(session: PortalSession, address: str) -> Optional[PermitData]:
    """Find a permit whose row text contains the address (case-insensitive)."""
    address = address.strip()
    logger.debug(f"Searching for permit by address: {address}")

    await _run_search(session, address)

    if await wait_for_permit_list(session) is None:
        logger.warning(f"Permit not found by address: {address}")
        return None

    needle = address.lower()
    permit = await _find_row(session, lambda text: needle in text.lower())
    if permit is None:
        logger.warning(f"Permit not found by address: {address}")
        return None

    logger.info(f"Found permit by address: {address}")
    return permit


# ============================================================
# DETAILS / LISTING
# ============================================================

async def _has_text(locator, timeout_ms: int) -> bool:
    await locator.wait_for(state="visible", timeout=timeout_ms)
    return bool(((await locator.text_content()) or "").strip())


def _label_field(label: str) -> Optional[str]:
    label = label.lower()
    if "permit" in label and "number" in label:
        return "permit_number"
    if "address" in label:
        return "address"
    if "type" in label:
        return "type"
    if "status" in label:
        return "status"
    return None


async def scrape_details(session: PortalSession) -> PermitData:
    """
    Best-effort scrape of the open permit's detail view.

    Labelled fields first, then definition-list (dt/dd) pairs, which win
    when both are present.
    """
    page = session.page
    probe_ms = min(session.probe_timeout_ms, 1000)
    details = PermitData()

    for field_name, candidates in DETAIL_FIELDS.items():
        match = await find_first_visible(page, candidates, probe_ms, probe=_has_text)
        if match:
            setattr(details, field_name, ((await match.locator.text_content()) or "").strip())

    try:
        for dt in await page.locator("dt").all():
            label = await dt.text_content()
            field_name = _label_field(label or "")
            if not field_name:
                continue
            dd = dt.locator(DETAIL_VALUE)
            if not await dd.is_visible():
                continue
            value = ((await dd.text_content()) or "").strip()
            if value:
                setattr(details, field_name, value)
    except PlaywrightError as e:
        logger.debug(f"Definition list extraction skipped: {e}")

    logger.debug(f"Scraped permit details: {details.to_dict()}")
    return details


async def list_open_permits(session: PortalSession, limit: int = 5) -> list[PermitData]:
    """Rows of the listing, up to `limit`, skipping rows with neither number nor address."""
    logger.debug(f"Getting open permits list (limit {limit})")

    if await wait_for_permit_list(session) is None:
        return []

    permits = []
    rows = await _visible_rows(session)
    for index, row in enumerate(rows[:limit]):
        try:
            permit = await extract_permit_data_from_row(row)
        except PlaywrightError as e:
            logger.warning(f"Error extracting permit data from row {index}: {e}")
            continue
        if permit.permit_number or permit.address:
            permits.append(permit)

    logger.info(f"Retrieved {len(permits)} open permits")
    return permits
