import pytest

from services.permit_sms.exceptions import NavigationError
from services.permit_sms.models import PermitData
from services.permit_sms.rpa.inspections import open_inspection_request
from services.permit_sms.rpa.permits import (
    extract_permit_data_from_row,
    list_open_permits,
    scrape_details,
    search_by_address,
    search_by_number,
)
from services.permit_sms.rpa.session import PortalSession, login, navigate_to_listing

from fake_portal import FakeElement, FakePortal, definition_list, permit_row

ROWS = [
    permit_row("P2024-001", "123 Main St", "Building - Alteration", "Under Review"),
    permit_row("P2024-002", "456 Oak Ave", "Electrical", "Approved"),
    permit_row("P2024-003", "789 Pine Rd", "Plumbing", "Issued"),
]


async def open_listing(settings, rows=ROWS, **kwargs):
    portal = FakePortal(settings, rows=rows, **kwargs)
    session = PortalSession(portal.page, settings, job_id="job-1")
    await login(session)
    await navigate_to_listing(session)
    return portal, session


# ============================================================
# ROW EXTRACTION
# ============================================================

@pytest.mark.asyncio
async def test_extract_row_classifies_cells(page):
    row = page.add("tr", FakeElement(cells=ROWS[0]))

    permit = await extract_permit_data_from_row(page.locator("tr").first)

    assert permit == PermitData(
        permit_number="P2024-001",
        address="123 Main St",
        type="Building - Alteration",
        status="Under Review",
    )
    assert row.clicks == 0


@pytest.mark.asyncio
async def test_extract_row_number_from_first_cell(page):
    page.add("tr", FakeElement(text="Application", cells=["2024-0042", "12 Elm St"]))

    permit = await extract_permit_data_from_row(page.locator("tr").first)

    assert permit.permit_number == "2024-0042"
    assert permit.address == "12 Elm St"


@pytest.mark.asyncio
async def test_extract_row_single_cell_only_number(page):
    page.add("li", FakeElement(text="Permit P2024-009 - 1 Main St"))

    permit = await extract_permit_data_from_row(page.locator("li").first)

    assert permit.permit_number == "P2024-009"
    assert permit.address is None


# ============================================================
# SEARCH
# ============================================================

@pytest.mark.asyncio
async def test_search_by_number_finds_and_opens_row(settings):
    portal, session = await open_listing(settings)

    permit = await search_by_number(session, "p2024-002")

    assert permit.permit_number == "P2024-002"
    assert permit.status == "Approved"
    assert portal.opened_rows == [ROWS[1]]
    assert session.url.endswith("/eclipse/permit/P2024-002")


@pytest.mark.asyncio
async def test_search_by_number_not_found(settings):
    portal, session = await open_listing(settings)

    assert await search_by_number(session, "P2099-999") is None
    assert portal.opened_rows == []


@pytest.mark.asyncio
async def test_search_by_number_empty_listing(settings):
    portal, session = await open_listing(settings, rows=[])

    assert await search_by_number(session, "P2024-001") is None


@pytest.mark.asyncio
async def test_search_uses_search_box_and_button(settings):
    portal, session = await open_listing(settings)
    box = portal.page.add('input[type="search"]', FakeElement())
    button = portal.page.add('button:has-text("Search")', FakeElement("Search"))

    await search_by_number(session, "Status of P2024-003 please")

    assert box.value == "P2024-003"
    assert button.clicks == 1


@pytest.mark.asyncio
async def test_search_presses_enter_without_button(settings):
    portal, session = await open_listing(settings)
    box = portal.page.add('#search', FakeElement())

    await search_by_address(session, "456 Oak Ave")

    assert box.value == "456 Oak Ave"
    assert box.pressed == ["Enter"]


@pytest.mark.asyncio
async def test_search_by_address_case_insensitive(settings):
    portal, session = await open_listing(settings)

    permit = await search_by_address(session, "789 PINE rd")

    assert permit.permit_number == "P2024-003"
    assert permit.address == "789 Pine Rd"


@pytest.mark.asyncio
async def test_search_by_address_not_found(settings):
    _, session = await open_listing(settings)

    assert await search_by_address(session, "1 Nowhere Ln") is None


@pytest.mark.asyncio
async def test_search_skips_hidden_rows(settings):
    portal, session = await open_listing(settings)
    portal.page.elements['table tbody tr'][0].visible = False

    assert await search_by_number(session, "P2024-001") is None


@pytest.mark.asyncio
async def test_search_without_list_or_empty_state_propagates(settings):
    portal = FakePortal(settings)
    session = PortalSession(portal.page, settings)

    with pytest.raises(NavigationError):
        await search_by_number(session, "P2024-001")


# ============================================================
# DETAILS / LISTING
# ============================================================

@pytest.mark.asyncio
async def test_scrape_details_from_selectors(session, page):
    page.add('.status', FakeElement("Approved"))
    page.add('.next-action', FakeElement("Final inspection"))
    page.add('.address', FakeElement(""))

    details = await scrape_details(session)

    assert details.status == "Approved"
    assert details.next_action == "Final inspection"
    assert details.address is None


@pytest.mark.asyncio
async def test_scrape_details_definition_list_wins(session, page):
    page.add('.status', FakeElement("Pending"))
    definition_list(page, {
        "Permit Number": "P2024-001",
        "Site Address": "123 Main St",
        "Status": "Approved",
        "Owner": "Jane Doe",
    })

    details = await scrape_details(session)

    assert details.permit_number == "P2024-001"
    assert details.address == "123 Main St"
    assert details.status == "Approved"


@pytest.mark.asyncio
async def test_scrape_details_empty_page(session):
    details = await scrape_details(session)
    assert details.is_empty()


@pytest.mark.asyncio
async def test_list_open_permits_respects_limit(settings):
    rows = [permit_row(f"P2024-{i:03d}", f"{i} Main St") for i in range(1, 8)]
    _, session = await open_listing(settings, rows=rows)

    permits = await list_open_permits(session, limit=5)

    assert [p.permit_number for p in permits] == [f"P2024-{i:03d}" for i in range(1, 6)]


@pytest.mark.asyncio
async def test_list_open_permits_skips_rows_without_identity(settings):
    rows = [ROWS[0], ["", "", "Electrical", "Pending"], ROWS[1]]
    _, session = await open_listing(settings, rows=rows)

    permits = await list_open_permits(session)

    assert [p.permit_number for p in permits] == ["P2024-001", "P2024-002"]


@pytest.mark.asyncio
async def test_list_open_permits_empty_state(settings):
    _, session = await open_listing(settings, rows=[])

    assert await list_open_permits(session) == []


# ============================================================
# INSPECTIONS
# ============================================================

@pytest.mark.asyncio
async def test_open_inspection_request_returns_deep_link(settings):
    portal, session = await open_listing(settings, inspection=True)

    url = await open_inspection_request(session, "P2024-001")

    assert url.endswith("/eclipse/inspections/request?permit=P2024-001")


@pytest.mark.asyncio
async def test_open_inspection_request_unknown_permit(settings):
    _, session = await open_listing(settings, inspection=True)

    assert await open_inspection_request(session, "P2099-000") is None


@pytest.mark.asyncio
async def test_open_inspection_request_via_tab(settings):
    portal, session = await open_listing(settings)
    tab = portal.page.add('a[role="tab"]:has-text("Inspection")', FakeElement("Inspections"))

    url = await open_inspection_request(session, "P2024-002")

    assert tab.clicks == 1
    assert url.endswith("/eclipse/permit/P2024-002")


@pytest.mark.asyncio
async def test_open_inspection_request_via_dropdown(settings):
    portal, session = await open_listing(settings)
    link = FakeElement("Schedule Inspection")
    dropdown = portal.page.add('.dropdown:has-text("Request")', FakeElement(
        "Requests", children={'a:has-text("Inspection"), a:has-text("Schedule")': [link]},
    ))

    await open_inspection_request(session, "P2024-001")

    assert dropdown.clicks == 1
    assert link.clicks == 1


@pytest.mark.asyncio
async def test_open_inspection_request_without_entry_point(settings):
    _, session = await open_listing(settings)

    with pytest.raises(NavigationError):
        await open_inspection_request(session, "P2024-001")
