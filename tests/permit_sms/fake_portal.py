"""
In-memory stand-ins for Playwright pages and a scripted permit portal.

FakePage maps exact selector strings to FakeElements. Locators resolve
lazily, so elements added by a click handler are visible to later lookups,
and every selector passed to locator() is recorded in `page.probed`.
"""
import inspect

from playwright.async_api import TimeoutError as PlaywrightTimeout

from services.permit_sms.config import Settings
from services.permit_sms.rpa.permits import CELL_SELECTOR, DETAIL_VALUE
from services.permit_sms.rpa.session import PASSWORD_FIELD, PortalSession, USERNAME_FIELD


class FakeElement:
    def __init__(self, text="", visible=True, cells=None, children=None, on_click=None):
        self.cells = list(cells or [])
        self.text = text or " ".join(self.cells)
        self.visible = visible
        self.children = dict(children or {})
        if self.cells:
            self.children.setdefault(CELL_SELECTOR, [FakeElement(c) for c in self.cells])
        self.on_click = on_click
        self.clicks = 0
        self.value = ""
        self.pressed = []


class FakeLocator:
    def __init__(self, page, resolve, selector):
        self.page = page
        self._resolve = resolve
        self.selector = selector

    def _elements(self):
        return list(self._resolve())

    def _one(self):
        elements = self._elements()
        if not elements:
            raise PlaywrightTimeout(f"Timeout exceeded waiting for locator({self.selector!r})")
        return elements[0]

    @property
    def first(self):
        return FakeLocator(self.page, lambda: self._elements()[:1], self.selector)

    def locator(self, selector):
        self.page.probed.append(selector)

        def resolve():
            found = []
            for element in self._elements():
                found.extend(element.children.get(selector, []))
            return found

        return FakeLocator(self.page, resolve, selector)

    async def all(self):
        return [FakeLocator(self.page, (lambda el=el: [el]), self.selector) for el in self._elements()]

    async def count(self):
        return len(self._elements())

    async def is_visible(self):
        return any(el.visible for el in self._elements())

    async def wait_for(self, state="visible", timeout=None):
        visible = await self.is_visible()
        if state == "visible" and not visible:
            raise PlaywrightTimeout(f"Timeout {timeout}ms exceeded waiting for {self.selector!r}")
        if state == "hidden" and visible:
            raise PlaywrightTimeout(f"Timeout {timeout}ms exceeded waiting for {self.selector!r} to hide")

    async def click(self, **kwargs):
        element = self._one()
        element.clicks += 1
        self.page.clicked.append(self.selector)
        if element.on_click is not None:
            result = element.on_click(self.page)
            if inspect.isawaitable(result):
                await result

    async def fill(self, value, **kwargs):
        self._one().value = value

    async def clear(self, **kwargs):
        self._one().value = ""

    async def press(self, key, **kwargs):
        self._one().pressed.append(key)

    async def text_content(self, **kwargs):
        return self._one().text

    async def inner_text(self, **kwargs):
        return self._one().text

    async def all_text_contents(self):
        return [el.text for el in self._elements()]


class FakePage:
    def __init__(self, url="about:blank"):
        self.url = url
        self.elements = {}
        self.probed = []
        self.clicked = []
        self.visited = []
        self.screenshots = []
        self.screenshot_error = None
        self.close_calls = 0

    def add(self, selector, *elements):
        self.elements.setdefault(selector, []).extend(elements)
        return elements[0] if elements else None

    def remove(self, selector):
        self.elements.pop(selector, None)

    def locator(self, selector):
        self.probed.append(selector)
        return FakeLocator(self, lambda: self.elements.get(selector, []), selector)

    async def goto(self, url, **kwargs):
        self.visited.append(url)
        self.url = url

    async def wait_for_load_state(self, state="load", timeout=None):
        return None

    async def screenshot(self, path=None, full_page=False):
        self.screenshots.append(path)
        if self.screenshot_error is not None:
            raise self.screenshot_error
        return b""

    async def close(self):
        self.close_calls += 1


class FakeContext:
    def __init__(self):
        self.close_calls = 0

    async def close(self):
        self.close_calls += 1


# ============================================================
# SCRIPTED PORTAL
# ============================================================

def permit_row(number, address, permit_type="Building Permit", status="Under Review"):
    return [number, address, permit_type, status]


class FakePortal:
    """
    Login form -> dashboard with a "My Permits" link -> listing rows ->
    detail page per row, optionally with an inspection link.

    Knobs:
        fail_logins: number of login submissions that are rejected
        login_error: text of the error banner on a rejected login (None = no banner)
        rows: list of cell lists for the listing
        has_permits_link: whether the dashboard shows "My Permits"
        details: extra detail-page selector -> text, added when a row is opened
        inspection: whether an opened permit shows "Request Inspection"
        on_submit: optional coroutine run when the login form is submitted
    """

    def __init__(self, settings: Settings, rows=(), fail_logins=0, login_error="Invalid credentials",
                 has_permits_link=True, details=None, inspection=False, on_submit=None):
        self.settings = settings
        self.page = FakePage()
        self.rows = [list(r) for r in rows]
        self.fail_logins = fail_logins
        self.login_error = login_error
        self.has_permits_link = has_permits_link
        self.details = dict(details or {})
        self.inspection = inspection
        self.on_submit = on_submit
        self.login_attempts = 0
        self.opened_rows = []

        self.page.add(USERNAME_FIELD.candidates[0], FakeElement())
        self.page.add(PASSWORD_FIELD.candidates[0], FakeElement())
        self.page.add('button[type="submit"]', FakeElement("Log In", on_click=self._submit_login))

    @property
    def base_url(self):
        return self.settings.portal_base_url.rstrip("/")

    async def _submit_login(self, page):
        self.login_attempts += 1
        if self.on_submit is not None:
            await self.on_submit()

        if self.login_attempts <= self.fail_logins:
            if self.login_error:
                page.remove('.alert-danger')
                page.add('.alert-danger', FakeElement(self.login_error))
            return

        page.remove('.alert-danger')
        page.remove(USERNAME_FIELD.candidates[0])
        page.remove(PASSWORD_FIELD.candidates[0])
        page.remove('button[type="submit"]')
        page.url = f"{self.base_url}/eclipse/dashboard"
        page.add('text=Logout', FakeElement("Logout"))
        if self.has_permits_link:
            page.add('a:has-text("My Permits")', FakeElement("My Permits", on_click=self._open_listing))

    def _open_listing(self, page):
        page.url = self.settings.portal_listing_url
        if not self.rows:
            page.add('.no-results', FakeElement("No permits found"))
            return
        page.add('table', FakeElement())
        page.add('table tbody', FakeElement())
        for cells in self.rows:
            page.add('table tbody tr', FakeElement(cells=cells, on_click=self._open_detail(cells)))

    def _open_detail(self, cells):
        def open_detail(page):
            self.opened_rows.append(cells)
            page.url = f"{self.base_url}/eclipse/permit/{cells[0]}"
            for selector, text in self.details.items():
                page.add(selector, FakeElement(text))
            if self.inspection:
                page.add(
                    'a:has-text("Request Inspection")',
                    FakeElement("Request Inspection", on_click=self._open_inspection(cells[0])),
                )
        return open_detail

    def _open_inspection(self, permit_number):
        def open_inspection(page):
            page.url = f"{self.base_url}/eclipse/inspections/request?permit={permit_number}"
            page.add('.inspection-form', FakeElement())
        return open_inspection


def definition_list(page: FakePage, pairs: dict):
    """Add dt/dd pairs to a page."""
    for label, value in pairs.items():
        page.add('dt', FakeElement(label, children={DETAIL_VALUE: [FakeElement(value)]}))


class FakeBrowser:
    """BrowserProcess stand-in that serves one FakePortal page per session."""

    def __init__(self, settings: Settings, make_portal=None, launch_error=None):
        self.settings = settings
        self.make_portal = make_portal or (lambda: FakePortal(settings))
        self.launch_error = launch_error
        self.started = False
        self.closed = False
        self.portals = []
        self.sessions = []
        self.contexts = []
        self.events = []

    @property
    def is_connected(self):
        return self.started and not self.closed

    async def start(self):
        if self.launch_error is not None:
            raise self.launch_error
        self.started = True
        self.events.append("start")

    async def new_session(self, job_id=""):
        portal = self.make_portal()
        context = FakeContext()
        session = PortalSession(portal.page, self.settings, context=context, job_id=job_id)
        self.portals.append(portal)
        self.contexts.append(context)
        self.sessions.append(session)
        return session

    async def close(self):
        self.closed = True
        self.events.append("close")
