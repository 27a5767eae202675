"""
Browser ownership, portal login and navigation to the permit listing.

BrowserProcess owns the Playwright driver and one Chromium instance for the
lifetime of a worker. Each job checks out its own PortalSession (a fresh
browser context + page) and must close it on every exit path.
"""
import asyncio
import logging
from enum import Enum
from typing import Optional

from playwright.async_api import async_playwright, TimeoutError as PlaywrightTimeout, Error as PlaywrightError
from tenacity import AsyncRetrying, before_sleep_log, retry_if_exception_type, stop_after_attempt, wait_fixed

from ..config import Settings
from ..exceptions import BrowserLaunchError, LoginFailed, NavigationError, PortalError
from ..utils import get_logger
from .fallback import SelectorStrategy, find_first_visible

logger = get_logger("rpa.session")

USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

# Probe budget for login/logout and loading indicators
INDICATOR_PROBE_MS = 500
LOGIN_FORM_TIMEOUT_MS = 10000

# Login form. Username and password are a single fixed selector each.
USERNAME_FIELD = SelectorStrategy(
    "username",
    ('input[type="email"], input[name="email"], input[name="username"], input[id="username"]',),
    probe_timeout_ms=LOGIN_FORM_TIMEOUT_MS,
)
PASSWORD_FIELD = SelectorStrategy("password", ('input[type="password"]',))
LOGIN_BUTTON = SelectorStrategy("login button", (
    'button[type="submit"]',
    'input[type="submit"]',
    'button:has-text("Log In")',
    'button:has-text("Login")',
    'button:has-text("Sign In")',
    'input[value*="Log" i]',
    'input[value*="Sign" i]',
    '.btn-login',
    '#login-button',
    '[data-testid="login-button"]',
))

LOGIN_ERROR = SelectorStrategy("login error", (
    '.login-error',
    '.alert-danger',
    '.error',
    '[class*="error"]',
    'text=Invalid',
    'text=incorrect',
), probe_timeout_ms=INDICATOR_PROBE_MS)
LOGIN_VALIDATION_ERROR = SelectorStrategy("validation error", (
    '.field-validation-error',
    '.validation-summary-errors',
), probe_timeout_ms=INDICATOR_PROBE_MS)
LOGIN_SUCCESS = SelectorStrategy("login success", (
    'text=Welcome',
    'text=Dashboard',
    'text=My Permits',
    'text=Logout',
    '.user-menu',
    '.navigation',
    '[data-testid="user-menu"]',
), probe_timeout_ms=INDICATOR_PROBE_MS)
LOGGED_IN = SelectorStrategy("logged in", (
    'text=Logout',
    'text=Log out',
    'text=Sign out',
    '.user-menu',
    '.logout',
    '[data-testid="logout"]',
    'a[href*="logout"]',
), probe_timeout_ms=1000)

# Listing navigation, in escalating order
MY_PERMITS_LINK = SelectorStrategy("my permits link", (
    'a:has-text("My Permits")',
    'button:has-text("My Permits")',
    'a:has-text("My Applications")',
    '[data-testid="my-permits"]',
    '.nav-permits',
    '#nav-permits',
    'a:has-text("Permits")',
    'button:has-text("Permits")',
))
NAV_CONTAINERS = (
    '.navigation',
    '.nav-menu',
    '.main-nav',
    '[role="navigation"]',
    '.sidebar',
    '.menu',
)
NAV_PERMIT_LINK = ('a:has-text("Permit"), a:has-text("Application")',)
PERMIT_HREF_LINK = SelectorStrategy("permit href", ('a[href*="permit" i], a[href*="application" i]',))

LISTING_PAGE = SelectorStrategy("listing page", (
    '.permit-list',
    '.application-list',
    'table',
    '[data-testid="permit-list"]',
    'text=Permit',
    'text=Application',
))
PERMIT_LIST = SelectorStrategy("permit list", (
    '.permit-list',
    '.application-list',
    'table tbody',
    '.grid-container',
    '.data-grid',
    '[data-testid="permit-list"]',
    '.results',
    '.search-results',
))
EMPTY_STATE = SelectorStrategy("empty state", (
    '.no-results',
    '.empty-state',
    'text=No permits',
    'text=No applications',
    'text=No results',
), probe_timeout_ms=1000)
LOADING_INDICATORS = ('.loading', '.spinner', '.loader', '[data-testid="loading"]')


class SessionState(str, Enum):
    CREATED = "created"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"
    LOGIN_FAILED = "login_failed"
    IN_USE = "in_use"
    CLOSED = "closed"


class PortalSession:
    """One isolated browser page bound to a single job."""

    def __init__(self, page, settings: Settings, context=None, job_id: str = ""):
        self.page = page
        self.context = context
        self.settings = settings
        self.job_id = job_id
        self.state = SessionState.CREATED

    @property
    def url(self) -> str:
        return self.page.url

    @property
    def probe_timeout_ms(self) -> int:
        return self.settings.probe_timeout_ms

    @property
    def navigation_timeout_ms(self) -> int:
        return self.settings.navigation_timeout_ms

    @property
    def closed(self) -> bool:
        return self.state == SessionState.CLOSED

    async def settle(self, factor: float = 1.0):
        """Give client-side rendering a moment after an action."""
        if self.settings.settle_delay > 0:
            await asyncio.sleep(self.settings.settle_delay * factor)

    async def wait_for_network_idle(self):
        try:
            await self.page.wait_for_load_state("networkidle", timeout=self.navigation_timeout_ms)
        except PlaywrightTimeout:
            logger.warning(f"Page did not reach network idle: {self.page.url}")

    async def close(self):
        """Release the page and its context. Safe to call more than once."""
        if self.closed:
            return
        self.state = SessionState.CLOSED
        try:
            await self.page.close()
        except Exception as e:
            logger.error(f"Error closing page for job {self.job_id}: {e}")
        if self.context is not None:
            try:
                await self.context.close()
            except Exception as e:
                logger.error(f"Error closing browser context for job {self.job_id}: {e}")

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()


class BrowserProcess:
    """
    Explicitly owned Chromium instance.

    Jobs append pages to it through new_session(); close() is only called
    by the worker after in-flight jobs have drained.
    """

    def __init__(self, settings: Settings):
        self.settings = settings
        self._playwright = None
        self._browser = None

    @property
    def is_connected(self) -> bool:
        return self._browser is not None and self._browser.is_connected()

    async def start(self):
        if self._browser is not None:
            return
        logger.info("Launching browser...")
        try:
            self._playwright = await async_playwright().start()
            self._browser = await self._playwright.chromium.launch(
                headless=self.settings.headless,
                args=[
                    '--no-sandbox',
                    '--disable-setuid-sandbox',
                    '--disable-dev-shm-usage',
                ]
            )
        except Exception as e:
            await self._stop_driver()
            raise BrowserLaunchError(f"Browser launch failed: {e}") from e
        logger.info("Browser launched successfully")

    async def new_session(self, job_id: str = "") -> PortalSession:
        if self._browser is None:
            raise BrowserLaunchError("Browser is not running")
        context = await self._browser.new_context(
            viewport={'width': 1280, 'height': 720},
            user_agent=USER_AGENT,
            locale='en-US',
        )
        try:
            page = await context.new_page()
            page.set_default_timeout(self.settings.navigation_timeout_ms)
            page.set_default_navigation_timeout(self.settings.navigation_timeout_ms)
        except Exception:
            await context.close()
            raise
        return PortalSession(page, self.settings, context=context, job_id=job_id)

    async def _stop_driver(self):
        if self._playwright is not None:
            try:
                await self._playwright.stop()
            except Exception as e:
                logger.error(f"Error stopping Playwright: {e}")
            self._playwright = None

    async def close(self):
        if self._browser is not None:
            try:
                await self._browser.close()
                logger.info("Browser closed")
            except Exception as e:
                logger.error(f"Error closing browser: {e}")
            self._browser = None
        await self._stop_driver()


# ============================================================
# LOGIN
# ============================================================

async def _element_text(match) -> str:
    try:
        return ((await match.locator.text_content()) or "").strip()
    except Exception:
        return ""


def _login_failed(session: PortalSession, message: str) -> LoginFailed:
    session.state = SessionState.LOGIN_FAILED
    logger.error(f"Portal login failed: {message}")
    return LoginFailed(message)


def _still_on_login_page(session: PortalSession) -> bool:
    # Approximation: skins with client-side routing may keep the URL on success
    current = session.url.rstrip("/")
    login_url = session.settings.portal_login_url.rstrip("/")
    return current == login_url or "login" in current.lower()


async def login(session: PortalSession):
    """
    Log in with the configured portal credentials.

    Raises LoginFailed when the form cannot be used, an error indicator is
    shown, or the browser is still on the login page after submitting.
    """
    page = session.page
    settings = session.settings
    session.state = SessionState.AUTHENTICATING
    logger.info("Starting portal login")

    await page.goto(settings.portal_login_url, wait_until="networkidle", timeout=session.navigation_timeout_ms)

    username = await USERNAME_FIELD.find(page)
    if not username:
        raise _login_failed(session, "Could not find email/username field")

    password = await PASSWORD_FIELD.find(page, probe_timeout_ms=session.probe_timeout_ms)
    if not password:
        raise _login_failed(session, "Could not find password field")

    await username.locator.fill(settings.portal_email)
    await password.locator.fill(settings.portal_password)

    button = await LOGIN_BUTTON.find(page, probe_timeout_ms=session.probe_timeout_ms)
    if not button:
        raise _login_failed(session, "Could not find login button")

    logger.debug(f"Clicking login button ({button.selector})")
    await button.locator.click()
    await session.wait_for_network_idle()
    await session.settle()

    error = await LOGIN_ERROR.find(page)
    if error:
        raise _login_failed(session, f"Login failed: {await _element_text(error) or 'error shown'}")

    if _still_on_login_page(session):
        validation = await LOGIN_VALIDATION_ERROR.find(page)
        if validation:
            raise _login_failed(session, f"Login validation error: {await _element_text(validation)}")
        raise _login_failed(session, "Login appears to have failed - still on login page")

    if not await LOGIN_SUCCESS.find(page):
        logger.warning("Could not verify login success with standard indicators")

    session.state = SessionState.AUTHENTICATED
    logger.info(f"Portal login completed: {session.url}")


async def is_logged_in(session: PortalSession) -> bool:
    """Cheap probe for a logout link or user menu."""
    return bool(await LOGGED_IN.find(session.page))


async def _login_and_verify(session: PortalSession):
    if await is_logged_in(session):
        logger.debug("Already logged in to portal")
        session.state = SessionState.AUTHENTICATED
        return

    await login(session)

    if not await is_logged_in(session):
        raise _login_failed(session, "Login verification failed")


async def ensure_logged_in(session: PortalSession):
    """
    Make sure the session is authenticated, retrying the whole login sequence.

    Raises LoginFailed after settings.login_max_attempts failed attempts.
    """
    settings = session.settings
    attempts = 0
    try:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(settings.login_max_attempts),
            wait=wait_fixed(settings.login_retry_delay),
            retry=retry_if_exception_type((PortalError, PlaywrightError)),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        ):
            with attempt:
                attempts = attempt.retry_state.attempt_number
                await _login_and_verify(session)
    except (PortalError, PlaywrightError) as e:
        session.state = SessionState.LOGIN_FAILED
        raise LoginFailed(f"Login failed after {attempts} attempts: {e}") from e


# ============================================================
# NAVIGATION
# ============================================================

async def _find_in_nav_menu(session: PortalSession):
    for container_selector in NAV_CONTAINERS:
        container = await find_first_visible(session.page, (container_selector,), INDICATOR_PROBE_MS)
        if not container:
            continue
        link = await find_first_visible(
            session.page, NAV_PERMIT_LINK, session.probe_timeout_ms, scope=container.locator
        )
        if link:
            return link
    return None


async def navigate_to_listing(session: PortalSession):
    """
    Open the "My Permits" listing.

    Strategies, in order: a direct My Permits link/button, a permits link
    inside a navigation container, any anchor whose href mentions permits or
    applications. Raises NavigationError when none of them finds anything.
    """
    page = session.page
    logger.debug("Navigating to My Permits section")

    match = await MY_PERMITS_LINK.find(page, probe_timeout_ms=session.probe_timeout_ms)
    if not match:
        match = await _find_in_nav_menu(session)
    if not match:
        match = await PERMIT_HREF_LINK.find(page, probe_timeout_ms=session.probe_timeout_ms)
    if not match:
        raise NavigationError("Could not find My Permits navigation element")

    logger.debug(f"Found My Permits navigation element: {match.selector}")
    await match.locator.click()
    await session.wait_for_network_idle()
    await session.settle()

    if not await LISTING_PAGE.find(page, probe_timeout_ms=session.probe_timeout_ms):
        logger.warning("Could not verify navigation to permits page")

    session.state = SessionState.IN_USE
    logger.info(f"Navigated to My Permits: {page.url}")


async def wait_for_permit_list(session: PortalSession) -> Optional[str]:
    """
    Wait until the permit list (or an explicit empty state) is shown.

    Returns the selector of the list container, or None for an empty state.
    Raises NavigationError when neither appears.
    """
    page = session.page
    listing = await PERMIT_LIST.find(page, probe_timeout_ms=session.probe_timeout_ms)

    if not listing:
        if await EMPTY_STATE.find(page):
            logger.info("No permits found (empty state)")
            return None
        raise NavigationError("Could not find permit list or empty state")

    for selector in LOADING_INDICATORS:
        try:
            await page.locator(selector).first.wait_for(state="hidden", timeout=session.probe_timeout_ms)
        except PlaywrightTimeout:
            logger.debug(f"Loading indicator still visible: {selector}")

    await session.settle(0.5)
    return listing.selector
