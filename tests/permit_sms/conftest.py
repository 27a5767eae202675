import io

import pytest

from services.permit_sms.config import Settings
from services.permit_sms.job_queue import FileJobQueue
from services.permit_sms.notifier import ConsoleSmsSender, Notifier
from services.permit_sms.rpa.session import PortalSession

from fake_portal import FakeBrowser, FakePage, FakePortal


@pytest.fixture
def settings(tmp_path):
    """Settings tuned for the fake portal: no sleeps, tiny timeouts."""
    return Settings(
        portal_email="ops@example.com",
        portal_password="hunter2",
        queue_dir=str(tmp_path / "queue"),
        screenshot_dir=str(tmp_path / "fails"),
        rate_limit_db=str(tmp_path / "rate_limit.sqlite3"),
        probe_timeout_ms=10,
        navigation_timeout_ms=100,
        login_retry_delay=0,
        settle_delay=0,
        poll_interval=0.01,
        job_backoff_seconds=5.0,
        job_timeout_seconds=5.0,
        shutdown_deadline=1.0,
    )


@pytest.fixture
def queue(settings):
    return FileJobQueue(settings.queue_dir)


@pytest.fixture
def sender():
    return ConsoleSmsSender(stream=io.StringIO())


@pytest.fixture
def notifier(sender):
    return Notifier(sender)


@pytest.fixture
def page():
    return FakePage()


@pytest.fixture
def session(page, settings):
    return PortalSession(page, settings, job_id="test-job")


@pytest.fixture
def portal(settings):
    return FakePortal(settings)


@pytest.fixture
def portal_session(portal, settings):
    return PortalSession(portal.page, settings, job_id="test-job")


@pytest.fixture
def browser(settings):
    return FakeBrowser(settings)
