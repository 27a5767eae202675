"""Exception hierarchy for the permit SMS runner."""


class PermitRunnerError(Exception):
    """Base runner exception."""
    pass


class ConfigError(PermitRunnerError):
    """Required configuration is missing or invalid."""
    pass


class PortalError(PermitRunnerError):
    """Something went wrong while driving the permit portal."""
    pass


class LoginFailed(PortalError):
    """Portal rejected the credentials or the login form could not be used."""
    pass


class NavigationError(PortalError):
    """No navigable element or expected page content was found."""
    pass


class BrowserLaunchError(PermitRunnerError):
    """Chromium could not be started."""
    pass


class CounterStoreError(PermitRunnerError):
    """Rate limit counter store is unreachable."""
    pass


class JobFailed(PermitRunnerError):
    """
    A job failed after diagnostics and user notification were handled.

    Carries the job and the original exception so the queue loop can decide
    between retry and dead-letter.
    """

    def __init__(self, job, cause: BaseException):
        self.job = job
        self.cause = cause
        super().__init__(f"Job {job.job_id} failed: {cause}")
