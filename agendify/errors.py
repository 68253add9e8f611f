"""
Error taxonomy for the authorization flow, job queue and engagement trigger.
"""


class ValidationError(Exception):
    """OAuth callback failed validation (missing code, state mismatch, no pending verifier)."""


class ExchangeError(Exception):
    """Token endpoint call failed: network error, timeout, non-2xx or unusable body."""

    def __init__(self, message: str, status_code: int | None = None, body: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class ReauthorizationRequired(Exception):
    """No usable access token; an operator must run the authorization flow again."""


class PlatformAPIError(Exception):
    """Platform API answered with a non-2xx status other than 401."""

    def __init__(self, message: str, status_code: int, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class JobHandlerError(Exception):
    """A job handler could not do its work."""


class TriggerError(Exception):
    """The engagement maintenance procedure errored or exited non-zero."""
