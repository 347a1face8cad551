"""Error taxonomy shared by the core and its adapters."""

from __future__ import annotations


class MonitorError(Exception):
    """Base class for every error raised by the monitoring engine."""


class ConfigurationError(MonitorError):
    """Invalid configuration, rejected before any network action."""


class AuthenticationFailure(MonitorError):
    """A login step was rejected by the chat network."""


class NotFoundError(MonitorError):
    """An operation referenced an unknown account id."""


class NotLoggedInError(MonitorError):
    """An operation requires an active (logged-in) account session."""


class TransientIOError(MonitorError):
    """A network send or fetch failed; the session keeps running."""


class InvariantViolation(MonitorError):
    """Internal state that should be impossible was reached."""
