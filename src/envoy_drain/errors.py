from __future__ import annotations


class ConfigError(RuntimeError):
    pass


class ParameterError(ValueError):
    """Bad or inconsistent shutdown parameters (HTTP 400)."""


class AdminError(RuntimeError):
    """The admin interface could not be reached or answered with non-2xx."""


class StatsParseError(AdminError):
    """The stats payload did not contain the expected ``<metric>: <n>`` line."""


class ShutdownInProgressError(RuntimeError):
    """A shutdown cycle is already running (HTTP 409)."""


class WaitTimeoutError(TimeoutError):
    """No drain outcome was published within the waiter's deadline."""
