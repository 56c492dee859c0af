"""Error taxonomy for lifecycle test runs."""

from typing import Any, Optional


class LifecycleError(Exception):
    """Base class for all run failures."""


class ConfigurationError(LifecycleError):
    """Missing persisted state, malformed options or bad settings."""


class KeyNotFoundError(ConfigurationError):
    """A persisted key was read before any stage wrote it."""

    def __init__(self, key: str, work_dir, hint: str = ''):
        self.key = key
        self.work_dir = work_dir
        message = f"No value persisted for '{key}' in {work_dir}"
        if hint:
            message = f"{message} ({hint})"
        super().__init__(message)


class ProvisioningError(LifecycleError):
    """The provisioning engine failed to apply, destroy or report outputs."""


class MissingOutputError(ProvisioningError):
    """A named output is absent after apply."""

    def __init__(self, key: str, available: Optional[list[str]] = None):
        self.key = key
        self.available = available or []
        super().__init__(f"Output '{key}' not found. Available: {self.available}")


class ConnectivityError(LifecycleError):
    """Opening, pinging or querying a database endpoint failed."""


class UnreachableError(ConnectivityError):
    """The endpoint could not be reached."""


class ProbeError(ConnectivityError):
    """A probe statement failed after the connection was established."""


class ExpectationError(LifecycleError, AssertionError):
    """A fetched output or probe result did not match its expected value."""

    def __init__(self, what: str, expected: Any, actual: Any):
        self.what = what
        self.expected = expected
        self.actual = actual
        super().__init__(f"{what}: expected {expected!r}, got {actual!r}")


class StageError(LifecycleError):
    """A stage body failed; wraps the underlying cause."""

    def __init__(self, stage: str, cause: BaseException):
        self.stage = stage
        self.cause = cause
        super().__init__(f"Stage '{stage}' failed: {type(cause).__name__}: {cause}")
