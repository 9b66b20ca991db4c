"""
Custom exception hierarchy for the CI/CD server harness.

Each exception carries a context dict for structured logging.
"""


class HarnessError(Exception):
    """Base exception for all harness errors."""

    def __init__(self, message: str, context: dict = None):
        self.context = context or {}
        super().__init__(message)

    @property
    def kind(self) -> str:
        """Error kind reported in run reports."""
        return type(self).__name__


class LaunchError(HarnessError):
    """Base exception for failures while starting the target server."""
    pass


class SpawnError(LaunchError):
    """Raised when the start command cannot be executed."""
    pass


class StartupTimeout(LaunchError):
    """Raised when the readiness marker or health never showed up in time."""
    pass


class EarlyExit(LaunchError):
    """Raised when the server process exits before it became ready."""
    pass


class HealthCheckFailure(HarnessError):
    """Raised when the health endpoint is unreachable or unhealthy."""
    pass


class ShutdownError(HarnessError):
    """Base exception for teardown failures."""
    pass


class ShutdownTimeout(ShutdownError):
    """Raised when the process survives the forceful kill deadline."""
    pass


class PortStillBound(ShutdownError):
    """Raised when a port is still accepting connections after the deadline."""
    pass


class RunInterrupted(HarnessError):
    """Raised when a host signal interrupts a run."""
    pass


class PipelineError(HarnessError):
    """Raised when a pipeline definition is invalid or a step fails."""
    pass


class ConfigurationError(HarnessError):
    """Raised when configured values cannot be used."""
    pass


class ValidationError(HarnessError):
    """Raised when input validation fails."""
    pass


class WebhookSignatureError(HarnessError):
    """Raised when a webhook signature does not match the payload."""
    pass


LAUNCH_ERRORS = {
    "SpawnError": SpawnError,
    "StartupTimeout": StartupTimeout,
    "EarlyExit": EarlyExit,
}
