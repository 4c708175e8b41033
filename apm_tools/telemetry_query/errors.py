"""
Error taxonomy for telemetry queries.

Every tool handler converts these into a failed ToolResult; none of them
escape to the MCP caller.
"""


class TelemetryToolError(Exception):
    """Base exception for telemetry tool errors."""

    pass


class ValidationError(TelemetryToolError):
    """Malformed tool input (service name, time range, filter value)."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class FormatError(ValidationError):
    """Time range expression does not match <integer>(m|h|d)."""

    def __init__(self, expression: str):
        self.expression = expression
        super().__init__(
            f"Invalid time range format: {expression}. Expected format: <number><unit> (e.g., 1h, 24h, 7d)"
        )


class DiscoveryFailure(TelemetryToolError):
    """No metric-name template returned data for the service."""

    def __init__(self, service: str, tried: list[str]):
        self.service = service
        self.tried = tried
        super().__init__(
            f'No trace metrics found for service "{service}". The service may not be instrumented '
            f"with APM, or the service name may be incorrect. Tried {len(tried)} metric patterns: "
            f"{', '.join(tried[:10])}{'...' if len(tried) > 10 else ''}"
        )


class InsufficientDataError(TelemetryToolError):
    """Some metrics were discovered but not the ones needed to answer."""

    def __init__(self, service: str, discovered: list[str], needed: str):
        self.service = service
        self.discovered = discovered
        super().__init__(
            f'Insufficient metrics found for service "{service}". '
            f"Found: {', '.join(discovered) or 'none'}. Need {needed}."
        )


class BackendError(TelemetryToolError):
    """Telemetry backend call failed."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        self.message = message
        super().__init__(message if status_code is None else f"Backend error {status_code}: {message}")


class TransientBackendError(BackendError):
    """Rate limit, 5xx or transport failure. Retried before being surfaced."""

    pass


class PermanentBackendError(BackendError):
    """4xx other than 429. Never retried."""

    pass


class AuthUnavailableError(PermanentBackendError):
    """No credential could be obtained for the backend."""

    def __init__(self, message: str = "No Datadog authentication available"):
        super().__init__(message)


class ParseError(TelemetryToolError):
    """Backend response did not have the expected shape."""

    pass


def describe_error(error: BaseException) -> str:
    """Message for a failed ToolResult."""
    if isinstance(error, TelemetryToolError):
        return str(error)
    return f"{type(error).__name__}: {error}"
