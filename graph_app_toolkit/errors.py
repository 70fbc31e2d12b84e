"""
Exception hierarchy for GraphAppToolkit.

Components log an audit entry and re-raise; only the CLI turns these into
operator-facing messages.
"""


class ToolkitError(Exception):
    """Base class for all toolkit errors."""


class ValidationError(ToolkitError, ValueError):
    """Input rejected before any external call was made."""


class NotFoundError(ToolkitError, LookupError):
    """A certificate, application, principal, user or secret does not exist."""


class ConflictError(ToolkitError):
    """The requested change collides with existing state."""


class ConfigError(ToolkitError):
    """Configuration file could not be read."""


class AuthenticationError(ToolkitError):
    """Token acquisition failed."""


class GraphAPIError(RuntimeError):
    """Raised when Graph API returns a non-recoverable error."""

    def __init__(self, status_code: int, message: str, url: str):
        self.status_code = status_code
        self.url = url
        super().__init__(f"Graph API error {status_code} for {url}: {message}")


class ExchangeAPIError(RuntimeError):
    """Raised when an Exchange Online cmdlet invocation fails."""

    def __init__(self, status_code: int, message: str, cmdlet: str):
        self.status_code = status_code
        self.cmdlet = cmdlet
        super().__init__(f"Exchange Online error {status_code} running {cmdlet}: {message}")
