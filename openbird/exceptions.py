"""Custom exceptions for openbird."""


class OpenbirdError(Exception):
    """Base exception for openbird."""

    pass


class ConfigurationError(OpenbirdError):
    """Configuration-related errors."""

    pass


class ValidationError(OpenbirdError):
    """Malformed capability registration or request payload."""

    pass


class BackendUnavailableError(OpenbirdError):
    """The model backend could not serve a request."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class CapabilityError(OpenbirdError):
    """A capability raised while executing."""

    def __init__(self, tool_name: str, message: str):
        super().__init__(f"Tool '{tool_name}' failed: {message}")
        self.tool_name = tool_name


class ToolNotFoundError(CapabilityError):
    """Model asked for a capability that is not registered."""

    def __init__(self, tool_name: str):
        OpenbirdError.__init__(self, f"Tool not found: {tool_name}")
        self.tool_name = tool_name


class CancellationRequested(OpenbirdError):
    """Cooperative cancellation of a run."""

    def __init__(self, message: str = "Agent aborted"):
        super().__init__(message)


class SessionError(OpenbirdError):
    """Session-related errors."""

    pass


class SessionNotFoundError(SessionError):
    """Session not found."""

    def __init__(self, session_id: str):
        super().__init__(f"Session not found: {session_id}")
        self.session_id = session_id


class SessionBusyError(SessionError):
    """Session already has a run in flight."""

    def __init__(self, session_id: str):
        super().__init__(f"Session is already running: {session_id}")
        self.session_id = session_id
