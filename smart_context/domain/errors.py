"""
Error taxonomy for the context engine
"""

from typing import Optional


class ContextEngineError(Exception):
    """Base class for all engine errors"""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": type(self).__name__, "message": self.message}


class ValidationError(ContextEngineError):
    """Malformed request or configuration value"""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field

    def to_dict(self) -> dict:
        data = super().to_dict()
        if self.field:
            data["field"] = self.field
        return data


class SessionNotFound(ContextEngineError):
    """Unknown context session id"""

    def __init__(self, session_id: int):
        super().__init__(f"Session {session_id} not found")
        self.session_id = session_id

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["session_id"] = self.session_id
        return data


class StoreError(ContextEngineError):
    """A store operation failed"""

    def __init__(self, message: str, operation_id: Optional[str] = None):
        super().__init__(message)
        self.operation_id = operation_id


class StoreTimeout(StoreError):
    """A store operation exceeded its deadline"""

    def __init__(self, operation_id: str, timeout: float):
        super().__init__(f"Operation {operation_id} timed out after {timeout}s", operation_id)
        self.timeout = timeout


class SignalUnavailable(ContextEngineError):
    """An external scoring signal failed or timed out"""

    def __init__(self, signal: str, path: str, reason: str):
        super().__init__(f"Signal '{signal}' unavailable for {path}: {reason}")
        self.signal = signal
        self.path = path
        self.reason = reason
