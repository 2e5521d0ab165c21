"""
Custom exception hierarchy for pyscratch.
"""
from typing import Optional, Dict, Any


class ScratchError(Exception):
    """Base exception for all pyscratch errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} - Details: {self.details}"
        return self.message


class SandboxError(ScratchError):
    """Base exception for sandbox errors."""
    pass


class SandboxSetupError(SandboxError):
    """Raised when an isolated session fails to initialize. Never retried."""

    def __init__(self, cause: str, session_id: Optional[str] = None):
        details = {"cause": cause}
        if session_id:
            details["session_id"] = session_id
        super().__init__(f"Sandbox setup failed: {cause}", details)
        self.cause = cause
        self.session_id = session_id


class SessionNotReadyError(SandboxError):
    def __init__(self, session_id: str, state: str):
        super().__init__(
            f"Session {session_id} is not ready (state: {state})",
            {"session_id": session_id, "state": state},
        )
        self.session_id = session_id
        self.state = state


class ProtocolError(SandboxError):
    """Raised when a frame crossing the isolation boundary is malformed."""
    pass


class StaleResultError(SandboxError):
    def __init__(self, session_id: str, request_id: int):
        super().__init__(
            f"Stale result for request {request_id} from session {session_id}",
            {"session_id": session_id, "request_id": request_id},
        )
        self.session_id = session_id
        self.request_id = request_id
