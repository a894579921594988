"""
Exception types for the reconciliation core.

Benign scan outcomes (duplicate, quota exceeded, surplus) are NOT exceptions;
they are Decision values. These classes cover the failures callers must handle.
Each carries a stable `kind` string used on the wire and in API error bodies.
"""

from typing import Optional


class TallyError(Exception):
    """Base class for all reconciliation errors."""
    kind = "error"

    def __init__(self, detail: str = ""):
        super().__init__(detail)
        self.detail = detail


class SessionNotFound(TallyError):
    """Unknown or expired session id."""
    kind = "not-found"

    def __init__(self, session_id: str):
        super().__init__(f"Session {session_id} not found or expired")
        self.session_id = session_id


class InvalidInput(TallyError, ValueError):
    """Malformed upload, empty code, bad session id."""
    kind = "invalid-input"


class CodeSpaceExhausted(TallyError):
    """No free session id after the configured number of attempts."""
    kind = "code-space-exhausted"


class TransientNetworkError(TallyError):
    """Submit or poll failed before reaching the authoritative owner."""
    kind = "transient-network"


# Remediation hints shown to the user, keyed by capability failure reason
CAPABILITY_HINTS = {
    "insecure-context": "Camera access requires a secure context. Open the app over HTTPS (or localhost).",
    "no-camera": "No camera was found on this device. Connect a camera or scan from another device.",
    "permission-denied": "Camera permission was denied. Allow camera access in the browser settings and retry.",
    "device-busy": "The camera is being used by another application. Close it and retry.",
    "unsupported": "This browser does not support camera capture. Try a current Chrome, Safari or Firefox.",
    "storage": "Local storage is not available. Disable private browsing or free up space.",
}


class CapabilityUnavailable(TallyError):
    """
    Camera or local storage cannot be used.

    Surfaced to the user with an actionable hint; never retried automatically.
    """
    kind = "capability-unavailable"

    def __init__(self, reason: str, detail: Optional[str] = None):
        self.reason = reason
        self.hint = CAPABILITY_HINTS.get(reason, "The device capability is not available.")
        super().__init__(detail or self.hint)
