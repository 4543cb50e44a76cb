"""humanbrowse exception hierarchy."""

from __future__ import annotations

from typing import Sequence


class HumanBrowseError(Exception):
    """Base exception for all humanbrowse errors."""


class ElementNotFoundError(HumanBrowseError):
    """Raised when every locator strategy in the cascade failed.

    Attributes:
        descriptor: The target descriptor that could not be resolved.
        action: The interaction that was attempted (``click``, ``type``, ``extract``).
        attempts: ``(strategy, reason)`` pairs in the order they were tried.
    """

    def __init__(self, descriptor: str, action: str, attempts: Sequence[tuple[str, str]] = ()) -> None:
        self.descriptor = descriptor
        self.action = action
        self.attempts = list(attempts)
        tried = ", ".join(f"{name} ({reason})" for name, reason in self.attempts) or "none"
        super().__init__(f"No element for {action} target {descriptor!r}; tried: {tried}")


class NavigationFailedError(HumanBrowseError):
    """Raised when a navigation cannot complete (load failure or timeout).

    ``transient`` is set for failures worth retrying (timeouts), and left
    unset for hard errors such as an unresolvable host.
    """

    def __init__(self, url: str, reason: str, *, transient: bool = False) -> None:
        self.url = url
        self.reason = reason
        self.transient = transient
        super().__init__(f"Navigation to {url} failed: {reason}")


class TimeoutExceededError(HumanBrowseError):
    """Raised when a bounded wait elapses before its condition holds."""

    def __init__(self, condition: str, timeout_ms: float) -> None:
        self.condition = condition
        self.timeout_ms = timeout_ms
        super().__init__(f"Timed out after {timeout_ms:.0f}ms waiting for {condition}")


class ProtocolUnavailableError(HumanBrowseError):
    """Raised when the browser's debugging endpoint never became reachable.

    Fatal for the backend instance that raised it.
    """

    def __init__(self, host: str, port: int, reason: str = "") -> None:
        self.host = host
        self.port = port
        self.reason = reason
        detail = f": {reason}" if reason else ""
        super().__init__(f"Debugging endpoint {host}:{port} unavailable{detail}")


class EvaluationFailedError(HumanBrowseError):
    """Raised when an injected script throws inside the page."""

    def __init__(self, message: str, script: str = "") -> None:
        self.script = script
        snippet = script.strip().splitlines()[0][:80] if script.strip() else ""
        suffix = f" (script: {snippet})" if snippet else ""
        super().__init__(f"Script evaluation failed: {message}{suffix}")


class DialogBlockedError(HumanBrowseError):
    """Records a native dialog that appeared unexpectedly and was auto-handled.

    Instances are appended to ``BrowserSession.blocked_dialogs`` rather than
    raised, so interactions are never stalled by an open dialog.
    """

    def __init__(self, dialog_type: str, message: str, accepted: bool) -> None:
        self.dialog_type = dialog_type
        self.message = message
        self.accepted = accepted
        verb = "accepted" if accepted else "dismissed"
        super().__init__(f"{dialog_type} dialog {verb}: {message}")
