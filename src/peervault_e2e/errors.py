from __future__ import annotations


class HarnessError(Exception):
    """Base class for every error raised by the harness itself."""


class CdpConnectionError(HarnessError, ConnectionError):
    """No usable websocket to the DevTools endpoint (never opened, or lost)."""


class ReconnectExhausted(CdpConnectionError):
    def __init__(self, attempts: int, waited_s: float) -> None:
        self.attempts = attempts
        self.waited_s = waited_s
        super().__init__(
            f"CDP client not connected and reconnection failed after {attempts} attempt(s) ({waited_s:.1f}s)"
        )


class CdpTimeoutError(HarnessError, TimeoutError):
    def __init__(self, method: str, timeout_s: float) -> None:
        self.method = method
        self.timeout_s = timeout_s
        super().__init__(f"CDP command timeout: {method} (after {timeout_s:.1f}s)")


class EvaluationError(HarnessError):
    """The remote side reported an error or a thrown exception."""

    def __init__(self, message: str, code: int | None = None) -> None:
        self.code = code
        super().__init__(message)


class DiscoveryError(HarnessError):
    pass


class SyncTimeoutError(HarnessError, TimeoutError):
    """A convergence wait gave up; the message names the mismatched values."""


class HarnessAssertionError(AssertionError):
    pass
