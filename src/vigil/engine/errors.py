from __future__ import annotations


class EngineError(RuntimeError):
    pass


class EngineUnavailableError(EngineError):
    def __init__(self, executable: str) -> None:
        super().__init__(f"Reasoning engine executable not available: {executable}")
        self.executable = executable


class EngineTimeoutError(EngineError):
    def __init__(self, timeout_seconds: float) -> None:
        super().__init__(f"Reasoning engine timed out after {timeout_seconds:.1f}s")
        self.timeout_seconds = timeout_seconds


class EngineCommandError(EngineError):
    def __init__(self, message: str) -> None:
        super().__init__(f"Reasoning engine command failed: {message}")
        self.detail = message


class EngineRateLimitedError(EngineError):
    def __init__(self, resets_in_seconds: int | None = None) -> None:
        if resets_in_seconds is None:
            message = "Rate limited"
        else:
            message = f"Rate limited (resets in {resets_in_seconds // 60} minutes)"
        super().__init__(message)
        self.resets_in_seconds = resets_in_seconds


class EngineResponseError(EngineError):
    def __init__(self, message: str) -> None:
        super().__init__(f"Failed to parse reasoning engine response: {message}")
        self.detail = message
