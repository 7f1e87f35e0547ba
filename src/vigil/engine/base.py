from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Protocol

RECURSION_GUARD_ENV = "VIGIL_DISABLED"


@dataclass(frozen=True)
class EngineResponse:
    result: str
    session_id: str = ""
    cost_usd: float = 0.0
    total_tokens: int = 0


class ReasoningEngine(Protocol):
    name: str

    def invoke(self, system_prompt: str, message: str) -> EngineResponse: ...


def child_env() -> dict[str, str]:
    # The engine's own hooks must not trigger another review of the review.
    env = dict(os.environ)
    env[RECURSION_GUARD_ENV] = "1"
    return env
