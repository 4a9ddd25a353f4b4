"""
Generation tokens used to suppress out-of-order completions.

Every multi-step load captures the token active when it started and checks
it before committing anything. Starting a new generation for a scope makes
all earlier tokens of that scope stale; their results are dropped rather
than cancelled on the wire.
"""

from dataclasses import dataclass
from typing import Dict, Optional

from shared.logging import get_logger


@dataclass(frozen=True)
class GenerationToken:
    scope: str
    value: int


class GenerationTracker:
    """Monotonic generation counter per switchable scope."""

    def __init__(self):
        self._current: Dict[str, int] = {}
        self.logger = get_logger("sync.generations")

    def begin(self, scope: str) -> GenerationToken:
        """Start a new generation, invalidating every earlier token of ``scope``."""
        value = self._current.get(scope, 0) + 1
        self._current[scope] = value
        self.logger.debug("Generation started", scope=scope, generation=value)
        return GenerationToken(scope, value)

    def current(self, scope: str) -> Optional[GenerationToken]:
        value = self._current.get(scope)
        return GenerationToken(scope, value) if value is not None else None

    def is_current(self, scope_or_token, token: Optional[GenerationToken] = None) -> bool:
        """Accepts ``is_current(token)`` or ``is_current(scope, token)``."""
        if token is None:
            token = scope_or_token
        elif token.scope != scope_or_token:
            return False
        return self._current.get(token.scope) == token.value

    def cancel_current(self, scope: str) -> None:
        """Invalidate the active generation without starting a new one."""
        if scope in self._current:
            self._current[scope] += 1
            self.logger.debug("Generation cancelled", scope=scope)

    def cancel_all(self) -> None:
        """Invalidate the active generation of every scope (sign-out)."""
        for scope in self._current:
            self._current[scope] += 1
        if self._current:
            self.logger.debug("All generations cancelled", scopes=len(self._current))
