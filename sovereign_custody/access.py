"""Role and mode predicates evaluated before any state change."""

from __future__ import annotations

from .digest import guardian_digest, normalize_account
from .errors import InvalidModeError, UnauthorizedError
from .state import CustodyState, Mode


class AccessGate:
    def __init__(self, state: CustodyState) -> None:
        self.state = state

    def is_controller(self, caller: str) -> bool:
        return normalize_account(caller) == self.state.controller

    def is_guardian(self, caller: str) -> bool:
        return guardian_digest(caller) in self.state.guardians

    def require_controller(self, caller: str) -> str:
        if not self.is_controller(caller):
            raise UnauthorizedError("caller is not the controller")
        return normalize_account(caller)

    def require_guardian(self, caller: str) -> str:
        if not self.is_guardian(caller):
            raise UnauthorizedError("caller is not a guardian")
        return normalize_account(caller)

    def require_mode(self, mode: Mode) -> None:
        current = self.state.recovery.mode
        if current is not mode:
            raise InvalidModeError(f"operation requires mode {mode.value}, vault is {current.value}")
