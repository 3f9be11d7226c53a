"""Guardian registry.

Owns the guardian digest set and the time-delayed removal workflow. Guardians
are swapped one-for-one; the set is never regenerated.
"""

from __future__ import annotations

from typing import Any, Callable, Dict

from .access import AccessGate
from .clock import SystemClock
from .digest import guardian_digest, normalize_digest
from .errors import (
    AlreadyGuardianError,
    DelayNotElapsedError,
    NotGuardianError,
    NotQueuedError,
    PendingRemovalError,
)
from .state import CustodyState, Mode

REMOVAL_DELAY_SECONDS = 3 * 24 * 60 * 60

Emit = Callable[[str, str, str, Dict[str, Any]], None]


class GuardianRegistry:
    LAYER = "registry"

    def __init__(self, state: CustodyState, gate: AccessGate, emit: Emit, clock=None) -> None:
        self.state = state
        self.gate = gate
        self.emit = emit
        self.clock = clock or SystemClock()

    def is_guardian_digest(self, digest: str) -> bool:
        """Read-only membership check (the only registry call the coordinator makes)."""
        return normalize_digest(digest) in self.state.guardians

    def _swap(self, old: str, new: str) -> None:
        if new in self.state.guardians:
            raise AlreadyGuardianError(f"digest {new} is already a guardian")
        self.state.guardians.discard(old)
        self.state.guardians.add(new)

    def transfer_guardianship(self, caller: str, new_digest: str) -> None:
        actor = self.gate.require_guardian(caller)
        self.gate.require_mode(Mode.NORMAL)
        new = normalize_digest(new_digest)
        old = guardian_digest(actor)
        if self.state.removal_due(old):
            raise PendingRemovalError("guardian is queued for removal")

        self._swap(old, new)
        self.emit(self.LAYER, "GuardianshipTransferred", actor, {"old_digest": old, "new_digest": new})

    def queue_removal(self, caller: str, digest: str) -> int:
        actor = self.gate.require_controller(caller)
        d = normalize_digest(digest)
        if d not in self.state.guardians:
            raise NotGuardianError(f"digest {d} is not a guardian")

        due = self.clock.now() + REMOVAL_DELAY_SECONDS
        self.state.removal_schedule[d] = due
        self.emit(self.LAYER, "GuardianRemovalQueued", actor, {"digest": d, "due": due})
        return due

    def execute_removal(self, caller: str, old_digest: str, new_digest: str) -> None:
        actor = self.gate.require_controller(caller)
        old = normalize_digest(old_digest)
        new = normalize_digest(new_digest)

        due = self.state.removal_due(old)
        if not due:
            raise NotQueuedError(f"digest {old} is not queued for removal")
        now = self.clock.now()
        if now < due:
            raise DelayNotElapsedError(f"removal of {old} allowed at {due}, now {now}")

        self.state.removal_schedule.pop(old, None)
        self._swap(old, new)
        self.emit(self.LAYER, "GuardianRemoved", actor, {"old_digest": old, "new_digest": new})

    def cancel_removal(self, caller: str, digest: str) -> None:
        actor = self.gate.require_controller(caller)
        d = normalize_digest(digest)
        was_queued = self.state.removal_schedule.pop(d, 0) != 0
        self.emit(self.LAYER, "GuardianRemovalCancelled", actor, {"digest": d, "was_queued": was_queued})

    def reveal_identity(self, caller: str) -> str:
        actor = self.gate.require_guardian(caller)
        digest = guardian_digest(actor)
        self.emit(self.LAYER, "GuardianRevealed", actor, {"digest": digest, "account": actor})
        return digest
