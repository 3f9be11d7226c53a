"""Guarded vault.

Composes the access gate, guardian registry, recovery coordinator and control
surface over one `CustodyState`, and runs every public operation as a single
all-or-nothing step:

- the state is snapshotted before the operation and restored if it raises;
- events are buffered and only published (ledger first, then in-memory)
  once the operation has returned; a failed ledger write also restores the
  state, so nothing of the operation remains visible;
- a forwarded call that re-enters the vault opens a nested scope whose
  effects are still reverted if the outer operation fails.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence

from .access import AccessGate
from .clock import SystemClock
from .config import CustodyConfig
from .control import CallTransport, ControlSurface
from .digest import guardian_digest, normalize_account, normalize_digest
from .ledger import CustodyLedger
from .recovery import CancelPolicy, RecoveryCoordinator
from .registry import GuardianRegistry
from .signing import EvidenceSigner
from .state import CustodyEvent, CustodyState, Proposal


@dataclass
class _Scope:
    snapshot: CustodyState
    events: List[CustodyEvent] = field(default_factory=list)


class GuardedVault:
    def __init__(
        self,
        state: CustodyState,
        *,
        clock=None,
        transport: Optional[CallTransport] = None,
        ledger: Optional[CustodyLedger] = None,
        cancel_policy: CancelPolicy = CancelPolicy.CONTROLLER,
    ) -> None:
        self.state = state
        self.clock = clock or SystemClock()
        self.ledger = ledger
        self.events: List[CustodyEvent] = []

        self._lock = threading.RLock()
        self._scopes: List[_Scope] = []

        self.gate = AccessGate(state)
        self.registry = GuardianRegistry(state, self.gate, self._emit, clock=self.clock)
        self.recovery = RecoveryCoordinator(state, self.gate, self.registry, self._emit, cancel_policy)
        self.control = ControlSurface(state, self.gate, self._emit, transport)

    @classmethod
    def deploy(
        cls,
        deployer: str,
        guardian_digests: Iterable[str],
        threshold: int,
        **kwargs: Any,
    ) -> "GuardedVault":
        """Construct a vault; the deployer becomes the controller."""
        vault = cls(CustodyState.genesis(deployer, guardian_digests, threshold), **kwargs)
        with vault._transaction():
            vault._emit(
                "vault",
                "VaultDeployed",
                vault.state.controller,
                {"threshold": vault.state.threshold, "guardians": sorted(vault.state.guardians)},
            )
        return vault

    @staticmethod
    def components_from_config(config: CustodyConfig) -> Dict[str, Any]:
        """Ledger and cancel policy keyword arguments for `deploy` / `__init__`."""
        ledger = None
        if config.ledger_path is not None:
            ledger = CustodyLedger(
                config.ledger_path,
                engine_version=config.engine_version,
                signer=EvidenceSigner.from_path(config.signing_key_path) if config.signing_key_path else None,
            )
        return {"ledger": ledger, "cancel_policy": config.cancel_policy}

    # =========================
    # Atomic execution
    # =========================

    def _emit(self, layer: str, name: str, actor: str, data: Dict[str, Any]) -> None:
        if not self._scopes:
            raise RuntimeError("vault events can only be emitted inside an operation")
        self._scopes[-1].events.append(
            CustodyEvent(
                layer=layer,
                name=name,
                actor=actor,
                data=data,
                round=self.state.recovery.round,
                in_recovery=self.state.recovery.in_recovery,
                at=self.clock.now(),
            )
        )

    def _publish(self, events: List[CustodyEvent]) -> None:
        numbered = [replace(event, seq=len(self.events) + i) for i, event in enumerate(events)]
        if self.ledger is not None and numbered:
            self.ledger.append_events(numbered)
        self.events.extend(numbered)

    @contextmanager
    def _transaction(self) -> Iterator[None]:
        with self._lock:
            scope = _Scope(snapshot=self.state.copy())
            self._scopes.append(scope)
            try:
                yield
            except BaseException:
                self.state.restore(scope.snapshot)
                raise
            finally:
                self._scopes.pop()

            if self._scopes:
                self._scopes[-1].events.extend(scope.events)
                return

            # Commit point. append_events writes the whole batch or raises before writing.
            try:
                self._publish(scope.events)
            except BaseException:
                self.state.restore(scope.snapshot)
                raise

    # =========================
    # Operations
    # =========================

    def deposit(self, sender: str, amount: int) -> int:
        with self._transaction():
            return self.control.deposit(sender, amount)

    def execute_external_tx(self, caller: str, target: str, value: int = 0, payload: bytes = b"") -> bytes:
        with self._transaction():
            return self.control.execute_external_tx(caller, target, value, payload)

    def initiate_recovery(self, caller: str, proposed_controller: str) -> int:
        with self._transaction():
            return self.recovery.initiate_recovery(caller, proposed_controller)

    def support_recovery(self, caller: str, proposed_controller: str) -> None:
        with self._transaction():
            self.recovery.support_recovery(caller, proposed_controller)

    def cancel_recovery(self, caller: str) -> None:
        with self._transaction():
            self.recovery.cancel_recovery(caller)

    def execute_recovery(self, caller: str, new_controller: str, voters: Sequence[str]) -> str:
        with self._transaction():
            return self.recovery.execute_recovery(caller, new_controller, voters)

    def queue_removal(self, caller: str, digest: str) -> int:
        with self._transaction():
            return self.registry.queue_removal(caller, digest)

    def execute_removal(self, caller: str, old_digest: str, new_digest: str) -> None:
        with self._transaction():
            self.registry.execute_removal(caller, old_digest, new_digest)

    def cancel_removal(self, caller: str, digest: str) -> None:
        with self._transaction():
            self.registry.cancel_removal(caller, digest)

    def transfer_guardianship(self, caller: str, new_digest: str) -> None:
        with self._transaction():
            self.registry.transfer_guardianship(caller, new_digest)

    def reveal_identity(self, caller: str) -> str:
        with self._transaction():
            return self.registry.reveal_identity(caller)

    # =========================
    # Views
    # =========================

    @property
    def controller(self) -> str:
        return self.state.controller

    @property
    def threshold(self) -> int:
        return self.state.threshold

    @property
    def round(self) -> int:
        return self.state.recovery.round

    @property
    def in_recovery(self) -> bool:
        return self.state.recovery.in_recovery

    @property
    def balance(self) -> int:
        return self.state.balance

    def is_guardian(self, account: str) -> bool:
        return guardian_digest(account) in self.state.guardians

    def has_guardian_digest(self, digest: str) -> bool:
        return normalize_digest(digest) in self.state.guardians

    def removal_due(self, digest: str) -> int:
        return self.state.removal_due(normalize_digest(digest))

    def proposal(self, account: str) -> Optional[Proposal]:
        return self.state.proposals.get(normalize_account(account))

    def status(self) -> Dict[str, Any]:
        return {
            "controller": self.controller,
            "threshold": self.threshold,
            "guardian_count": len(self.state.guardians),
            "mode": self.state.recovery.mode.value,
            "round": self.round,
            "balance": self.balance,
            "pending_removals": {d: t for d, t in sorted(self.state.removal_schedule.items()) if t},
            "cancel_policy": self.recovery.cancel_policy.value,
            "events": len(self.events),
        }
