"""Custody state.

The recovery mode and its round live in one explicit value (`RecoveryState`)
so the transition table can be read, and tested, without any storage.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, Optional

from .digest import normalize_account, normalize_digest
from .errors import ConstructionInvariantError, InvalidModeError, MalformedDigestError


class Mode(str, Enum):
    NORMAL = "normal"
    IN_RECOVERY = "in_recovery"


class Transition(str, Enum):
    BEGIN = "begin"
    EXECUTE = "execute"
    CANCEL = "cancel"


# transition -> (required mode, resulting mode, round increment)
TRANSITIONS: Dict[Transition, tuple[Mode, Mode, int]] = {
    Transition.BEGIN: (Mode.NORMAL, Mode.IN_RECOVERY, 1),
    Transition.EXECUTE: (Mode.IN_RECOVERY, Mode.NORMAL, 0),
    Transition.CANCEL: (Mode.IN_RECOVERY, Mode.NORMAL, 0),
}


@dataclass(frozen=True)
class RecoveryState:
    in_recovery: bool = False
    round: int = 0

    @property
    def mode(self) -> Mode:
        return Mode.IN_RECOVERY if self.in_recovery else Mode.NORMAL

    def apply(self, transition: Transition) -> "RecoveryState":
        required, result, step = TRANSITIONS[transition]
        if self.mode is not required:
            raise InvalidModeError(f"{transition.value} requires mode {required.value}, vault is {self.mode.value}")
        return RecoveryState(in_recovery=result is Mode.IN_RECOVERY, round=self.round + step)

    def to_dict(self) -> Dict[str, Any]:
        return {"in_recovery": self.in_recovery, "round": self.round}


@dataclass
class Proposal:
    proposed_controller: str
    round: int
    consumed: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "proposed_controller": self.proposed_controller,
            "round": self.round,
            "consumed": self.consumed,
        }


def _check_threshold(threshold: Any, guardian_count: int) -> int:
    if isinstance(threshold, bool) or not isinstance(threshold, int):
        raise ConstructionInvariantError(f"threshold must be an integer, got {threshold!r}")
    if not 0 < threshold <= guardian_count:
        raise ConstructionInvariantError(
            f"threshold must satisfy 0 < threshold <= guardians ({guardian_count}), got {threshold}"
        )
    return threshold


def _distinct_digests(digests: Iterable[str]) -> set[str]:
    seen: set[str] = set()
    for raw in digests:
        try:
            d = normalize_digest(raw)
        except MalformedDigestError as e:
            raise ConstructionInvariantError(e.reason) from e
        if d in seen:
            raise ConstructionInvariantError(f"duplicate guardian digest: {d}")
        seen.add(d)
    return seen


@dataclass
class CustodyState:
    """Everything the vault persists."""

    controller: str
    threshold: int
    guardians: set[str]
    removal_schedule: Dict[str, int] = field(default_factory=dict)
    proposals: Dict[str, Proposal] = field(default_factory=dict)
    recovery: RecoveryState = field(default_factory=RecoveryState)
    balance: int = 0

    @classmethod
    def genesis(cls, deployer: str, guardian_digests: Iterable[str], threshold: int) -> "CustodyState":
        try:
            controller = normalize_account(deployer)
        except ValueError as e:
            raise ConstructionInvariantError(str(e)) from e
        guardians = _distinct_digests(guardian_digests)
        return cls(
            controller=controller,
            threshold=_check_threshold(threshold, len(guardians)),
            guardians=guardians,
        )

    def removal_due(self, digest: str) -> int:
        return int(self.removal_schedule.get(digest, 0) or 0)

    def copy(self) -> "CustodyState":
        return copy.deepcopy(self)

    def restore(self, snapshot: "CustodyState") -> None:
        """Roll this object back to `snapshot` in place (components hold a reference to it)."""
        self.__dict__.update(copy.deepcopy(snapshot.__dict__))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "controller": self.controller,
            "threshold": self.threshold,
            "guardians": sorted(self.guardians),
            "removal_schedule": {d: t for d, t in sorted(self.removal_schedule.items()) if t},
            "proposals": {a: p.to_dict() for a, p in sorted(self.proposals.items())},
            "recovery": self.recovery.to_dict(),
            "balance": self.balance,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CustodyState":
        guardians = _distinct_digests(data.get("guardians") or [])
        recovery_raw: Optional[Dict[str, Any]] = data.get("recovery") or {}
        balance = int(data.get("balance", 0))
        if balance < 0:
            raise ConstructionInvariantError("balance cannot be negative")

        return cls(
            controller=normalize_account(str(data.get("controller") or "")),
            threshold=_check_threshold(data.get("threshold"), len(guardians)),
            guardians=guardians,
            removal_schedule={normalize_digest(d): int(t) for d, t in (data.get("removal_schedule") or {}).items() if t},
            proposals={
                normalize_account(a): Proposal(
                    proposed_controller=normalize_account(str(p["proposed_controller"])),
                    round=int(p["round"]),
                    consumed=bool(p.get("consumed", False)),
                )
                for a, p in (data.get("proposals") or {}).items()
            },
            recovery=RecoveryState(
                in_recovery=bool(recovery_raw.get("in_recovery", False)),
                round=int(recovery_raw.get("round", 0)),
            ),
            balance=balance,
        )


@dataclass(frozen=True)
class CustodyEvent:
    """Observable record of one state change (or reveal)."""

    layer: str
    name: str
    actor: str
    data: Dict[str, Any]
    round: int
    in_recovery: bool
    at: int
    seq: int = -1
