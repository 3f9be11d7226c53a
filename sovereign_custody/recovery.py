"""Round-based recovery of the controller.

A recovery round is opened by one guardian (`initiate_recovery`), other
guardians record their proposals inside that round (`support_recovery`), and
any guardian may then execute with a list of voters whose current-round
proposals agree on the new controller.

Each guardian account holds exactly one proposal slot. Proposals are never
deleted; a proposal from an earlier round simply stops matching once the
round advances.

Voters are consumed one by one while walking the list, so a voter listed
twice reads its own `consumed` flag on the second visit and the whole call is
rejected. The vault rolls back every flag set before the failure.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Callable, Dict, Sequence

from .access import AccessGate
from .digest import guardian_digest, normalize_account
from .errors import (
    DisagreementError,
    DuplicateVoterError,
    QuorumNotMetError,
    RoundMismatchError,
    UnauthorizedError,
)
from .registry import GuardianRegistry
from .state import CustodyState, Mode, Proposal, Transition

Emit = Callable[[str, str, str, Dict[str, Any]], None]


class CancelPolicy(str, Enum):
    """Who may abort an in-progress recovery.

    CONTROLLER assumes the controller key was only misplaced and may turn up
    again; GUARDIAN assumes the controller may be gone for good, so the
    committee polices itself; EITHER accepts both.
    """

    CONTROLLER = "controller"
    GUARDIAN = "guardian"
    EITHER = "either"


class RecoveryCoordinator:
    LAYER = "recovery"

    def __init__(
        self,
        state: CustodyState,
        gate: AccessGate,
        registry: GuardianRegistry,
        emit: Emit,
        cancel_policy: CancelPolicy = CancelPolicy.CONTROLLER,
    ) -> None:
        self.state = state
        self.gate = gate
        self.registry = registry
        self.emit = emit
        self.cancel_policy = CancelPolicy(cancel_policy)

    def initiate_recovery(self, caller: str, proposed_controller: str) -> int:
        actor = self.gate.require_guardian(caller)
        self.gate.require_mode(Mode.NORMAL)
        proposed = normalize_account(proposed_controller)

        self.state.recovery = self.state.recovery.apply(Transition.BEGIN)
        rnd = self.state.recovery.round
        self.state.proposals[actor] = Proposal(proposed_controller=proposed, round=rnd)

        self.emit(self.LAYER, "RecoveryInitiated", actor, {"proposed_controller": proposed})
        return rnd

    def support_recovery(self, caller: str, proposed_controller: str) -> None:
        actor = self.gate.require_guardian(caller)
        self.gate.require_mode(Mode.IN_RECOVERY)
        proposed = normalize_account(proposed_controller)

        self.state.proposals[actor] = Proposal(proposed_controller=proposed, round=self.state.recovery.round)
        self.emit(self.LAYER, "RecoverySupported", actor, {"proposed_controller": proposed})

    def _require_canceller(self, caller: str) -> str:
        policy = self.cancel_policy
        if policy is CancelPolicy.CONTROLLER:
            return self.gate.require_controller(caller)
        if policy is CancelPolicy.GUARDIAN:
            return self.gate.require_guardian(caller)
        if self.gate.is_controller(caller) or self.gate.is_guardian(caller):
            return normalize_account(caller)
        raise UnauthorizedError("caller is neither the controller nor a guardian")

    def cancel_recovery(self, caller: str) -> None:
        actor = self._require_canceller(caller)
        self.gate.require_mode(Mode.IN_RECOVERY)

        self.state.recovery = self.state.recovery.apply(Transition.CANCEL)
        self.emit(self.LAYER, "RecoveryCancelled", actor, {"policy": self.cancel_policy.value})

    def execute_recovery(self, caller: str, new_controller: str, voters: Sequence[str]) -> str:
        actor = self.gate.require_guardian(caller)
        self.gate.require_mode(Mode.IN_RECOVERY)
        proposed = normalize_account(new_controller)

        voter_list = [normalize_account(v) for v in voters]
        if len(voter_list) < self.state.threshold:
            raise QuorumNotMetError(f"{len(voter_list)} voters listed, threshold is {self.state.threshold}")

        current = self.state.recovery.round
        for voter in voter_list:
            if not self.registry.is_guardian_digest(guardian_digest(voter)):
                raise UnauthorizedError(f"voter {voter} is not a current guardian")
            proposal = self.state.proposals.get(voter)
            if proposal is None or proposal.round != current:
                raise RoundMismatchError(f"voter {voter} has no proposal in round {current}")
            if proposal.proposed_controller != proposed:
                raise DisagreementError(f"voter {voter} proposed {proposal.proposed_controller}")
            if proposal.consumed:
                raise DuplicateVoterError(f"voter {voter} already counted")
            proposal.consumed = True

        previous = self.state.controller
        self.state.recovery = self.state.recovery.apply(Transition.EXECUTE)
        self.state.controller = proposed

        self.emit(
            self.LAYER,
            "RecoveryExecuted",
            actor,
            {"old_controller": previous, "new_controller": proposed, "voters": voter_list, "recovered_round": current},
        )
        return proposed
