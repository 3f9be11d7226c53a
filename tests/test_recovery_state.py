# tests/test_recovery_state.py
"""Tests for the custody data model.

Validates:
  - The recovery transition table (mode + round in one value)
  - Construction invariants (distinct digests, 0 < threshold <= guardians)
  - Snapshot / restore and serialisation of the full state
"""
import pytest

from sovereign_custody.digest import guardian_digest, normalize_account, normalize_digest
from sovereign_custody.errors import (
    ConstructionInvariantError,
    InvalidModeError,
    MalformedDigestError,
)
from sovereign_custody.state import CustodyState, Mode, Proposal, RecoveryState, Transition

DEPLOYER = "0x00000000000000000000000000000000000000C0"
GUARDIANS = [
    "0x00000000000000000000000000000000000000a1",
    "0x00000000000000000000000000000000000000a2",
    "0x00000000000000000000000000000000000000a3",
]


def _digests():
    return [guardian_digest(g) for g in GUARDIANS]


# ---------------------------------------------------------------------------
# 1. Transition table
# ---------------------------------------------------------------------------

class TestRecoveryState:
    def test_starts_normal_at_round_zero(self):
        s = RecoveryState()
        assert s.mode is Mode.NORMAL
        assert s.round == 0

    def test_begin_enters_recovery_and_advances_round(self):
        s = RecoveryState().apply(Transition.BEGIN)
        assert s.in_recovery is True
        assert s.round == 1

    def test_begin_twice_is_rejected(self):
        s = RecoveryState().apply(Transition.BEGIN)
        with pytest.raises(InvalidModeError):
            s.apply(Transition.BEGIN)

    @pytest.mark.parametrize("transition", [Transition.EXECUTE, Transition.CANCEL])
    def test_leaving_recovery_requires_recovery(self, transition):
        with pytest.raises(InvalidModeError):
            RecoveryState().apply(transition)

    @pytest.mark.parametrize("transition", [Transition.EXECUTE, Transition.CANCEL])
    def test_leaving_recovery_keeps_round(self, transition):
        s = RecoveryState().apply(Transition.BEGIN).apply(transition)
        assert s == RecoveryState(in_recovery=False, round=1)

    def test_rounds_are_monotonic_across_cycles(self):
        s = RecoveryState()
        for expected in (1, 2, 3):
            s = s.apply(Transition.BEGIN)
            assert s.round == expected
            s = s.apply(Transition.CANCEL)
        assert s.round == 3


# ---------------------------------------------------------------------------
# 2. Digests
# ---------------------------------------------------------------------------

class TestDigests:
    def test_hex_addresses_are_case_insensitive(self):
        assert guardian_digest("0xABCDEF") == guardian_digest("0xabcdef")

    def test_non_hex_identifiers_keep_case(self):
        assert normalize_account("  Alice ") == "Alice"
        assert guardian_digest("Alice") != guardian_digest("alice")

    def test_digest_normalisation_accepts_prefix_and_upper_case(self):
        d = guardian_digest("0xa1")
        assert normalize_digest("0x" + d.upper()) == d

    def test_malformed_digest(self):
        with pytest.raises(MalformedDigestError):
            normalize_digest("0x1234")

    def test_empty_account_rejected(self):
        with pytest.raises(ValueError):
            normalize_account("   ")


# ---------------------------------------------------------------------------
# 3. Construction invariants
# ---------------------------------------------------------------------------

class TestGenesis:
    def test_valid_construction(self):
        s = CustodyState.genesis(DEPLOYER, _digests(), 2)
        assert s.controller == DEPLOYER.lower()
        assert s.threshold == 2
        assert s.guardians == set(_digests())
        assert s.recovery == RecoveryState()

    def test_threshold_may_equal_guardian_count(self):
        assert CustodyState.genesis(DEPLOYER, _digests(), 3).threshold == 3

    @pytest.mark.parametrize("threshold", [0, -1, 4, True, "2"])
    def test_bad_threshold(self, threshold):
        with pytest.raises(ConstructionInvariantError):
            CustodyState.genesis(DEPLOYER, _digests(), threshold)

    def test_duplicate_digest_rejected(self):
        d = _digests()
        with pytest.raises(ConstructionInvariantError):
            CustodyState.genesis(DEPLOYER, d + [d[0]], 2)

    def test_duplicate_digest_in_other_spelling_rejected(self):
        d = _digests()
        with pytest.raises(ConstructionInvariantError):
            CustodyState.genesis(DEPLOYER, d + ["0x" + d[1].upper()], 2)

    def test_malformed_digest_is_a_construction_error(self):
        with pytest.raises(ConstructionInvariantError):
            CustodyState.genesis(DEPLOYER, ["not-a-digest"], 1)

    def test_no_guardians(self):
        with pytest.raises(ConstructionInvariantError):
            CustodyState.genesis(DEPLOYER, [], 1)


# ---------------------------------------------------------------------------
# 4. Snapshots
# ---------------------------------------------------------------------------

class TestSnapshots:
    def test_restore_is_in_place(self):
        s = CustodyState.genesis(DEPLOYER, _digests(), 2)
        alias = s
        snap = s.copy()

        s.controller = "0xbad"
        s.guardians.clear()
        s.proposals["0xa1"] = Proposal("0xbad", 1)
        s.recovery = s.recovery.apply(Transition.BEGIN)

        s.restore(snap)
        assert alias.controller == DEPLOYER.lower()
        assert alias.guardians == set(_digests())
        assert alias.proposals == {}
        assert alias.recovery.round == 0

    def test_snapshot_is_independent(self):
        s = CustodyState.genesis(DEPLOYER, _digests(), 2)
        snap = s.copy()
        s.guardians.add(guardian_digest("0xa9"))
        assert len(snap.guardians) == 3

    def test_dict_round_trip(self):
        s = CustodyState.genesis(DEPLOYER, _digests(), 2)
        s.recovery = s.recovery.apply(Transition.BEGIN)
        s.proposals[GUARDIANS[0].lower()] = Proposal("0xbeef", 1, consumed=True)
        s.removal_schedule[_digests()[2]] = 1234
        s.balance = 50

        back = CustodyState.from_dict(s.to_dict())
        assert back == s

    def test_from_dict_revalidates(self):
        data = CustodyState.genesis(DEPLOYER, _digests(), 2).to_dict()
        data["threshold"] = 9
        with pytest.raises(ConstructionInvariantError):
            CustodyState.from_dict(data)

    def test_zero_schedule_entries_are_not_persisted(self):
        s = CustodyState.genesis(DEPLOYER, _digests(), 2)
        s.removal_schedule[_digests()[0]] = 0
        assert s.to_dict()["removal_schedule"] == {}
