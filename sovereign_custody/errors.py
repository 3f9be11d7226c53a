"""Custody exceptions.

Every failure aborts the enclosing vault operation with no persisted change.
`kind` is the stable, caller-visible failure name.
"""

from __future__ import annotations


class CustodyError(Exception):
    """Base class for rejected custody operations."""

    kind = "CustodyError"

    def __init__(self, reason: str = "") -> None:
        super().__init__(reason or self.kind)
        self.reason = reason

    def to_dict(self) -> dict:
        return {"ok": False, "error": self.kind, "reason": self.reason}


# =========================
# Access
# =========================

class UnauthorizedError(CustodyError):
    """Raised when the caller fails a role predicate."""

    kind = "Unauthorized"


class InvalidModeError(CustodyError):
    """Raised when the operation is not allowed in the current recovery mode."""

    kind = "InvalidMode"


# =========================
# Recovery execution
# =========================

class QuorumNotMetError(CustodyError):
    kind = "QuorumNotMet"


class RoundMismatchError(CustodyError):
    kind = "RoundMismatch"


class DisagreementError(CustodyError):
    kind = "Disagreement"


class DuplicateVoterError(CustodyError):
    kind = "DuplicateVoter"


# =========================
# Registry
# =========================

class PendingRemovalError(CustodyError):
    kind = "PendingRemoval"


class NotQueuedError(CustodyError):
    kind = "NotQueued"


class DelayNotElapsedError(CustodyError):
    kind = "DelayNotElapsed"


class AlreadyGuardianError(CustodyError):
    """Raised when inserting a digest that is already in the guardian set."""

    kind = "AlreadyGuardian"


class NotGuardianError(CustodyError):
    """Raised when a registry operation targets a digest outside the guardian set."""

    kind = "NotGuardian"


class MalformedDigestError(CustodyError):
    kind = "MalformedDigest"


# =========================
# Forwarded calls
# =========================

class ExternalCallFailedError(CustodyError):
    """Raised when the forwarded call reports failure.

    `return_data` holds whatever the target returned before failing.
    """

    kind = "ExternalCallFailed"

    def __init__(self, reason: str = "", return_data: bytes = b"") -> None:
        super().__init__(reason)
        self.return_data = return_data

    def to_dict(self) -> dict:
        d = super().to_dict()
        d["return_data"] = self.return_data.hex()
        return d


class ReentrancyError(CustodyError):
    kind = "Reentrancy"


# =========================
# Construction
# =========================

class ConstructionInvariantError(CustodyError):
    """Raised when constructor arguments (or a loaded snapshot) break the vault invariants."""

    kind = "ConstructionInvariantViolated"
