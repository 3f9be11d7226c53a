"""Sovereign Custody (guardian-recoverable controller vault).

Design goals:
- One controller authorises outgoing calls
- A private guardian committee (stored only as digests) can replace the controller
- Every accepted operation is atomic and lands in an append-only evidence ledger
"""

from .access import AccessGate
from .clock import ManualClock, SystemClock
from .config import CustodyConfig
from .control import ControlSurface, LocalTransport
from .digest import guardian_digest, normalize_account, normalize_digest
from .errors import CustodyError
from .ledger import CustodyLedger
from .recovery import CancelPolicy, RecoveryCoordinator
from .registry import REMOVAL_DELAY_SECONDS, GuardianRegistry
from .signing import EvidenceSigner
from .state import CustodyEvent, CustodyState, Mode, Proposal, RecoveryState, Transition
from .store import StateStore
from .vault import GuardedVault

__version__ = "1.0.0"
