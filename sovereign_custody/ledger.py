"""Custody evidence ledger.

One JSONL line per committed vault event. Each line is hashed over its
canonical JSON (without `hash` and `proof`) and chained twice:

- `previous_hash` links every line in file order;
- `layer_previous_hash` links the lines of one vault component
  (`vault`, `registry`, `recovery`, `control`).

All events of one vault operation are hashed and signed in memory, then
written with a single write, so an operation is on disk whole or not at all.
The state snapshot records the head hash it was saved against; `verify`
cross-checks it to catch a truncated or swapped ledger file.
"""
from __future__ import annotations

import hashlib
import json
import os
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from .signing import EvidenceSigner
from .state import CustodyEvent

if os.name == "nt":
    import msvcrt

    def _lock(fd: int) -> None:
        msvcrt.locking(fd, msvcrt.LK_LOCK, 1)

    def _unlock(fd: int) -> None:
        msvcrt.locking(fd, msvcrt.LK_UNLCK, 1)

else:
    import fcntl

    def _lock(fd: int) -> None:
        fcntl.flock(fd, fcntl.LOCK_EX)

    def _unlock(fd: int) -> None:
        fcntl.flock(fd, fcntl.LOCK_UN)


REQUIRED_FIELDS = (
    "seq",
    "layer",
    "type",
    "actor",
    "round",
    "in_recovery",
    "at",
    "data",
    "previous_hash",
    "layer_previous_hash",
    "hash",
)


@contextmanager
def _held(f) -> Iterator[None]:
    """Exclusive lock on the ledger file for one batch (byte 0 on Windows)."""
    f.seek(0)
    try:
        _lock(f.fileno())
        locked = True
    except OSError:
        # No lock support on this filesystem; the vault lock still orders writers in-process.
        locked = False
    try:
        yield
    finally:
        if locked:
            f.seek(0)
            _unlock(f.fileno())


def _canonical_json(obj: Any) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _entry_hash(obj: Dict[str, Any]) -> str:
    body = {k: v for k, v in obj.items() if k not in ("hash", "proof")}
    return hashlib.sha256(_canonical_json(body).encode("utf-8")).hexdigest()


def _parse(lines: Iterable[str]) -> Iterator[Tuple[int, Optional[Dict[str, Any]]]]:
    """Yield (line number, entry); entry is None for a line that is not a JSON object."""
    for idx, line in enumerate(lines, start=1):
        raw = line.strip()
        if not raw:
            continue
        try:
            obj = json.loads(raw)
        except json.JSONDecodeError:
            yield idx, None
            continue
        yield idx, obj if isinstance(obj, dict) else None


@dataclass
class _Chain:
    """Where the next line goes: its seq, the global head and each layer's head."""

    count: int = 0
    head: str = ""
    layers: Dict[str, str] = field(default_factory=dict)

    def advance(self, layer: str, entry_hash: str) -> None:
        self.count += 1
        self.head = entry_hash
        self.layers[layer] = entry_hash

    @classmethod
    def scan(cls, lines: Iterable[str]) -> "_Chain":
        chain = cls()
        for _, obj in _parse(lines):
            if obj and isinstance(obj.get("hash"), str) and isinstance(obj.get("layer"), str):
                chain.advance(obj["layer"], obj["hash"])
        return chain


def _entry(event: CustodyEvent, chain: _Chain, engine_version: str) -> Dict[str, Any]:
    return {
        "seq": chain.count,
        "layer": event.layer,
        "type": event.name,
        "actor": event.actor,
        "round": event.round,
        "in_recovery": event.in_recovery,
        "at": event.at,
        "data": event.data,
        "engine_version": engine_version,
        "ts_utc": datetime.now(timezone.utc).isoformat(),
        "previous_hash": chain.head,
        "layer_previous_hash": chain.layers.get(event.layer, ""),
    }


class CustodyLedger:
    """Append-only JSONL ledger of committed vault events."""

    def __init__(
        self,
        ledger_path: str | Path = "validation/sovereign_custody/ledger.jsonl",
        engine_version: str = "custody-v1",
        signer: Optional[EvidenceSigner] = None,
    ) -> None:
        self.ledger_path = Path(ledger_path)
        self.engine_version = engine_version
        self.signer = signer

        self.ledger_path.parent.mkdir(parents=True, exist_ok=True)
        self._chain = _Chain()
        if self.ledger_path.exists():
            with self.ledger_path.open("r", encoding="utf-8") as f:
                self._chain = _Chain.scan(f)

    @property
    def head(self) -> str:
        return self._chain.head

    @property
    def layer_heads(self) -> Dict[str, str]:
        return dict(self._chain.layers)

    def append_events(self, events: Sequence[CustodyEvent]) -> List[str]:
        """Write one operation's events as a single batch and return their hashes.

        Raises before touching the file if any event is malformed, cannot be
        serialised, or cannot be signed.
        """
        for event in events:
            if not isinstance(event.layer, str) or not event.layer:
                raise ValueError("event layer must be a non-empty string")
            if not isinstance(event.name, str) or not event.name:
                raise ValueError("event name must be a non-empty string")
            if not isinstance(event.data, dict):
                raise ValueError("event data must be a dict")
        if not events:
            return []

        self.ledger_path.parent.mkdir(parents=True, exist_ok=True)
        with self.ledger_path.open("a+", encoding="utf-8") as f:
            with _held(f):
                # Another process may have appended since this ledger was opened.
                chain = _Chain.scan(f)
                lines: List[str] = []
                hashes: List[str] = []
                for event in events:
                    entry = _entry(event, chain, self.engine_version)
                    entry_hash = _entry_hash(entry)
                    if self.signer is not None:
                        entry["proof"] = self.signer.sign(entry_hash)
                    entry["hash"] = entry_hash
                    lines.append(_canonical_json(entry) + "\n")
                    hashes.append(entry_hash)
                    chain.advance(event.layer, entry_hash)

                f.seek(0, os.SEEK_END)
                f.write("".join(lines))
                f.flush()

        self._chain = chain
        return hashes

    def verify(self, expected_head: Optional[str] = None) -> Dict[str, Any]:
        """Check hashes, seq order, both chains, proofs (with a signer) and, optionally, the head."""
        reasons: List[str] = []
        chain = _Chain()
        total = 0

        if self.ledger_path.exists():
            with self.ledger_path.open("r", encoding="utf-8") as f:
                for idx, obj in _parse(f):
                    total += 1
                    where = f"line {idx}"
                    if obj is None:
                        reasons.append(f"{where}: invalid json")
                        continue
                    missing = [k for k in REQUIRED_FIELDS if k not in obj]
                    if missing:
                        reasons.append(f"{where}: missing {', '.join(missing)}")
                        continue
                    entry_hash, layer = obj["hash"], obj["layer"]
                    if not isinstance(entry_hash, str) or not isinstance(layer, str):
                        reasons.append(f"{where}: hash and layer must be strings")
                        continue

                    if obj["seq"] != chain.count:
                        reasons.append(f"{where}: seq {obj['seq']}, expected {chain.count}")
                    if _entry_hash(obj) != entry_hash:
                        reasons.append(f"{where}: hash mismatch")
                    if self.signer is not None:
                        proof = obj.get("proof")
                        if not isinstance(proof, str) or not self.signer.verify(entry_hash, proof):
                            reasons.append(f"{where}: proof invalid")
                    if obj["previous_hash"] != chain.head:
                        reasons.append(f"{where}: previous_hash mismatch")
                    if obj["layer_previous_hash"] != chain.layers.get(layer, ""):
                        reasons.append(f"{where}: layer_previous_hash mismatch")
                    chain.advance(layer, entry_hash)

        if expected_head is not None and expected_head != chain.head:
            reasons.append(
                f"head mismatch: state records {expected_head or '<empty>'}, ledger ends at {chain.head or '<empty>'}"
            )

        return {
            "ok": not reasons,
            "ledger_path": str(self.ledger_path),
            "total_entries": total,
            "head": chain.head,
            "layer_heads": dict(chain.layers),
            "reasons": reasons,
            "ts_utc": datetime.now(timezone.utc).isoformat(),
        }

    def tail(self, n: int = 10) -> List[Dict[str, Any]]:
        if n <= 0 or not self.ledger_path.exists():
            return []
        with self.ledger_path.open("r", encoding="utf-8") as f:
            entries = [obj for _, obj in _parse(f) if obj is not None]
        return entries[-n:]
