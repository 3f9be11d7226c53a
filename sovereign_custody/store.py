from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Optional

from .state import CustodyState


def _read_json(path: Path, default: Any) -> Any:
    if not path.exists():
        return default
    with path.open("r", encoding="utf-8") as f:
        return json.load(f)


def _write_json_atomic(path: Path, payload: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    with tmp.open("w", encoding="utf-8", newline="\n") as f:
        json.dump(payload, f, ensure_ascii=False, indent=2, sort_keys=True)
        f.write("\n")
    tmp.replace(path)


class StateStore:
    """Vault state snapshot on disk.

    Persists:
    - <state_path> (JSON, replaced atomically on every save): the state, the
      ledger head it was saved against, and the clock of the last operation
    """

    def __init__(self, state_path: str | Path) -> None:
        self.state_path = Path(state_path)

    def exists(self) -> bool:
        return self.state_path.exists()

    def _snapshot(self) -> Optional[Dict[str, Any]]:
        return _read_json(self.state_path, None)

    def load(self) -> Optional[CustodyState]:
        data = self._snapshot()
        if data is None:
            return None
        return CustodyState.from_dict(data.get("state", data))

    def ledger_head(self) -> Optional[str]:
        """Head hash recorded with the snapshot, or None when there is none."""
        data = self._snapshot()
        if not data or "ledger_head" not in data:
            return None
        return str(data["ledger_head"])

    def last_clock(self) -> int:
        data = self._snapshot()
        return int(data.get("clock", 0)) if data else 0

    def save(self, state: CustodyState, ledger_head: Optional[str] = None, clock: int = 0) -> Path:
        payload: Dict[str, Any] = {"state": state.to_dict(), "clock": int(clock)}
        if ledger_head is not None:
            payload["ledger_head"] = ledger_head
        _write_json_atomic(self.state_path, payload)
        return self.state_path
