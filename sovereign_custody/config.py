"""Custody configuration.

YAML file (all keys optional) with environment overrides:

    cancel_policy: controller        # controller | guardian | either
    ledger_path: validation/sovereign_custody/ledger.jsonl
    state_path: validation/sovereign_custody/state.json
    signing_key_path: keys/custody.pem   # must exist; see `init --new-key`
    engine_version: custody-v1

The guardian removal delay is fixed in code and cannot be configured.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .recovery import CancelPolicy

ENV_PREFIX = "SOVEREIGN_CUSTODY_"

KNOWN_KEYS = {"cancel_policy", "ledger_path", "state_path", "signing_key_path", "engine_version"}


@dataclass(frozen=True)
class CustodyConfig:
    cancel_policy: CancelPolicy = CancelPolicy.CONTROLLER
    ledger_path: Optional[Path] = Path("validation/sovereign_custody/ledger.jsonl")
    state_path: Path = Path("validation/sovereign_custody/state.json")
    signing_key_path: Optional[Path] = None
    engine_version: str = "custody-v1"

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "CustodyConfig":
        unknown = set(data) - KNOWN_KEYS
        if unknown:
            raise ValueError(f"Unknown custody config keys: {sorted(unknown)}")

        d = CustodyConfig()
        raw_policy = str(data.get("cancel_policy", d.cancel_policy.value)).strip().lower()
        try:
            policy = CancelPolicy(raw_policy)
        except ValueError:
            raise ValueError(
                f"cancel_policy must be one of {[p.value for p in CancelPolicy]}, got {raw_policy!r}"
            ) from None

        ledger = data.get("ledger_path", d.ledger_path)
        key = data.get("signing_key_path")
        return CustodyConfig(
            cancel_policy=policy,
            ledger_path=Path(ledger) if ledger else None,
            state_path=Path(data.get("state_path") or d.state_path),
            signing_key_path=Path(key) if key else None,
            engine_version=str(data.get("engine_version") or d.engine_version),
        )

    @staticmethod
    def load(path: str | Path | None = None) -> "CustodyConfig":
        data: Dict[str, Any] = {}
        if path:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
            if not isinstance(data, dict):
                raise ValueError(f"Custody config must be a mapping: {path}")
        return CustodyConfig.from_dict(data).with_env()

    def with_env(self, environ: Optional[Dict[str, str]] = None) -> "CustodyConfig":
        env = os.environ if environ is None else environ
        cfg = self
        if env.get(ENV_PREFIX + "CANCEL_POLICY"):
            cfg = replace(cfg, cancel_policy=CustodyConfig.from_dict(
                {"cancel_policy": env[ENV_PREFIX + "CANCEL_POLICY"]}
            ).cancel_policy)
        if env.get(ENV_PREFIX + "LEDGER"):
            cfg = replace(cfg, ledger_path=Path(env[ENV_PREFIX + "LEDGER"]))
        if env.get(ENV_PREFIX + "STATE"):
            cfg = replace(cfg, state_path=Path(env[ENV_PREFIX + "STATE"]))
        if env.get(ENV_PREFIX + "KEY"):
            cfg = replace(cfg, signing_key_path=Path(env[ENV_PREFIX + "KEY"]))
        return cfg
