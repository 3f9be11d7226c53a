"""Operator CLI over a persisted vault.

Each invocation loads the state snapshot, applies one operation, and saves the
snapshot only if the operation succeeded.
"""

from __future__ import annotations

import argparse
import json
import os
import sys
from dataclasses import replace
from pathlib import Path
from typing import Any, Callable, Dict

from .clock import ManualClock, SystemClock
from .config import CustodyConfig
from .control import LocalTransport
from .digest import guardian_digest
from .errors import CustodyError
from .signing import EvidenceSigner
from .store import StateStore
from .vault import GuardedVault


def _out(obj: Any, *, stream=None) -> None:
    (stream or sys.stdout).write(json.dumps(obj, indent=2, sort_keys=True, ensure_ascii=False) + "\n")


def _fail(error: str, reason: str, code: int) -> int:
    _out({"ok": False, "error": error, "reason": reason}, stream=sys.stderr)
    return code


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Sovereign custody vault (guardian-recoverable controller)")
    p.add_argument("--config", default=os.getenv("SOVEREIGN_CUSTODY_CONFIG", ""), help="YAML config path")
    p.add_argument("--state", default="", help="State snapshot path (overrides config)")
    p.add_argument("--ledger", default="", help="Ledger path (overrides config)")
    p.add_argument(
        "--now",
        type=int,
        default=None,
        help="Unix time for this operation; may not go back past the last recorded operation",
    )
    sub = p.add_subparsers(dest="cmd", required=True)

    dp = sub.add_parser("digest", help="Print the guardian digest of an account")
    dp.add_argument("account")

    ip = sub.add_parser("init", help="Construct a new vault")
    ip.add_argument("--deployer", required=True)
    ip.add_argument("--guardian", action="append", default=[], help="Guardian account (hashed before storing)")
    ip.add_argument("--guardian-digest", action="append", default=[], help="Guardian digest (hex)")
    ip.add_argument("--threshold", type=int, required=True)
    ip.add_argument("--new-key", default="", help="Write a fresh signing key here and use it for the ledger")

    def caller(name: str, **kw) -> argparse.ArgumentParser:
        sp = sub.add_parser(name, **kw)
        sp.add_argument("--as", dest="caller", required=True, help="Calling account")
        return sp

    caller("deposit", help="Credit value to the vault").add_argument("amount", type=int)

    tp = caller("execute-tx", help="Forward a call (controller)")
    tp.add_argument("target")
    tp.add_argument("--value", type=int, default=0)
    tp.add_argument("--payload-hex", default="")

    caller("initiate", help="Open a recovery round (guardian)").add_argument("proposed_controller")
    caller("support", help="Vote in the open round (guardian)").add_argument("proposed_controller")
    caller("cancel", help="Abort the open recovery")

    ep = caller("execute", help="Replace the controller (guardian)")
    ep.add_argument("new_controller")
    ep.add_argument("voters", nargs="+")

    caller("queue-removal", help="Schedule a guardian removal (controller)").add_argument("digest")
    rp = caller("execute-removal", help="Swap a queued guardian after the delay (controller)")
    rp.add_argument("old_digest")
    rp.add_argument("new_digest")
    caller("cancel-removal", help="Clear a scheduled removal (controller)").add_argument("digest")
    caller("transfer", help="Hand own guardianship to a new digest (guardian)").add_argument("new_digest")
    caller("reveal", help="Publish own account-to-digest link (guardian)")

    sub.add_parser("status")
    sub.add_parser("verify-ledger")
    tl = sub.add_parser("tail")
    tl.add_argument("-n", type=int, default=10)
    return p


def _resolve_config(args: argparse.Namespace) -> CustodyConfig:
    cfg = CustodyConfig.load(args.config or None)
    if args.state:
        cfg = replace(cfg, state_path=Path(args.state))
    if args.ledger:
        cfg = replace(cfg, ledger_path=Path(args.ledger))
    return cfg


def _operations(vault: GuardedVault, args: argparse.Namespace) -> Dict[str, Callable[[], Any]]:
    return {
        "deposit": lambda: {"balance": vault.deposit(args.caller, args.amount)},
        "execute-tx": lambda: {
            "result_hex": vault.execute_external_tx(
                args.caller, args.target, args.value, bytes.fromhex(args.payload_hex)
            ).hex()
        },
        "initiate": lambda: {"round": vault.initiate_recovery(args.caller, args.proposed_controller)},
        "support": lambda: vault.support_recovery(args.caller, args.proposed_controller),
        "cancel": lambda: vault.cancel_recovery(args.caller),
        "execute": lambda: {"controller": vault.execute_recovery(args.caller, args.new_controller, args.voters)},
        "queue-removal": lambda: {"due": vault.queue_removal(args.caller, args.digest)},
        "execute-removal": lambda: vault.execute_removal(args.caller, args.old_digest, args.new_digest),
        "cancel-removal": lambda: vault.cancel_removal(args.caller, args.digest),
        "transfer": lambda: vault.transfer_guardianship(args.caller, args.new_digest),
        "reveal": lambda: {"digest": vault.reveal_identity(args.caller)},
    }


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    if args.cmd == "digest":
        _out({"account": args.account, "digest": guardian_digest(args.account)})
        return 0

    try:
        cfg = _resolve_config(args)
    except (OSError, ValueError) as e:
        return _fail("ConfigError", str(e), 2)

    store = StateStore(cfg.state_path)
    if args.cmd == "init":
        if store.exists():
            return _fail("StateExists", f"vault state already at {store.state_path}", 2)
        if args.new_key:
            cfg = replace(cfg, signing_key_path=EvidenceSigner().write_key(args.new_key))

    try:
        components = GuardedVault.components_from_config(cfg)
    except (OSError, ValueError) as e:
        return _fail("ConfigError", str(e), 2)
    ledger = components["ledger"]

    if args.cmd in {"verify-ledger", "tail"}:
        if ledger is None:
            return _fail("ConfigError", "no ledger configured", 2)
        if args.cmd == "tail":
            _out(ledger.tail(args.n))
            return 0
        report = ledger.verify(expected_head=store.ledger_head())
        _out(report)
        return 0 if report.get("ok") else 1

    clock = ManualClock(args.now) if args.now is not None else SystemClock()
    last = store.last_clock()
    if args.cmd != "status" and clock.now() < last:
        return _fail("ClockRegression", f"time {clock.now()} is before the last recorded operation at {last}", 2)

    result: Any = None
    try:
        if args.cmd == "init":
            digests = [guardian_digest(a) for a in args.guardian] + list(args.guardian_digest)
            vault = GuardedVault.deploy(args.deployer, digests, args.threshold, clock=clock, **components)
        else:
            state = store.load()
            if state is None:
                return _fail("NoState", f"no vault state at {store.state_path}; run init first", 2)
            vault = GuardedVault(state, clock=clock, transport=LocalTransport(), **components)
            if args.cmd == "status":
                _out({"ok": True, **vault.status()})
                return 0
            result = _operations(vault, args)[args.cmd]()
    except CustodyError as e:
        _out(e.to_dict(), stream=sys.stderr)
        return 1
    except ValueError as e:
        return _fail("InvalidArgument", str(e), 2)

    store.save(vault.state, ledger_head=ledger.head if ledger is not None else None, clock=max(last, clock.now()))
    _out({"ok": True, "cmd": args.cmd, **(result or {}), "status": vault.status()})
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
