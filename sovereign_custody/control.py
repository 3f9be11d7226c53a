"""Controller-only forwarded calls.

The vault never interprets the call; it hands `(target, value, payload)` to a
transport and reports the raw result. The transport is the execution
surface, the vault only constrains who may use it and when.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, Optional, Protocol, Tuple

from .access import AccessGate
from .digest import normalize_account
from .errors import ExternalCallFailedError, ReentrancyError
from .state import CustodyState

Emit = Callable[[str, str, str, Dict[str, Any]], None]


class CallTransport(Protocol):
    def __call__(self, sender: str, target: str, value: int, payload: bytes) -> Tuple[bool, bytes]:
        ...


Handler = Callable[[str, int, bytes], bytes]


class LocalTransport:
    """In-process transport.

    Registered targets get `handler(sender, value, payload) -> bytes`; a handler
    that raises is reported as a failed call with the error text as return
    data. Unregistered targets behave like plain accounts: they accept value
    and return nothing.
    """

    def __init__(self) -> None:
        self.handlers: Dict[str, Handler] = {}
        self.received: Dict[str, int] = {}

    def register(self, target: str, handler: Handler) -> None:
        self.handlers[normalize_account(target)] = handler

    def __call__(self, sender: str, target: str, value: int, payload: bytes) -> Tuple[bool, bytes]:
        target = normalize_account(target)
        handler = self.handlers.get(target)
        if handler is None:
            if payload:
                return False, b"no code at target"
            self.received[target] = self.received.get(target, 0) + value
            return True, b""

        try:
            out = handler(sender, value, payload)
        except Exception as e:
            return False, f"{type(e).__name__}: {e}".encode("utf-8")

        self.received[target] = self.received.get(target, 0) + value
        return True, bytes(out or b"")


class ControlSurface:
    LAYER = "control"

    def __init__(self, state: CustodyState, gate: AccessGate, emit: Emit, transport: Optional[CallTransport] = None) -> None:
        self.state = state
        self.gate = gate
        self.emit = emit
        self.transport = transport or LocalTransport()
        self.vault_account = "vault"
        self._entered = False

    @contextmanager
    def _non_reentrant(self) -> Iterator[None]:
        if self._entered:
            raise ReentrancyError("execute_external_tx is already in progress")
        self._entered = True
        try:
            yield
        finally:
            self._entered = False

    def execute_external_tx(self, caller: str, target: str, value: int, payload: bytes = b"") -> bytes:
        with self._non_reentrant():
            actor = self.gate.require_controller(caller)
            target = normalize_account(target)
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise ValueError("value must be a non-negative integer")
            if value > self.state.balance:
                raise ExternalCallFailedError(f"insufficient balance: {self.state.balance} < {value}")

            self.state.balance -= value
            ok, data = self.transport(self.vault_account, target, value, bytes(payload))
            if not ok:
                raise ExternalCallFailedError(f"call to {target} failed", return_data=data)

            self.emit(
                self.LAYER,
                "ExternalTxExecuted",
                actor,
                {"target": target, "value": value, "payload": bytes(payload).hex(), "result": data.hex()},
            )
            return data

    def deposit(self, sender: str, amount: int) -> int:
        sender = normalize_account(sender)
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise ValueError("amount must be a positive integer")
        self.state.balance += amount
        self.emit(self.LAYER, "Deposit", sender, {"amount": amount, "balance": self.state.balance})
        return self.state.balance
