# tests/test_control_surface.py
"""Tests for controller-forwarded calls.

Validates:
  - Controller-only access, raw result passthrough, balance accounting
  - Failed calls abort with ExternalCallFailed and leave no state change
  - The reentrancy guard rejects nested forwarding and is released on every exit
  - Vault operations made from inside a forwarded call share its fate
"""
import pytest

from sovereign_custody import GuardedVault, LocalTransport, ManualClock, guardian_digest
from sovereign_custody.errors import ExternalCallFailedError, ReentrancyError, UnauthorizedError

CONTROLLER = "0x00000000000000000000000000000000000000c0"
G1 = "0x00000000000000000000000000000000000000a1"
G2 = "0x00000000000000000000000000000000000000a2"
G3 = "0x00000000000000000000000000000000000000a3"
TOKEN = "0x00000000000000000000000000000000000000d1"
PAYEE = "0x00000000000000000000000000000000000000d2"


@pytest.fixture
def transport():
    return LocalTransport()


@pytest.fixture
def vault(transport):
    v = GuardedVault.deploy(
        CONTROLLER,
        [guardian_digest(g) for g in (G1, G2, G3)],
        2,
        clock=ManualClock(1_700_000_000),
        transport=transport,
    )
    v.deposit(PAYEE, 100)
    return v


# ---------------------------------------------------------------------------
# 1. Deposits
# ---------------------------------------------------------------------------

class TestDeposit:
    def test_deposit_credits_balance(self, vault):
        assert vault.deposit(G1, 5) == 105
        assert vault.events[-1].name == "Deposit"
        assert vault.events[-1].data == {"amount": 5, "balance": 105}

    @pytest.mark.parametrize("amount", [0, -3, True])
    def test_bad_amount(self, vault, amount):
        with pytest.raises(ValueError):
            vault.deposit(G1, amount)
        assert vault.balance == 100


# ---------------------------------------------------------------------------
# 2. Forwarding
# ---------------------------------------------------------------------------

class TestForwarding:
    def test_value_transfer_to_plain_account(self, vault, transport):
        assert vault.execute_external_tx(CONTROLLER, PAYEE, 40) == b""
        assert vault.balance == 60
        assert transport.received[PAYEE] == 40

    def test_raw_return_data(self, vault, transport):
        calls = []

        def token(sender, value, payload):
            calls.append((sender, value, payload))
            return b"\x00\x01ok"

        transport.register(TOKEN, token)
        out = vault.execute_external_tx(CONTROLLER, TOKEN, 0, b"\xa9\x05\x9c\xbb")
        assert out == b"\x00\x01ok"
        assert calls == [("vault", 0, b"\xa9\x05\x9c\xbb")]

        event = vault.events[-1]
        assert event.name == "ExternalTxExecuted"
        assert event.data == {"target": TOKEN, "value": 0, "payload": "a9059cbb", "result": "00016f6b"}

    def test_controller_only(self, vault):
        with pytest.raises(UnauthorizedError):
            vault.execute_external_tx(G1, PAYEE, 1)
        assert vault.balance == 100

    def test_target_failure(self, vault, transport):
        def broken(sender, value, payload):
            raise RuntimeError("transfer amount exceeds allowance")

        transport.register(TOKEN, broken)
        count = len(vault.events)
        with pytest.raises(ExternalCallFailedError) as exc:
            vault.execute_external_tx(CONTROLLER, TOKEN, 10, b"\x01")

        assert b"exceeds allowance" in exc.value.return_data
        assert exc.value.kind == "ExternalCallFailed"
        assert vault.balance == 100
        assert len(vault.events) == count
        assert TOKEN not in transport.received

    def test_insufficient_balance(self, vault):
        with pytest.raises(ExternalCallFailedError):
            vault.execute_external_tx(CONTROLLER, PAYEE, 101)
        assert vault.balance == 100

    def test_payload_to_account_without_handler(self, vault):
        with pytest.raises(ExternalCallFailedError):
            vault.execute_external_tx(CONTROLLER, PAYEE, 0, b"\x12")

    def test_negative_value(self, vault):
        with pytest.raises(ValueError):
            vault.execute_external_tx(CONTROLLER, PAYEE, -1)

    def test_custom_transport(self):
        seen = []

        def transport(sender, target, value, payload):
            seen.append(target)
            return True, b"\xff"

        vault = GuardedVault.deploy(CONTROLLER, [guardian_digest(G1)], 1, transport=transport)
        assert vault.execute_external_tx(CONTROLLER, TOKEN) == b"\xff"
        assert seen == [TOKEN]


# ---------------------------------------------------------------------------
# 3. Reentrancy
# ---------------------------------------------------------------------------

class TestReentrancy:
    def test_nested_forwarding_rejected(self, vault, transport):
        def reenter(sender, value, payload):
            return vault.execute_external_tx(CONTROLLER, PAYEE, 50)

        transport.register(TOKEN, reenter)
        with pytest.raises(ExternalCallFailedError) as exc:
            vault.execute_external_tx(CONTROLLER, TOKEN, 10)

        assert b"ReentrancyError" in exc.value.return_data
        assert vault.balance == 100
        assert PAYEE not in transport.received

    def test_guard_released_after_failure(self, vault, transport):
        def broken(sender, value, payload):
            raise RuntimeError("boom")

        transport.register(TOKEN, broken)
        with pytest.raises(ExternalCallFailedError):
            vault.execute_external_tx(CONTROLLER, TOKEN)
        with pytest.raises(UnauthorizedError):
            vault.execute_external_tx(G1, TOKEN)

        assert vault.execute_external_tx(CONTROLLER, PAYEE, 1) == b""

    def test_guard_raises_directly_when_held(self, vault):
        with vault.control._non_reentrant():
            with pytest.raises(ReentrancyError):
                vault.execute_external_tx(CONTROLLER, PAYEE, 1)
        assert vault.execute_external_tx(CONTROLLER, PAYEE, 1) == b""

    def test_state_change_inside_call_commits_with_it(self, vault, transport):
        def governor(sender, value, payload):
            vault.queue_removal(CONTROLLER, guardian_digest(G3))
            return b""

        transport.register(TOKEN, governor)
        vault.execute_external_tx(CONTROLLER, TOKEN)

        assert vault.removal_due(guardian_digest(G3)) > 0
        assert [e.name for e in vault.events[-2:]] == ["GuardianRemovalQueued", "ExternalTxExecuted"]

    def test_state_change_inside_failed_call_is_reverted(self, vault, transport):
        def governor(sender, value, payload):
            vault.queue_removal(CONTROLLER, guardian_digest(G3))
            raise RuntimeError("revert after side effect")

        transport.register(TOKEN, governor)
        count = len(vault.events)
        with pytest.raises(ExternalCallFailedError):
            vault.execute_external_tx(CONTROLLER, TOKEN)

        assert vault.removal_due(guardian_digest(G3)) == 0
        assert len(vault.events) == count
