"""
test_ledger_operations.py - Unit tests for Ledger class operations

Tests:
- Ledger creation and configuration
- Wallet and token registration
- Balance operations (mint, burn, transfer)
- Allowances and transfer_from
- Time management
- Transaction execution
- Records, contracts and events
- atomic() rollback and clone()
"""

import pytest
from datetime import datetime, timedelta

from clearinghouse import (
    Ledger, Move, Token, ExecuteResult, build_transaction,
    LedgerError, InsufficientFunds, InsufficientAllowance,
    WalletNotRegistered, TokenNotRegistered,
    SYSTEM_WALLET, WAD,
)


class TestLedgerCreation:

    def test_create_ledger_minimal(self):
        ledger = Ledger("test")
        assert ledger.name == "test"
        assert ledger.current_time == datetime(1970, 1, 1)

    def test_system_wallet_preregistered(self):
        ledger = Ledger("test")
        assert ledger.is_registered(SYSTEM_WALLET)


class TestRegistration:

    def test_register_wallet(self):
        ledger = Ledger("test")
        assert ledger.register_wallet("alice") == "alice"
        assert "alice" in ledger.list_wallets()

    def test_register_duplicate_wallet_raises(self):
        ledger = Ledger("test")
        ledger.register_wallet("alice")
        with pytest.raises(ValueError, match="already registered"):
            ledger.register_wallet("alice")

    def test_ensure_wallet_is_idempotent(self):
        ledger = Ledger("test")
        ledger.ensure_wallet("alice")
        ledger.ensure_wallet("alice")
        assert ledger.is_registered("alice")

    def test_register_duplicate_token_raises(self, basic_ledger):
        with pytest.raises(ValueError, match="already registered"):
            basic_ledger.register_token(Token("DAI", "Other"))

    def test_unknown_token_balance_raises(self, basic_ledger):
        with pytest.raises(TokenNotRegistered):
            basic_ledger.get_balance("alice", "XYZ")

    def test_unknown_wallet_balance_raises(self, basic_ledger):
        with pytest.raises(WalletNotRegistered):
            basic_ledger.get_balance("nobody", "DAI")

    def test_register_contract_creates_wallet(self, basic_ledger):
        marker = object()
        basic_ledger.register_contract("vault", marker)
        assert basic_ledger.is_registered("vault")
        assert basic_ledger.contract_at("vault") is marker

    def test_contract_address_cannot_be_taken_twice(self, basic_ledger):
        basic_ledger.register_contract("vault", object())
        with pytest.raises(ValueError, match="already in use"):
            basic_ledger.register_contract("vault", object())

    def test_missing_contract_raises(self, basic_ledger):
        with pytest.raises(LedgerError):
            basic_ledger.contract_at("nowhere")


class TestBalances:

    def test_mint_and_supply(self, funded_ledger):
        assert funded_ledger.get_balance("alice", "DAI") == 10_000 * WAD
        assert funded_ledger.total_supply("DAI") == 10_000 * WAD

    def test_burn_reduces_supply(self, funded_ledger):
        funded_ledger.burn("alice", "DAI", 4_000 * WAD)
        assert funded_ledger.total_supply("DAI") == 6_000 * WAD

    def test_transfer(self, funded_ledger):
        funded_ledger.transfer("alice", "bob", "DAI", 100)
        assert funded_ledger.get_balance("bob", "DAI") == 100
        assert funded_ledger.get_balance("alice", "DAI") == 10_000 * WAD - 100

    def test_zero_transfer_is_noop(self, funded_ledger):
        funded_ledger.transfer("alice", "bob", "DAI", 0)
        assert funded_ledger.transaction_log[-1].moves[0].reason == "mint"

    def test_overdraft_raises(self, funded_ledger):
        with pytest.raises(InsufficientFunds):
            funded_ledger.transfer("bob", "alice", "DAI", 1)

    def test_positions(self, funded_ledger):
        funded_ledger.transfer("alice", "bob", "DAI", 5)
        assert funded_ledger.get_positions("DAI") == {"alice": 10_000 * WAD - 5, "bob": 5}

    def test_set_balance_only_in_test_mode(self):
        ledger = Ledger("prod")
        ledger.register_token(Token("DAI", "Dai"))
        ledger.register_wallet("alice")
        with pytest.raises(LedgerError, match="test_mode"):
            ledger.set_balance("alice", "DAI", 1)

    def test_conservation(self, funded_ledger):
        funded_ledger.transfer("alice", "bob", "DAI", 77)
        report = funded_ledger.verify_conservation()
        assert report["valid"]
        assert report["supplies"]["DAI"] == 10_000 * WAD


class TestAllowances:

    def test_transfer_from_consumes_allowance(self, funded_ledger):
        funded_ledger.approve("alice", "bob", "DAI", 100)
        funded_ledger.transfer_from("bob", "alice", "bob", "DAI", 60)
        assert funded_ledger.allowance("alice", "bob", "DAI") == 40
        assert funded_ledger.get_balance("bob", "DAI") == 60

    def test_transfer_from_without_allowance_raises(self, funded_ledger):
        with pytest.raises(InsufficientAllowance):
            funded_ledger.transfer_from("bob", "alice", "bob", "DAI", 1)

    def test_failed_pull_keeps_allowance(self, basic_ledger):
        basic_ledger.approve("alice", "bob", "DAI", 100)
        with pytest.raises(InsufficientFunds):
            basic_ledger.transfer_from("bob", "alice", "bob", "DAI", 50)
        assert basic_ledger.allowance("alice", "bob", "DAI") == 100

    def test_negative_allowance_rejected(self, basic_ledger):
        with pytest.raises(ValueError):
            basic_ledger.approve("alice", "bob", "DAI", -1)


class TestTime:

    def test_advance_time(self, basic_ledger):
        later = basic_ledger.current_time + timedelta(days=1)
        basic_ledger.advance_time(later)
        assert basic_ledger.current_time == later

    def test_cannot_go_backwards(self, basic_ledger):
        with pytest.raises(ValueError, match="backwards"):
            basic_ledger.advance_time(basic_ledger.current_time - timedelta(seconds=1))

    def test_advance_by(self, basic_ledger):
        start = basic_ledger.current_time
        assert basic_ledger.advance_by(timedelta(hours=2)) == start + timedelta(hours=2)


class TestExecute:

    def test_multi_move_applied(self, funded_ledger):
        tx = build_transaction(funded_ledger, [
            Move(10, "DAI", "alice", "bob", "a"),
            Move(3, "DAI", "bob", "alice", "b"),
        ])
        assert funded_ledger.execute(tx) == ExecuteResult.APPLIED
        assert funded_ledger.get_balance("bob", "DAI") == 7

    def test_rejected_applies_nothing(self, funded_ledger):
        tx = build_transaction(funded_ledger, [
            Move(10, "DAI", "alice", "bob", "a"),
            Move(11, "DAI", "bob", "alice", "b"),
        ])
        log_size = len(funded_ledger.transaction_log)
        assert funded_ledger.execute(tx) == ExecuteResult.REJECTED
        assert funded_ledger.get_balance("bob", "DAI") == 0
        assert len(funded_ledger.transaction_log) == log_size

    def test_unregistered_wallet_rejected(self, funded_ledger):
        tx = build_transaction(funded_ledger, [Move(1, "DAI", "alice", "ghost", "a")])
        assert funded_ledger.execute(tx) == ExecuteResult.REJECTED

    def test_sequence_numbers_monotonic(self, funded_ledger):
        funded_ledger.transfer("alice", "bob", "DAI", 1)
        funded_ledger.transfer("alice", "bob", "DAI", 1)
        seqs = [tx.sequence_number for tx in funded_ledger.transaction_log]
        assert seqs == sorted(seqs)
        assert len(set(seqs)) == len(seqs)


class TestRecordsAndEvents:

    def test_records_are_copied(self, basic_ledger):
        value = {"loans": [1]}
        basic_ledger.put_record("k", value)
        value["loans"].append(2)
        fetched = basic_ledger.get_record("k")
        fetched["loans"].append(3)
        assert basic_ledger.get_record("k") == {"loans": [1]}

    def test_missing_record_is_empty(self, basic_ledger):
        assert basic_ledger.get_record("nothing") == {}

    def test_emit_and_filter(self, basic_ledger):
        basic_ledger.emit("Activate", "ch1")
        basic_ledger.emit("Defund", "ch1", token="DAI", amount=5)
        basic_ledger.emit("Activate", "ch2")
        assert len(basic_ledger.events("Activate")) == 2
        assert len(basic_ledger.events(source="ch1")) == 2
        assert basic_ledger.events("Defund")[0]["amount"] == 5


class TestAtomic:

    def test_exception_restores_everything(self, funded_ledger):
        before_balances = funded_ledger.get_balance("alice", "DAI")
        with pytest.raises(RuntimeError):
            with funded_ledger.atomic():
                funded_ledger.transfer("alice", "bob", "DAI", 10)
                funded_ledger.approve("alice", "bob", "DAI", 99)
                funded_ledger.put_record("k", {"x": 1})
                funded_ledger.emit("Something", "me")
                funded_ledger.register_wallet("carol")
                raise RuntimeError("abort")
        assert funded_ledger.get_balance("alice", "DAI") == before_balances
        assert funded_ledger.get_balance("bob", "DAI") == 0
        assert funded_ledger.allowance("alice", "bob", "DAI") == 0
        assert funded_ledger.get_record("k") == {}
        assert funded_ledger.events() == []
        assert not funded_ledger.is_registered("carol")

    def test_success_commits(self, funded_ledger):
        with funded_ledger.atomic():
            funded_ledger.transfer("alice", "bob", "DAI", 10)
        assert funded_ledger.get_balance("bob", "DAI") == 10

    def test_nested_inner_failure_only_undoes_inner(self, funded_ledger):
        with funded_ledger.atomic():
            funded_ledger.transfer("alice", "bob", "DAI", 10)
            with pytest.raises(InsufficientFunds):
                with funded_ledger.atomic():
                    funded_ledger.transfer("alice", "bob", "DAI", 5)
                    funded_ledger.transfer("bob", "alice", "DAI", 1_000)
        assert funded_ledger.get_balance("bob", "DAI") == 10

    def test_in_atomic_flag(self, basic_ledger):
        assert not basic_ledger.in_atomic
        with basic_ledger.atomic():
            assert basic_ledger.in_atomic
        assert not basic_ledger.in_atomic


class TestClone:

    def test_clone_is_independent(self, funded_ledger):
        clone = funded_ledger.clone()
        clone.transfer("alice", "bob", "DAI", 10)
        clone.put_record("k", {"a": 1})
        assert funded_ledger.get_balance("bob", "DAI") == 0
        assert funded_ledger.get_record("k") == {}
        assert clone.get_balance("bob", "DAI") == 10

    def test_clone_keeps_time_and_logs(self, funded_ledger):
        clone = funded_ledger.clone()
        assert clone.current_time == funded_ledger.current_time
        assert len(clone.transaction_log) == len(funded_ledger.transaction_log)
