"""
Conservation Law Conformance Tests

INVARIANT: For all tokens u, at all times t:
    Σ_{w ∈ wallets ∪ {system}} balance(w, u, t) = 0

Issuance and burning are moves out of and into the system wallet, so the
facility's lending, funding, claiming and burning only ever redistribute.

The clearinghouse also never holds collateral or idle debt at rest while
active: collateral is passed to escrows or burned, and debt is swept into
the vault.
"""

from hypothesis import given, settings
from datetime import timedelta

from clearinghouse import KeeperEngine, deploy, GOHM, DAI
from tests.helpers import T0, facility_actions, apply_action, expire


class TestConservationProperties:
    """Property-based conservation tests."""

    @given(facility_actions)
    @settings(max_examples=50, deadline=None)
    def test_activity_conserves_every_token(self, actions):
        """
        PROPERTY: Every token nets to zero across all wallets after any
        sequence of facility activity.
        """
        d = deploy(start=T0)
        d.clearinghouse.activate(caller=d.admin)
        engine = KeeperEngine(d.clearinghouse, d.factory, keeper="keeper")

        for n, (action, k) in enumerate(actions):
            apply_action(d, engine, action, k, n)
            result = d.ledger.verify_conservation()
            assert result['valid'], result['discrepancies']

    @given(facility_actions)
    @settings(max_examples=50, deadline=None)
    def test_no_idle_assets_at_rest(self, actions):
        """
        PROPERTY: Between operations an active clearinghouse holds neither
        collateral nor unswept debt.
        """
        d = deploy(start=T0)
        ch = d.clearinghouse
        ch.activate(caller=d.admin)
        engine = KeeperEngine(ch, d.factory, keeper="keeper")

        for n, (action, k) in enumerate(actions):
            apply_action(d, engine, action, k, n)
            assert d.ledger.get_balance(ch.address, GOHM) == 0
            assert d.ledger.get_balance(ch.address, DAI) == 0


class TestConservationExamples:
    """Explicit end-to-end conservation checks."""

    def test_shutdown_conserves(self, alice_loan):
        d, _, _ = alice_loan
        d.clearinghouse.emergency_shutdown(caller=d.admin)
        assert d.ledger.verify_conservation()['valid']

    def test_claim_burns_rather_than_destroys(self, alice_loan, keeper):
        d, cooler, loan_id = alice_loan
        expire(d, cooler, loan_id, timedelta(days=30))
        d.clearinghouse.claim_defaulted([cooler], [loan_id], caller=keeper)
        assert d.ledger.verify_conservation()['valid']
