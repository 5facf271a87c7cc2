"""
Tests for the pure monthly settlement plan.

The plan is computed from a month's raw split links without touching the
database; persistence is covered in tests/services/test_settlement_service.py.
"""

from uuid import uuid4

from revshare_kernel.domain.enums import AgreementType, SettlementStatus
from revshare_kernel.services.settlement_service import _PeriodLink, plan_settlement


def _link(partner: int, merchant: int) -> _PeriodLink:
    return _PeriodLink(
        split_link_id=uuid4(),
        transaction_id=uuid4(),
        partner_share=partner,
        merchant_share=merchant,
    )


class TestPlanSettlement:

    def test_shortfall_allocated_proportionally(self):
        links = [_link(10000, 40000), _link(15000, 60000), _link(5000, 20000)]
        plan = plan_settlement(AgreementType.MINIMUM_GUARANTEE, 50000, links)

        assert plan.status == SettlementStatus.APPLIED
        assert plan.raw_partner_share == 30000
        assert plan.raw_merchant_share == 120000
        assert plan.adjustment == 20000
        assert plan.final_partner_share == 50000
        assert [a.adjustment for a in plan.allocations] == [6667, 10000, 3333]
        assert [a.final_partner_share for a in plan.allocations] == [16667, 25000, 8333]

    def test_guarantee_already_met(self):
        links = [_link(30000, 70000), _link(25000, 75000)]
        plan = plan_settlement(AgreementType.HYBRID, 50000, links)

        assert plan.status == SettlementStatus.NO_ADJUSTMENT
        assert plan.adjustment == 0
        assert plan.final_partner_share == 55000
        assert plan.allocations == ()

    def test_guarantee_exactly_met(self):
        plan = plan_settlement(AgreementType.MINIMUM_GUARANTEE, 50000, [_link(50000, 0)])
        assert plan.status == SettlementStatus.NO_ADJUSTMENT

    def test_percentage_agreement_never_adjusted(self):
        plan = plan_settlement(AgreementType.PERCENTAGE, 50000, [_link(100, 400)])
        assert plan.status == SettlementStatus.NO_ADJUSTMENT
        assert plan.final_partner_share == 100

    def test_zero_guarantee_never_adjusted(self):
        plan = plan_settlement(AgreementType.MINIMUM_GUARANTEE, 0, [_link(100, 400)])
        assert plan.status == SettlementStatus.NO_ADJUSTMENT

    def test_missing_guarantee_never_adjusted(self):
        plan = plan_settlement(AgreementType.HYBRID, None, [_link(100, 400)])
        assert plan.status == SettlementStatus.NO_ADJUSTMENT

    def test_no_links_is_unallocated(self):
        plan = plan_settlement(AgreementType.MINIMUM_GUARANTEE, 50000, [])

        assert plan.status == SettlementStatus.UNALLOCATED
        assert plan.adjustment == 50000
        assert plan.final_partner_share == 0
        assert plan.transaction_count == 0
        assert plan.allocations == ()

    def test_zero_revenue_links_are_unallocated(self):
        plan = plan_settlement(AgreementType.MINIMUM_GUARANTEE, 50000, [_link(0, 0)])
        assert plan.status == SettlementStatus.UNALLOCATED

    def test_guarantee_only_agreement_weights_by_subtotal(self):
        """No rate means no raw partner share; subtotals carry the weight."""
        links = [_link(0, 30000), _link(0, 10000)]
        plan = plan_settlement(AgreementType.MINIMUM_GUARANTEE, 8000, links)

        assert plan.status == SettlementStatus.APPLIED
        assert [a.adjustment for a in plan.allocations] == [6000, 2000]
        assert plan.final_partner_share == 8000

    def test_allocations_keep_link_order(self):
        links = [_link(1, 0), _link(1, 0), _link(1, 0)]
        plan = plan_settlement(AgreementType.MINIMUM_GUARANTEE, 13, links)

        assert [a.split_link_id for a in plan.allocations] == [l.split_link_id for l in links]
        assert [a.adjustment for a in plan.allocations] == [4, 3, 3]
