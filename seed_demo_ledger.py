"""Seed a demo ledger: one region, one organization, two farmers.

Replays the reference walkthrough against the configured database:

1. Fund region-1 with 100,000 and allocate 40,000 to org-a.
2. farmer-f asks org-a for 50,000; approval fails for lack of funds and
   the request stays pending.
3. farmer-f asks for 10,000; approval leaves org-a with 30,000.

Idempotency keys are fixed, so running the script twice changes nothing.

Usage:
    python seed_demo_ledger.py
"""

from __future__ import annotations

import os
import sys
from decimal import Decimal

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from budget_ledger.database import Base, SessionLocal, engine  # noqa: E402
from budget_ledger.errors import InsufficientFundsError  # noqa: E402
from budget_ledger.models import BudgetRequest  # noqa: E402
from budget_ledger.schemas.common import TierRef  # noqa: E402
from budget_ledger.services import (  # noqa: E402
    allocation_service,
    balance_service,
    membership_service,
    request_service,
)

FISCAL_YEAR = 2026
ACTOR = "seed-script"

REGION = TierRef(kind="region", id="region-1")
ORG_A = TierRef(kind="organization", id="org-a")
FARMER_F = TierRef(kind="farmer", id="farmer-f")
FARMER_G = TierRef(kind="farmer", id="farmer-g")


def _print_balance(session, tier: TierRef) -> None:
    card = balance_service.get_tier_balance(session, tier, FISCAL_YEAR)
    print(
        f"  {tier.label:<22} total={card.total_allocation:>12,.2f} "
        f"remaining={card.remaining_balance:>12,.2f} v{card.version}"
    )


def _pending_request(session, requester: TierRef, amount: Decimal) -> int:
    """Reuse a pending request of the same amount so reruns do not pile up."""
    existing = (
        session.query(BudgetRequest)
        .filter(
            BudgetRequest.requester_kind == requester.kind,
            BudgetRequest.requester_id == requester.id,
            BudgetRequest.amount == amount,
        )
        .first()
    )
    if existing is not None:
        return existing.id

    request = request_service.submit_request(
        session, requester, ORG_A.kind, ORG_A.id, FISCAL_YEAR, amount,
        reason="Seed demo request", actor_id=FARMER_F.id,
    )
    return request.id


def main() -> None:
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()

    try:
        print("\n[1/4] Memberships...")
        membership_service.set_membership(session, ORG_A, REGION)
        membership_service.set_membership(session, FARMER_F, ORG_A)
        membership_service.set_membership(session, FARMER_G, ORG_A)

        print("\n[2/4] Region funding and allocation...")
        allocation_service.fund_tier(
            session, REGION, FISCAL_YEAR, "100000.00",
            description="Annual regional budget", actor_id=ACTOR,
            idempotency_key="seed:fund:region-1",
        )
        allocation_service.allocate(
            session, REGION, ORG_A, FISCAL_YEAR, "40000.00",
            description="Q1 operating allocation", actor_id=ACTOR,
            idempotency_key="seed:alloc:org-a",
        )
        _print_balance(session, REGION)
        _print_balance(session, ORG_A)

        print("\n[3/4] Request for 50,000 (org-a cannot cover it)...")
        big_id = _pending_request(session, FARMER_F, Decimal("50000.00"))
        try:
            request_service.decide_request(session, big_id, "approved", decider_id=ACTOR)
        except InsufficientFundsError as exc:
            print(f"  request {big_id} stays pending: {exc.message}")

        print("\n[4/4] Request for 10,000...")
        small_id = _pending_request(session, FARMER_F, Decimal("10000.00"))
        result = request_service.decide_request(session, small_id, "approved", decider_id=ACTOR)
        print(f"  request {small_id}: {result.request.status} (already_decided={result.already_decided})")

        for tier in (REGION, ORG_A, FARMER_F):
            _print_balance(session, tier)

        print("\n" + "=" * 60)
        print("  Seed complete.")
        print("=" * 60)

    except Exception as exc:
        session.rollback()
        print(f"\n[ERROR] Seed failed: {exc}")
        raise
    finally:
        session.close()


if __name__ == "__main__":
    main()
