"""Wallet reconciliation API (owner only).

Endpoints:
- GET  /admin/wallet/reconcile            - report balance discrepancies
- POST /admin/wallet/reconcile/{user_id}  - overwrite one user's cached balances
"""

import logging
from decimal import Decimal
from typing import Any

from fastapi import APIRouter, Query
from pydantic import BaseModel

from tourney.api.deps import DbSession, OwnerUser
from tourney.services.reconciliation import LedgerReconciler

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin/wallet", tags=["Wallet Admin"])


# ============================================================
# Pydantic Schemas
# ============================================================


class BalanceDiscrepancy(BaseModel):
    user_id: str
    username: str
    current_balance: Decimal
    calculated_balance: Decimal
    balance_drift: Decimal
    current_hold: Decimal
    calculated_hold: Decimal
    hold_drift: Decimal


class ReconcileReportResponse(BaseModel):
    """Discrepancies between cached and ledger balances."""

    checked_user_id: str | None = None
    discrepancy_count: int
    discrepancies: list[BalanceDiscrepancy]


class ReconcileFixResponse(BaseModel):
    user_id: str
    old_balance: Decimal
    new_balance: Decimal
    old_hold: Decimal
    new_hold: Decimal
    changed: bool


# ============================================================
# Endpoints
# ============================================================


@router.get("/reconcile", response_model=ReconcileReportResponse)
async def get_reconciliation_report(
    owner: OwnerUser,
    db: DbSession,
    user_id: str | None = Query(default=None, description="Limit to one user"),
) -> Any:
    """Report users whose cached balance or hold balance drifted from the ledger."""
    reconciler = LedgerReconciler(db)
    reports = await reconciler.reconcile(user_id)
    return ReconcileReportResponse(
        checked_user_id=user_id,
        discrepancy_count=len(reports),
        discrepancies=[BalanceDiscrepancy(**r.to_dict()) for r in reports],
    )


@router.post("/reconcile/{user_id}", response_model=ReconcileFixResponse)
async def apply_reconciliation(
    user_id: str,
    owner: OwnerUser,
    db: DbSession,
) -> Any:
    """Recompute one user's balances from the ledger and overwrite the cache."""
    reconciler = LedgerReconciler(db)
    fix = await reconciler.apply_reconciliation(user_id)
    logger.info(f"Owner {owner.id} reconciled wallet of {user_id}")
    return ReconcileFixResponse(**fix.to_dict())
