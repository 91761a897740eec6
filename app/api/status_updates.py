from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.core.deps import require_staff
from app.db.session import get_db
from app.models.user import User
from app.schemas.topics import ReconcileRun
from app.services.reconciler import StatusUpdateReconciler

router = APIRouter()


@router.post("/reconcile")
def reconcile_tick(
    payload: ReconcileRun | None = None,
    db: Session = Depends(get_db),
    user: User = Depends(require_staff),
):
    reconciler = StatusUpdateReconciler(db)
    applied = reconciler.run_once(payload.now if payload is not None else None)
    return {
        "stats": reconciler.stats.as_dict(),
        "transitions": [item.as_dict() for item in applied],
    }
