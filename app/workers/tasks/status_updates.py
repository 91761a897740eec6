from __future__ import annotations

from app.db.session import SessionLocal
from app.services.reconciler import StatusUpdateReconciler
from app.workers.celery_app import celery_app


@celery_app.task(name="app.workers.tasks.status_updates.ensure_consistency")
def ensure_consistency():
    db = SessionLocal()
    try:
        reconciler = StatusUpdateReconciler(db)
        applied = reconciler.run_once()
        result = reconciler.stats.as_dict()
        result["transitions"] = [item.as_dict() for item in applied]
        return result
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
