from __future__ import annotations

from fastapi import APIRouter
from sqlalchemy.orm import Session

from fiado.api.deps import ClockDep, DBSession
from fiado.infra.cache import invalidate_receivables
from fiado.services.clock import Clock
from fiado.services.repair_service import apply_repairs, preview_repairs

router = APIRouter()


@router.get("/fix-receivables")
def preview_fix_receivables(db: Session = DBSession):
    needs_fix = preview_repairs(db)
    return {
        "total": len(needs_fix),
        "sales": [c.to_dict() for c in needs_fix],
    }


@router.post("/fix-receivables")
def apply_fix_receivables(db: Session = DBSession, clock: Clock = ClockDep):
    # commit é feito por venda dentro do serviço
    result = apply_repairs(db, clock=clock)
    if result.fixed:
        invalidate_receivables()
    return result.to_dict()
