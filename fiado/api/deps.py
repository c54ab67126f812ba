from fastapi import Depends, HTTPException
from sqlalchemy.orm import Session

from fiado.infra.db import get_db
from fiado.services.clock import Clock, system_clock
from fiado.services.errors import ServiceError


def get_clock() -> Clock:
    return system_clock


DBSession = Depends(get_db)
ClockDep = Depends(get_clock)


def api_error(db: Session, e: ServiceError) -> HTTPException:
    db.rollback()
    return HTTPException(status_code=e.status_code, detail={"code": e.code, "message": e.message})
