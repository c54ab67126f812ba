from __future__ import annotations

import logging

from dotenv import load_dotenv
load_dotenv()

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from fiado.config import settings
from fiado.infra.db import engine
from fiado.infra.models import Base

from fiado.api.routers.admin import router as admin_router
from fiado.api.routers.health import router as health_router
from fiado.api.routers.payments import router as payments_router
from fiado.api.routers.receivables import router as receivables_router
from fiado.api.routers.sales import router as sales_router

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("fiado")

app = FastAPI(title="Fiado API")

origins = settings.cors_origins()
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
logger.info("CORS allow_origins=%s", origins)


@app.on_event("startup")
def _startup() -> None:
    # sem migrations: cria o que faltar
    Base.metadata.create_all(bind=engine)
    logger.info("startup: tables created/checked")


app.include_router(health_router, tags=["health"])
app.include_router(sales_router, prefix="/sales", tags=["sales"])
app.include_router(receivables_router, prefix="/receivables", tags=["receivables"])
app.include_router(payments_router, prefix="/payments", tags=["payments"])
app.include_router(admin_router, prefix="/admin", tags=["admin"])
