"""
Academic Risk Detections Service (port 8200)
----------------------------------------------
Runs the anomaly detection pipeline on demand (POST /api/criteria/{id}/run) and
exposes Detections, their review workflow, referrals, alerts, run history and
the audit trail. Scheduled runs go through scripts/run_detection.py.
"""

import logging
import os
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from academic_risk.services.shared.database import create_all_tables

logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))
logger = structlog.get_logger()

CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("arisk_detections_starting")
    create_all_tables()
    logger.info("arisk_detections_tables_ready")
    yield
    logger.info("arisk_detections_stopping")


app = FastAPI(
    title="Academic Risk Detections Service",
    version="0.1.0",
    description="Isolation Forest risk detection, review workflow and referrals.",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)

from academic_risk.services.detections.routes_criteria   import router as criteria_router    # noqa: E402
from academic_risk.services.detections.routes_detections import router as detections_router  # noqa: E402
from academic_risk.services.detections.routes_runs       import router as runs_router        # noqa: E402
from academic_risk.services.detections.routes_referrals  import router as referrals_router   # noqa: E402
from academic_risk.services.detections.routes_alerts     import router as alerts_router      # noqa: E402
from academic_risk.services.detections.routes_audit      import router as audit_router       # noqa: E402

app.include_router(criteria_router,   prefix="/api", tags=["Criteria"])
app.include_router(detections_router, prefix="/api", tags=["Detections"])
app.include_router(runs_router,       prefix="/api", tags=["Runs"])
app.include_router(referrals_router,  prefix="/api", tags=["Referrals"])
app.include_router(alerts_router,     prefix="/api", tags=["Alerts"])
app.include_router(audit_router,      prefix="/api", tags=["Audit"])


@app.get("/health", tags=["Health"])
def health():
    return {"status": "healthy", "service": "arisk-detections", "version": "0.1.0"}
