"""
Academic Risk Records Service (port 8100)
-------------------------------------------
CRUD for the academic data the detection pipeline reads:
programs, students, courses and per-course academic records.
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
    logger.info("arisk_records_starting")
    create_all_tables()
    logger.info("arisk_records_tables_ready")
    yield
    logger.info("arisk_records_stopping")


app = FastAPI(
    title="Academic Risk Records Service",
    version="0.1.0",
    description="Students, courses and academic records feeding the risk detection pipeline.",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)

from academic_risk.services.records.routes_students import router as students_router  # noqa: E402
from academic_risk.services.records.routes_records  import router as records_router   # noqa: E402

app.include_router(students_router, prefix="/api", tags=["Students"])
app.include_router(records_router,  prefix="/api", tags=["Records"])


@app.get("/health", tags=["Health"])
def health():
    return {"status": "healthy", "service": "arisk-records", "version": "0.1.0"}
