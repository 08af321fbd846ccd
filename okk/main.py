"""OKK audit FastAPI application."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from okk.api.deps import dispatcher
from okk.api.health import router as health_router
from okk.api.rules import router as rules_router
from okk.api.violations import router as violations_router
from okk.config import settings

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # Let in-flight notifications finish; they are never retried
    await dispatcher.drain()


app = FastAPI(
    title="OKK - Sales Quality Control",
    description="Audits sales-process compliance by replaying CRM events and calls against rules",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health_router, tags=["Health"])
app.include_router(rules_router, prefix="/v1", tags=["Rules"])
app.include_router(violations_router, prefix="/v1", tags=["Violations"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {"service": "OKK", "version": "0.1.0", "docs": "/docs"}
