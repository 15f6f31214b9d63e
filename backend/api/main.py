"""
ShelfSim API — FastAPI Application Entry Point
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.requests import Request

from core.config import get_settings
from core.errors import DomainInvariantError, NotFoundError, TickAbortedError, ValidationError

settings = get_settings()
logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    logger.info("ShelfSim API starting up", version=settings.app_version)
    yield
    logger.info("ShelfSim API shutting down")


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Day-cycle supply-chain simulation engine",
    lifespan=lifespan,
)


# ─── Error mapping ──────────────────────────────────────────────────────────


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(TickAbortedError)
async def tick_aborted_handler(request: Request, exc: TickAbortedError):
    logger.error("api.tick_aborted", path=request.url.path, error=str(exc))
    return JSONResponse(
        status_code=500,
        content={"detail": "Day advance failed and was rolled back", "day": exc.day},
    )


@app.exception_handler(DomainInvariantError)
async def invariant_error_handler(request: Request, exc: DomainInvariantError):
    logger.error("api.invariant_violated", path=request.url.path, error=str(exc))
    return JSONResponse(status_code=500, content={"detail": str(exc)})


# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Import and register routers
from api.v1.routers import logistics, orders, simulations, spikes, transfers

app.include_router(simulations.router)
app.include_router(logistics.router)
app.include_router(spikes.router)
app.include_router(orders.router)
app.include_router(transfers.router)


@app.get("/health")
async def health_check():
    """Health check endpoint for load balancers."""
    return {"status": "healthy", "version": settings.app_version}
