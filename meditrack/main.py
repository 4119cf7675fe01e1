import sys
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path

import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

# Find .env even in frozen or packaged mode
POSSIBLE_ENV_PATHS = [
    Path(__file__).resolve().parent.parent / ".env",        # normal
    Path(sys.executable).resolve().parent / ".env",         # frozen exe
    Path.cwd() / ".env",                                   # runtime cwd
]

for env_path in POSSIBLE_ENV_PATHS:
    if env_path.exists():
        load_dotenv(env_path, override=True)
        break

from meditrack.config import settings  # noqa: E402
from meditrack.database import Base, engine, import_models  # noqa: E402
from meditrack.errors import InventoryError  # noqa: E402
from meditrack.alerts.router import router as alert_router  # noqa: E402
from meditrack.clinics.router import router as clinic_router  # noqa: E402
from meditrack.stock.adjustments.router import router as adjustment_router  # noqa: E402
from meditrack.stock.batches.router import router as batch_router  # noqa: E402
from meditrack.stock.inventory.router import router as inventory_router  # noqa: E402
from meditrack.stock.items.router import router as item_router  # noqa: E402

logger.add(settings.LOG_FILE, rotation=settings.LOG_ROTATION, level=settings.LOG_LEVEL)


# Database startup
@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Application startup")
    import_models()
    Base.metadata.create_all(bind=engine)
    yield
    logger.info("Application shutdown")


# Create app
app = FastAPI(
    title="MEDITRACK",
    description="Clinic medication inventory: batches, stock ledger and expiry / low-stock alerts.",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(InventoryError)
async def inventory_error_handler(request: Request, exc: InventoryError):
    if exc.status_code >= 500:
        logger.error(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")
    else:
        logger.warning(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": {
                "code": exc.code,
                "message": exc.message,
                "status_code": exc.status_code,
                "path": request.url.path,
                "timestamp": datetime.utcnow().isoformat(),
                "details": exc.details,
            }
        },
    )


# Routers
app.include_router(clinic_router, prefix="/clinics", tags=["Clinics"])
app.include_router(item_router, prefix="/stock/items", tags=["Stock - Items"])
app.include_router(inventory_router, prefix="/stock/inventory", tags=["Stock - Inventory"])
app.include_router(batch_router, prefix="/stock", tags=["Stock - Batches"])
app.include_router(adjustment_router, prefix="/stock", tags=["Stock - Ledger"])
app.include_router(alert_router, prefix="/alerts", tags=["Alerts"])


@app.get("/health")
def health_check():
    return {"status": "ok"}


if __name__ == "__main__":
    uvicorn.run("meditrack.main:app", host=settings.SERVER_HOST, port=settings.SERVER_PORT)
