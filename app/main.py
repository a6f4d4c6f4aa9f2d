from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.core.logging import configure_logging

# before the routers are imported: module-level loggers bind the active config
configure_logging()

# IMPORTANT:
# This imports ALL models so SQLAlchemy registers tables correctly
import app.models  # noqa: F401,E402

from app.core.config import settings  # noqa: E402
from app.core.db import create_tables  # noqa: E402

# Routers
from app.routers.registrations import router as registrations_router  # noqa: E402
from app.routers.coupons import router as coupons_router  # noqa: E402
from app.routers.payments import router as payments_router  # noqa: E402
from app.routers.admin_registrations import router as admin_registrations_router  # noqa: E402

logger = structlog.get_logger().bind(component="app")


@asynccontextmanager
async def lifespan(_: FastAPI):
    await create_tables()
    logger.info("startup", event_name=settings.EVENT_NAME, currency=settings.CURRENCY)
    yield
    logger.info("shutdown")


app = FastAPI(title=f"{settings.EVENT_NAME} Registrations", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
async def health():
    return {"status": "ok"}


# Registration form
app.include_router(registrations_router)

# Checkout
app.include_router(coupons_router)
app.include_router(payments_router)

# Admin
app.include_router(admin_registrations_router)
