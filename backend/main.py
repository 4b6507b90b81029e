import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

from config import settings
from core.exceptions import CouponError, coupon_error_handler
from database import connect_db, close_db

# Routers
from routers import coupons

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Rate limiter (coupon codes are guessable, keep brute force in check)
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[settings.DEFAULT_RATE_LIMIT],
    enabled=settings.RATE_LIMIT_ENABLED,
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    await connect_db()
    logger.info("Spice store coupon API started")
    yield
    # Shutdown
    await close_db()
    logger.info("Spice store coupon API stopped")


app = FastAPI(
    title="Spice Store Coupon API",
    description="Coupons and promotions for the spice storefront",
    version="1.0.0",
    lifespan=lifespan,
)

# Rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)

# Coupon workflow errors
app.add_exception_handler(CouponError, coupon_error_handler)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.DEBUG else settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(coupons.router, prefix="/api/coupons", tags=["Coupons"])


@app.get("/health", tags=["Health"])
async def health():
    return {"status": "ok", "app": "spicestore-coupons", "version": "1.0.0"}


if __name__ == "__main__":
    # Development server: python main.py (from backend/)
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=settings.DEBUG)
