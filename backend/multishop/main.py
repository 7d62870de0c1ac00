import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from multishop.api import auth, products, categories, customers, orders, dashboard, public, audit, health
from multishop.core.config import settings, logger
from multishop.core.middleware import (
    RequestContextMiddleware,
    RateLimitMiddleware,
    global_exception_handler,
    http_exception_handler,
    validation_exception_handler,
)
from multishop.core.rate_limiter import rate_limit_cleanup_task
from multishop.db.database import create_tables


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    await create_tables()
    logger.info(f"{settings.APP_NAME} started ({settings.APP_ENV})")
    cleanup = asyncio.create_task(rate_limit_cleanup_task())
    yield
    # Shutdown
    cleanup.cancel()


app = FastAPI(
    title="multishop API",
    description="Multi-tenant e-commerce backend",
    version="0.1.0",
    lifespan=lifespan,
)

# Middleware order: the last added runs first, so request context wraps rate limiting
app.add_middleware(RateLimitMiddleware)
app.add_middleware(RequestContextMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_origin_regex=settings.CORS_ORIGIN_REGEX,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_exception_handler(StarletteHTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, global_exception_handler)

# Include routers
app.include_router(health.router, prefix="", tags=["Health"])
app.include_router(auth.router, prefix="/api/auth", tags=["Authentication"])
app.include_router(products.router, prefix="/api/products", tags=["Products"])
app.include_router(categories.router, prefix="/api/categories", tags=["Categories"])
app.include_router(customers.router, prefix="/api/customers", tags=["Customers"])
app.include_router(orders.router, prefix="/api/orders", tags=["Orders"])
app.include_router(dashboard.router, prefix="/api/dashboard", tags=["Dashboard"])
app.include_router(public.router, prefix="/api/public", tags=["Public"])
app.include_router(audit.router, prefix="/api/audit", tags=["Audit"])
