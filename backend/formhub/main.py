import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from formhub.api import (
    analytics,
    auth,
    field_templates,
    fields,
    forms,
    health,
    public,
    submissions,
    tenants,
    users,
)
from formhub.core.config import settings
from formhub.core.logging import api_logger
from formhub.core.middleware import (
    AdminCORSMiddleware,
    RequestContextMiddleware,
    global_exception_handler,
    http_exception_handler,
    validation_exception_handler,
)
from formhub.db.database import create_tables


logging.basicConfig(level=logging.DEBUG if settings.DEBUG else logging.INFO)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    await create_tables()
    api_logger.info("Application started", env=settings.APP_ENV)
    yield


app = FastAPI(
    title="formhub API",
    description="Multi-tenant form builder backend",
    version="0.1.0",
    lifespan=lifespan,
)

# Admin dashboard CORS. /api/* answers CORS per form.
app.add_middleware(
    AdminCORSMiddleware,
    allow_origins=settings.ADMIN_CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestContextMiddleware)

app.add_exception_handler(StarletteHTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, global_exception_handler)

# Public
app.include_router(public.router, prefix="/api", tags=["Public"])

# Admin
app.include_router(auth.router, prefix="/admin/auth", tags=["Authentication"])
app.include_router(tenants.router, prefix="/admin/tenants", tags=["Tenants"])
app.include_router(users.router, prefix="/admin/users", tags=["Users"])
app.include_router(forms.router, prefix="/admin/forms", tags=["Forms"])
app.include_router(fields.router, prefix="/admin", tags=["Fields"])
app.include_router(field_templates.router, prefix="/admin/field-templates", tags=["Field Templates"])
app.include_router(submissions.router, prefix="/admin", tags=["Submissions"])
app.include_router(analytics.router, prefix="/admin/analytics", tags=["Analytics"])

# Health / readiness
app.include_router(health.router, prefix="", tags=["Health"])
