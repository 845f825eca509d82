import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from datahall.config import settings
from datahall.database import Base, SessionLocal, engine
from datahall.errors import (
    ExpirationPast,
    InfrastructureError,
    InvalidPassword,
    LinkExpired,
    NotFound,
    PermissionDenied,
    ServiceError,
    StateError,
    ValidationFailed,
)
from datahall.routers import (
    admin,
    auth,
    documents,
    files,
    links,
    maintenance,
    organization,
    public_links,
    reports,
    requests,
)
from datahall.seed import seed_demo_data

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# Most specific first; the first isinstance match wins.
ERROR_STATUS = (
    (NotFound, 404),
    (PermissionDenied, 403),
    (ValidationFailed, 400),
    (ExpirationPast, 400),
    (InvalidPassword, 401),
    (LinkExpired, 410),
    (StateError, 409),
    (InfrastructureError, 503),
)

app = FastAPI(title="Datahall", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def status_for(exc: ServiceError) -> int:
    for error_type, status_code in ERROR_STATUS:
        if isinstance(exc, error_type):
            return status_code
    return 500


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    status_code = status_for(exc)
    if status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.code)
    headers = {"Retry-After": "5"} if exc.retryable else None
    return JSONResponse(
        status_code=status_code,
        content={"detail": exc.message, "code": exc.code, "retryable": exc.retryable},
        headers=headers,
    )


@app.on_event("startup")
def on_startup() -> None:
    Base.metadata.create_all(bind=engine)
    if settings.storage_provider.strip().lower() == "local":
        settings.upload_path.mkdir(parents=True, exist_ok=True)

    if not settings.seed_demo_data:
        return
    db = SessionLocal()
    try:
        seed_demo_data(db)
    finally:
        db.close()


@app.get("/health")
def health() -> dict:
    return {"status": "ok", "storage_provider": settings.storage_provider}


app.include_router(auth.router)
app.include_router(documents.router)
app.include_router(links.router)
app.include_router(public_links.router)
app.include_router(files.router)
app.include_router(admin.router)
app.include_router(organization.router)
app.include_router(requests.router)
app.include_router(reports.router)
app.include_router(maintenance.router)
