import logging
import time

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from assistec.api.v1.approvals import router as approvals_router
from assistec.api.v1.audit import router as audit_router
from assistec.api.v1.auth import router as auth_router
from assistec.api.v1.evidence import router as evidence_router
from assistec.api.v1.orders import router as orders_router
from assistec.api.v1.payments import router as payments_router
from assistec.api.v1.public import router as public_router
from assistec.core.config import DEFAULT_VERIFICATION_HASH_KEY, settings
from assistec.core.errors import DomainError
from assistec.db import models
from assistec.db.session import engine

if not logging.getLogger().handlers:
    logging.basicConfig(level=logging.INFO)

logger = logging.getLogger("assistec")

app = FastAPI(
    title=settings.APP_NAME,
    version="1.0.0",
    description="Assistec - Ciclo de vida de OS, aprovacoes e evidencias",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.BACKEND_CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
def on_startup() -> None:
    models.Base.metadata.create_all(bind=engine)
    if settings.ENV.lower() == "production":
        if settings.SECRET_KEY == "dev-secret-change-me":
            logger.warning("SECRET_KEY esta usando valor padrao em producao.")
        if settings.VERIFICATION_HASH_KEY == DEFAULT_VERIFICATION_HASH_KEY:
            logger.warning("VERIFICATION_HASH_KEY esta usando valor padrao em producao.")
        if settings.SQLALCHEMY_DATABASE_URI.startswith("sqlite"):
            logger.warning("SQLALCHEMY_DATABASE_URI aponta para SQLite em producao.")
        if not settings.GCS_BUCKET:
            logger.warning("GCS_BUCKET ausente: evidencias e comprovantes gravados em disco local.")


@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError):
    if exc.status_code >= 500:
        logger.error("domain error path=%s code=%s detail=%s", request.url.path, exc.code, exc.detail)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


app.include_router(auth_router, prefix="/api")
app.include_router(orders_router, prefix="/api")
app.include_router(approvals_router, prefix="/api")
app.include_router(evidence_router, prefix="/api")
app.include_router(payments_router, prefix="/api")
app.include_router(audit_router, prefix="/api")
app.include_router(public_router, prefix="/api")


PUBLIC_TOKEN_PREFIX = "/api/public/approvals/"


def _loggable_path(path: str) -> str:
    if not path.startswith(PUBLIC_TOKEN_PREFIX):
        return path
    token, _, rest = path[len(PUBLIC_TOKEN_PREFIX):].partition("/")
    return f"{PUBLIC_TOKEN_PREFIX}{token[:8]}.../{rest}".rstrip("/")


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    duration_ms = (time.perf_counter() - start) * 1000
    logger.info(
        "request method=%s path=%s status=%s duration_ms=%.2f",
        request.method,
        _loggable_path(request.url.path),
        response.status_code,
        duration_ms,
    )
    return response


@app.get("/api/health")
def health():
    return {"status": "ok"}
