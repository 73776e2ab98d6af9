import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import settings
from database import init_db
from api.applications import router as applications_router
from api.continuations import router as continuations_router
from api.crm import router as crm_router
from api.deps import close_clients
from api.oauth import router as oauth_router
from utils.exceptions import (
    AppError,
    CredentialMissing,
    DatabaseError,
    ExternalApiError,
    NotFoundError,
    RefreshFailed,
    ValidationError,
)

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# Most specific first
ERROR_STATUS = (
    (ValidationError, 400),
    (NotFoundError, 404),
    (CredentialMissing, 503),
    (RefreshFailed, 502),
    (ExternalApiError, 502),
    (DatabaseError, 500),
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    yield
    await close_clients()


app = FastAPI(
    title=settings.app_name,
    description="Mortgage application state sync: participants, step data, CRM records and OAuth tokens",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins.split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    status_code = next((code for cls, code in ERROR_STATUS if isinstance(exc, cls)), 500)
    if status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=status_code, content={"error": exc.message})


app.include_router(applications_router)
app.include_router(continuations_router)
app.include_router(crm_router)
app.include_router(oauth_router)


@app.get("/health")
async def health():
    return {"status": "ok"}
