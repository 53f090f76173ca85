# tendermatch/main.py
import asyncio
import logging
from typing import Optional

from fastapi import BackgroundTasks, Depends, FastAPI, File, Header, HTTPException, Query, Request, Response, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy.ext.asyncio import AsyncSession

from tendermatch import db, deepinfra
from tendermatch.config import settings
from tendermatch.db import close_engine, get_async_session, init_models
from tendermatch.errors import InternalError, PermissionDenied, TenderMatchError, Unauthenticated
from tendermatch.intake import document_to_dict
from tendermatch.qdrant_client import get_qdrant_client
from tendermatch.redis_client import allow_request, close_redis, get_redis
from tendermatch.services import Services, close_services, get_services

logger = logging.getLogger("uvicorn.error")

app = FastAPI(title="Tender Match", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def startup():
    logging.basicConfig(level=settings.log_level.upper())
    await init_models()
    get_services()


@app.on_event("shutdown")
async def shutdown():
    try:
        await close_services()
        await deepinfra.close_client()
    except Exception:
        logger.exception("Failed to close http clients on shutdown")
    await close_redis()
    await close_engine()


@app.exception_handler(TenderMatchError)
async def tendermatch_exception_handler(request: Request, exc: TenderMatchError):
    if isinstance(exc, InternalError):
        logger.error("Internal error on %s: %s", request.url.path, exc.message)
        return JSONResponse({"detail": "Internal server error", "code": exc.code}, status_code=exc.status_code)
    return JSONResponse({"detail": exc.message, "code": exc.code}, status_code=exc.status_code)


@app.exception_handler(HTTPException)
def http_exception_handler(request: Request, exc: HTTPException):
    return JSONResponse({"detail": exc.detail}, status_code=exc.status_code)


async def get_owner_id(x_owner_id: Optional[str] = Header(None)) -> str:
    if not x_owner_id or not x_owner_id.strip():
        raise Unauthenticated("Missing X-Owner-Id header")
    return x_owner_id.strip()


async def require_admin(x_api_key: Optional[str] = Header(None)) -> None:
    if not x_api_key:
        raise Unauthenticated("Missing X-API-Key header")
    if x_api_key != settings.admin_api_key:
        raise PermissionDenied("Invalid API key")


# ---------- documents ----------

@app.post("/documents", status_code=201)
async def upload_document(
    file: UploadFile = File(...),
    owner_id: str = Depends(get_owner_id),
    session: AsyncSession = Depends(get_async_session),
    services: Services = Depends(get_services),
):
    doc = await services.intake.submit(session, owner_id, file)
    return {
        "documentId": doc.document_id,
        "fileName": doc.file_name,
        "fileSize": doc.file_size,
        "status": doc.status,
    }


@app.get("/documents")
async def list_documents(
    owner_id: str = Depends(get_owner_id),
    session: AsyncSession = Depends(get_async_session),
    services: Services = Depends(get_services),
):
    docs = await services.intake.list_documents(session, owner_id)
    return [document_to_dict(d) for d in docs]


@app.post("/documents/{document_id}/process", status_code=202)
async def process_document(
    document_id: str,
    background_tasks: BackgroundTasks,
    owner_id: str = Depends(get_owner_id),
    session: AsyncSession = Depends(get_async_session),
    services: Services = Depends(get_services),
):
    await services.intake.trigger(session, owner_id, document_id)
    background_tasks.add_task(services.processor.process, document_id)
    return {
        "documentId": document_id,
        "status": "processing",
        "message": "Document processing started. Check the status endpoint for progress.",
    }


@app.get("/documents/{document_id}/status")
async def document_status(
    document_id: str,
    owner_id: str = Depends(get_owner_id),
    session: AsyncSession = Depends(get_async_session),
    services: Services = Depends(get_services),
):
    status = await services.intake.status(session, owner_id, document_id)
    return status.to_dict()


# ---------- recommendations ----------

@app.get("/recommendations")
async def recommendations(
    limit: int = Query(10, ge=1, le=50),
    refresh: bool = False,
    owner_id: str = Depends(get_owner_id),
    session: AsyncSession = Depends(get_async_session),
    services: Services = Depends(get_services),
):
    if refresh and not await allow_request(f"refresh:{owner_id}", limit=settings.refresh_rate_limit, period=60):
        raise HTTPException(status_code=429, detail="Too many refresh requests")
    results = await services.recommendations.get_recommendations(session, owner_id, limit=limit,
                                                                 force_refresh=refresh)
    return [r.to_dict() for r in results]


@app.post("/recommendations/refresh")
async def refresh_recommendations(
    limit: int = Query(10, ge=1, le=50),
    owner_id: str = Depends(get_owner_id),
    session: AsyncSession = Depends(get_async_session),
    services: Services = Depends(get_services),
):
    if not await allow_request(f"refresh:{owner_id}", limit=settings.refresh_rate_limit, period=60):
        raise HTTPException(status_code=429, detail="Too many refresh requests")
    outcome = await services.recommendations.refresh(session, owner_id, limit=limit)
    return {"refreshed": outcome.success, "message": outcome.message, "results": outcome.results}


# ---------- admin ----------

@app.post("/admin/tenders/sync", dependencies=[Depends(require_admin)])
async def sync_tenders(
    page: int = Query(1, ge=1),
    page_size: int = Query(settings.tender_sync_page_size, ge=1, le=100),
    session: AsyncSession = Depends(get_async_session),
    services: Services = Depends(get_services),
):
    result = await services.synchronizer.sync(session, page=page, page_size=page_size)
    return result.to_dict()


# ---------- ops ----------

@app.get("/healthz")
async def healthz():
    ok = {"database": False, "redis": False}
    try:
        await asyncio.wait_for(db.ping(), timeout=2.0)
        ok["database"] = True
    except Exception:
        logger.exception("Database ping failed")
    try:
        await asyncio.wait_for(get_redis().ping(), timeout=2.0)
        ok["redis"] = True
    except Exception:
        logger.exception("Redis ping failed")
    if settings.search_backend == "qdrant":
        ok["qdrant"] = False
        try:
            client = get_qdrant_client()
            await asyncio.wait_for(asyncio.to_thread(lambda: client.get_collections()), timeout=2.0)
            ok["qdrant"] = True
        except Exception:
            logger.exception("Qdrant health check failed")
    status = 200 if all(ok.values()) else 503
    return JSONResponse(ok, status_code=status)


@app.get("/metrics")
def metrics():
    if not settings.prometheus_enabled:
        raise HTTPException(status_code=404, detail="Metrics disabled")
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
