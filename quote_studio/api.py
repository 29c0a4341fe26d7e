"""
FastAPI surface for Quote Studio.

Exposes catalog lookup, quote creation, patching, text structuring,
revision, export and similarity search. Application errors are mapped to
HTTP status codes by type and returned in their ``to_dict()`` form.
"""

from typing import Optional
import time

from fastapi import FastAPI, Request, Query, Depends
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError

from . import __version__
from .models import (
    CreateQuoteRequest, PatchRequest, StructureRequest, RevisionResponse,
    ExportResponse, SimilarResponse
)
from .model_parser import parse_model, search_catalog
from .quotes import QuoteService
from .retry_utils import retry_manager
from .error_handler import (
    BaseApplicationError, NotFoundError, ValidationError as AppValidationError,
    ConflictError, CollaboratorError, error_handler, handle_error, create_context
)
from .logging_conf import get_logger

logger = get_logger(__name__)


def status_for(exc: BaseApplicationError) -> int:
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, AppValidationError):
        return 400
    if isinstance(exc, ConflictError):
        return 409
    if isinstance(exc, CollaboratorError):
        return 503
    return 500


def get_service(request: Request) -> QuoteService:
    app = request.app
    if app.state.service is None:
        app.state.service = QuoteService.from_config()
    return app.state.service


def create_app(service: Optional[QuoteService] = None) -> FastAPI:
    """
    Build the API application.

    Args:
        service: Quote service to serve; built from settings on first use
            when omitted
    """
    app = FastAPI(title="Quote Studio API", version=__version__)
    app.state.service = service

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(BaseApplicationError)
    async def application_error_handler(request: Request, exc: BaseApplicationError):
        status_code = status_for(exc)
        log = logger.warning if status_code < 500 or status_code == 503 else logger.error
        log(
            f"Application error in {request.method} {request.url.path}",
            error_code=exc.error_code,
            status_code=status_code,
            user_message=exc.user_message
        )
        return JSONResponse(status_code=status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        logger.warning(
            f"Validation error in {request.method} {request.url.path}",
            errors=str(exc.errors())
        )
        validation_error = AppValidationError(
            field="request",
            value=str(exc.errors()),
            constraint="Request validation failed",
            suggestion="Please check your request format and try again"
        )
        return JSONResponse(status_code=400, content=validation_error.to_dict())

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        app_error = handle_error(exc, create_context(operation=f"{request.method} {request.url.path}"))
        return JSONResponse(status_code=500, content=app_error.to_dict())

    @app.middleware("http")
    async def timing_middleware(request: Request, call_next):
        start_time = time.time()
        response = await call_next(request)
        logger.debug(
            "Request completed",
            method=request.method,
            path=str(request.url.path),
            status_code=response.status_code,
            process_time=f"{time.time() - start_time:.3f}s"
        )
        return response

    @app.get("/api/health")
    async def health_check(request: Request):
        retry = request.app.state.service.retry if request.app.state.service else retry_manager
        return {
            "status": "healthy",
            "version": __version__,
            "errors": error_handler.get_error_stats()["error_counts"],
            "circuit_breakers": retry.get_status()["circuit_breakers"],
        }

    @app.get("/api/catalog")
    async def catalog(q: str = Query("", description="Filter text")):
        return [model.model_dump(mode="json", by_alias=True) for model in search_catalog(q)]

    @app.get("/api/models/parse")
    async def parse_catalog_key(raw: str = Query(..., min_length=1)):
        return parse_model(raw).model_dump(mode="json", by_alias=True)

    @app.post("/api/quotes", status_code=201)
    async def create_quote(body: CreateQuoteRequest, svc: QuoteService = Depends(get_service)):
        quote = await svc.create_quote(body.model_key, client=body.client, owner=body.owner)
        return quote.to_document()

    @app.get("/api/quotes")
    async def list_quotes(limit: int = Query(50, ge=1, le=200), svc: QuoteService = Depends(get_service)):
        return [quote.to_document() for quote in await svc.list_quotes(limit)]

    @app.get("/api/quotes/{quote_id}")
    async def get_quote(quote_id: str, svc: QuoteService = Depends(get_service)):
        return (await svc.get_quote(quote_id)).to_document()

    @app.post("/api/quotes/{quote_id}/patch")
    async def patch_quote(quote_id: str, body: PatchRequest, svc: QuoteService = Depends(get_service)):
        return (await svc.apply_patch(quote_id, body.operations)).to_document()

    @app.post("/api/quotes/{quote_id}/structure")
    async def structure_text(quote_id: str, body: StructureRequest, svc: QuoteService = Depends(get_service)):
        result = await svc.structure_text(quote_id, body.text, apply=body.apply)
        return result.model_dump(mode="json", by_alias=True)

    @app.post("/api/quotes/{quote_id}/revision")
    async def request_revision(quote_id: str, svc: QuoteService = Depends(get_service)):
        revised = await svc.request_revision(quote_id)
        return RevisionResponse(quote_id=revised.id, quote_no=revised.quote_no).model_dump(by_alias=True)

    @app.post("/api/quotes/{quote_id}/export")
    async def export_quote(quote_id: str, svc: QuoteService = Depends(get_service)):
        exported = await svc.export(quote_id)
        return ExportResponse(
            quote_id=exported.id,
            pdf_url=exported.pdf_url,
            png_url=exported.png_url,
            status=exported.status,
        ).model_dump(mode="json", by_alias=True)

    @app.get("/api/similar")
    async def similar_quotes(
        q: str = Query(""),
        limit: Optional[int] = Query(None, ge=1, le=50),
        svc: QuoteService = Depends(get_service)
    ):
        items = await svc.find_similar(q, limit)
        return SimilarResponse(items=items).model_dump(mode="json", by_alias=True)

    return app
