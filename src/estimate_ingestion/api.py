"""FastAPI application for estimate spreadsheet ingestion."""

import uuid
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Annotated, Any

from fastapi import (
    FastAPI,
    File,
    Form,
    HTTPException,
    Request,
    UploadFile,
    status,
)
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from estimate_ingestion import __version__
from estimate_ingestion.config import settings, validate_settings_on_startup
from estimate_ingestion.models import (
    BuilderEstimate,
    ConvertRequest,
    ErrorDetail,
    ExcelParseResult,
    HealthResponse,
)
from estimate_ingestion.pipeline import EstimateParser
from estimate_ingestion.preview import apply_edits
from estimate_ingestion.services.builder_converter import BuilderConverter
from estimate_ingestion.services.format_detector import XLSX_MIME
from estimate_ingestion.services.template_generator import generate_template
from estimate_ingestion.utils.exceptions import ErrorCode, EstimateIngestionError
from estimate_ingestion.utils.logging import (
    clear_context,
    configure_logging,
    get_logger,
    get_request_id,
    set_request_id,
)

# Configure structured logging using settings
configure_logging(
    level=settings.log_level_int,
    use_structured_formatter=True,
)
logger = get_logger(__name__)

TEMPLATE_FILENAME = "estimate-template.xlsx"


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> Any:
        parser = EstimateParser(settings)
        app.state.parser = parser
        app.state.converter = BuilderConverter(parser.normalizer)
        try:
            yield
        finally:
            app.state.parser = None
            app.state.converter = None

    app = FastAPI(
        title="Estimate Ingestion API",
        description=(
            "Reads contractor estimate spreadsheets, extracts and reconciles "
            "line items, and converts approved results for the estimate builder."
        ),
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # Configure CORS using settings
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Validate settings on startup
    validate_settings_on_startup(settings)

    @app.middleware("http")
    async def request_id_middleware(request: Request, call_next: Any) -> Any:
        """Assign a request ID, expose it in logs and the response headers."""
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
        set_request_id(request_id)
        request.state.request_id = request_id

        try:
            response = await call_next(request)
            response.headers["X-Request-ID"] = request_id
            return response
        finally:
            clear_context()

    def error_response(
        request: Request,
        status_code: int,
        detail: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> JSONResponse:
        body = ErrorDetail(
            detail=detail,
            error_code=error_code,
            details=details or None,
            request_id=getattr(request.state, "request_id", get_request_id()),
        )
        return JSONResponse(
            status_code=status_code,
            content=body.model_dump(mode="json", exclude_none=True),
        )

    @app.exception_handler(EstimateIngestionError)
    async def ingestion_exception_handler(
        request: Request, exc: EstimateIngestionError
    ) -> JSONResponse:
        status_code = exc.get_http_status()
        logger.warning(
            f"Ingestion error: {exc.message}",
            error_code=exc.error_code.value,
            http_status=status_code,
        )
        return error_response(
            request,
            status_code,
            exc.message,
            error_code=exc.error_code.value,
            details=exc.details,
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(
        request: Request, exc: HTTPException
    ) -> JSONResponse:
        logger.warning(f"HTTP error: {exc.detail}", status_code=exc.status_code)
        return error_response(request, exc.status_code, str(exc.detail))

    @app.exception_handler(Exception)
    async def general_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        """Log the traceback; only debug mode reveals the exception text."""
        logger.exception(
            f"Unexpected error: {type(exc).__name__}",
            error_type=type(exc).__name__,
        )
        detail = (
            f"Internal server error: {type(exc).__name__}: {exc}"
            if settings.debug
            else "Internal server error. Please try again later."
        )
        return error_response(
            request,
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail,
            error_code=ErrorCode.UNEXPECTED_ERROR.value,
        )

    @app.get("/health", response_model=HealthResponse, tags=["Health"])
    async def health_check() -> HealthResponse:
        """Report liveness and the service version."""
        return HealthResponse(
            status="healthy",
            timestamp=datetime.now(UTC).isoformat(),
            version=__version__,
        )

    @app.post(
        "/estimates/parse",
        response_model=ExcelParseResult,
        tags=["Estimates"],
        responses={
            400: {"model": ErrorDetail, "description": "Not a readable spreadsheet"},
            404: {"model": ErrorDetail, "description": "Requested sheet not found"},
            413: {"model": ErrorDetail, "description": "File too large"},
            422: {"model": ErrorDetail, "description": "No header row found"},
        },
    )
    async def parse_estimate(
        request: Request,
        file: Annotated[UploadFile, File(description="Estimate spreadsheet")],
        sheet_name: Annotated[
            str | None, Form(description="Worksheet to parse (optional)")
        ] = None,
    ) -> ExcelParseResult:
        """Parse an uploaded estimate spreadsheet for preview.

        The result carries every extracted line item, the reconciled
        summary and one diagnostic per skipped or suspicious row. Results
        with ERROR diagnostics cannot be converted until those rows are
        fixed or excluded.
        """
        parser: EstimateParser = request.app.state.parser
        content = await file.read()
        logger.info(
            "Estimate upload received",
            file_name=file.filename,
            file_size=len(content),
        )
        return await run_in_threadpool(
            parser.parse, content, file.filename or None, sheet_name or None
        )

    @app.post(
        "/estimates/convert",
        response_model=BuilderEstimate,
        tags=["Estimates"],
        responses={
            409: {"model": ErrorDetail, "description": "Result has ERROR diagnostics"},
        },
    )
    async def convert_estimate(
        request: Request, body: ConvertRequest
    ) -> BuilderEstimate:
        """Convert an approved parse result for the estimate builder.

        Rows listed in `excluded_rows` are dropped and `category_overrides`
        applied before conversion.
        """
        parser: EstimateParser = request.app.state.parser
        converter: BuilderConverter = request.app.state.converter
        result = apply_edits(
            body.result,
            excluded_rows=body.excluded_rows,
            category_overrides=body.category_overrides,
            normalizer=parser.normalizer,
            reconciler=parser.reconciler,
        )
        return converter.convert(result)

    @app.get(
        "/estimates/template",
        tags=["Estimates"],
        response_class=Response,
        responses={200: {"content": {XLSX_MIME: {}}}},
    )
    async def download_template() -> Response:
        """Download a blank estimate template."""
        return Response(
            content=generate_template(),
            media_type=XLSX_MIME,
            headers={
                "Content-Disposition": f'attachment; filename="{TEMPLATE_FILENAME}"'
            },
        )

    logger.info("FastAPI application created successfully")
    return app


# Create the application instance
app = create_app()
