"""FastAPI ledger gateway: form extraction and spreadsheet-backed ledger.

Proxies form photos to the vision model and appends approved records to the
shared spreadsheet. Every response, errors and preflights included, carries
the same CORS headers. Provider error text never reaches the client.
Images are processed in-memory only and never logged.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response

from config import settings
from credentials import ServiceAccountTokenSource, TokenCache
from errors import GatewayError, ServiceNotConfigured, ValidationError
from extraction import extract_from_image
from ledger import LedgerService, UpdateRequestChannel
from models import (
    AppendRequest,
    ExtractRequest,
    HealthResponse,
    UpdateRequestCreate,
)
from sheets_client import SheetsClient
from summary import summarize
from vision_client import VisionClient

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

_token_cache = TokenCache()
_token_source: ServiceAccountTokenSource | None = None
_sheets_client: SheetsClient | None = None
_vision_client: VisionClient | None = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the upstream clients once; the token cache outlives requests."""
    global _token_source, _sheets_client, _vision_client

    _token_source = ServiceAccountTokenSource(cache=_token_cache)
    _sheets_client = SheetsClient(_token_source)
    _vision_client = VisionClient()

    if not settings.ANTHROPIC_API_KEY:
        logger.warning("ANTHROPIC_API_KEY is empty, extraction requests will fail")
    if not settings.GOOGLE_SHEET_ID or not settings.GOOGLE_SERVICE_ACCOUNT_JSON:
        logger.warning("Spreadsheet is not fully configured, ledger requests will fail")

    yield

    await _vision_client.aclose()
    await _sheets_client.aclose()
    await _token_source.aclose()


app = FastAPI(title="Sign-in Sheet Ledger Gateway", version="1.0.0", lifespan=lifespan)


def cors_headers() -> dict[str, str]:
    return {
        "Access-Control-Allow-Origin": settings.ALLOWED_ORIGIN or "*",
        "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
        "Access-Control-Allow-Headers": "Content-Type",
    }


def error_response(status_code: int, message: str, code: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": message, "code": code},
    )


@app.middleware("http")
async def cors_and_fallback(request: Request, call_next):
    """Answer preflights, stamp CORS headers, and turn stray faults into 500s."""
    if request.method == "OPTIONS":
        return Response(status_code=200, headers=cors_headers())

    try:
        response = await call_next(request)
    except Exception:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        response = error_response(500, GatewayError.user_message, GatewayError.code)

    response.headers.update(cors_headers())
    return response


@app.exception_handler(GatewayError)
async def gateway_error_handler(request: Request, exc: GatewayError):
    if exc.status_code >= 500:
        logger.error("%s on %s: %s", exc.code, request.url.path, exc.detail or exc.user_message)
    else:
        logger.warning("%s on %s: %s", exc.code, request.url.path, exc.user_message)
    return error_response(exc.status_code, exc.user_message, exc.code)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if any(err.get("type") == "json_invalid" for err in errors):
        message = "Request body must be valid JSON"
    else:
        locations = sorted({
            ".".join(str(part) for part in err.get("loc", ())[1:]) or "body"
            for err in errors
        })
        message = f"Invalid request fields: {', '.join(locations)}"
    logger.warning("Rejected request to %s: %s", request.url.path, message)
    return error_response(400, message, ValidationError.code)


def _require_vision() -> VisionClient:
    if _vision_client is None:
        raise ServiceNotConfigured("Vision client is not initialized")
    return _vision_client


def _require_sheets() -> SheetsClient:
    if _sheets_client is None:
        raise ServiceNotConfigured("Sheets client is not initialized")
    return _sheets_client


def _ledger() -> LedgerService:
    return LedgerService(_require_sheets())


def _update_requests() -> UpdateRequestChannel:
    return UpdateRequestChannel(_require_sheets())


@app.post("/api/extract")
async def extract(body: ExtractRequest):
    """Extract field values from a form photo."""
    result = await extract_from_image(body, _require_vision())
    return {"success": True, "data": result.model_dump(by_alias=True)}


@app.post("/api/sheets/append")
async def sheets_append(body: AppendRequest):
    """Append an approved record (flat, or header plus worker rows) to the ledger."""
    missing = []
    if not body.data and not body.rows:
        missing.append("data")
    if not body.submitted_by:
        missing.append("submittedBy")
    if missing:
        raise ValidationError.missing(missing)

    result = await _ledger().append(
        body.submitted_by,
        data=body.data,
        header_data=body.header_data,
        rows=body.rows,
        upload_id=body.upload_id,
        file_name=body.file_name,
    )
    return {"success": True, "data": result.model_dump(by_alias=True)}


@app.get("/api/sheets/records")
async def sheets_records():
    """Return all ledger rows with the header row split out."""
    result = await _ledger().read_records()
    return {"success": True, "data": result.model_dump(by_alias=True)}


@app.post("/api/sheets/update-request")
async def sheets_update_request(body: UpdateRequestCreate):
    """File a correction request against an existing ledger row."""
    missing = [
        name
        for name, value in (
            ("originalRowNumber", body.original_row_number),
            ("requestedBy", body.requested_by),
            ("description", body.description),
        )
        if not value
    ]
    if missing:
        raise ValidationError.missing(missing)

    request_id = await _update_requests().submit(
        body.original_row_number, body.requested_by, body.description
    )
    return {"success": True, "data": {"requestId": request_id}}


@app.get("/api/sheets/update-requests")
async def sheets_update_requests():
    """List correction requests with their tab row positions."""
    requests = await _update_requests().list_requests()
    return {
        "success": True,
        "data": {"requests": [r.model_dump(by_alias=True) for r in requests]},
    }


@app.get("/api/sheets/summary")
async def sheets_summary(start: str | None = None, end: str | None = None, q: str | None = None):
    """Dashboard metrics over the records tab, optionally filtered."""
    records = await _ledger().read_records()
    requests = await _update_requests().list_requests()
    result = summarize(records, requests, start=start, end=end, query=q)
    return {"success": True, "data": result.model_dump(by_alias=True)}


@app.get("/api/health")
async def health():
    """Report which secrets are configured, never their values."""
    return HealthResponse(
        has_anthropic_key=bool(settings.ANTHROPIC_API_KEY),
        has_sheet_id=bool(settings.GOOGLE_SHEET_ID),
        has_service_account=bool(settings.GOOGLE_SERVICE_ACCOUNT_JSON),
    ).model_dump(by_alias=True)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=settings.PORT)
