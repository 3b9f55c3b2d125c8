import logging
import os
from pathlib import Path

from fastapi import Depends, FastAPI, File, Form, Query, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.responses import FileResponse, JSONResponse, PlainTextResponse, Response
from starlette.datastructures import Headers
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from usdz_service.conversion import (
    ConversionError,
    ConversionMode,
    ConversionService,
    GcsStorage,
    InvalidRequestError,
    LocalWorkspace,
    UsdFromGltfConverter,
)
from usdz_service.logs import configure_logging

logger = logging.getLogger(__name__)

app = FastAPI(
    title="USDZ Conversion Service",
    version=os.getenv("USDZ_SERVICE_VERSION", "0.1.0"),
    description="HTTP gateway converting glTF/GLB models to USDZ for AR viewers.",
)

# Global configuration defaults
CONVERT_MODE = os.getenv("CONVERT_MODE", ConversionMode.CLOUD).strip().lower()
FILES_FOLDER = Path(os.getenv("FILES_FOLDER", "/tmp/gltf2usdz/files"))
LOGS_FOLDER = Path(os.getenv("LOGS_FOLDER", "/tmp/gltf2usdz/logs"))
GCS_BUCKET = os.getenv("GCS_BUCKET") or None
ALLOWED_ORIGIN = os.getenv("ALLOWED_ORIGIN", "*")
STATIC_DIR = Path(os.getenv("STATIC_DIR", "./client/dist"))
CONVERTER_BIN = os.getenv("CONVERTER_BIN", "usd_from_gltf")
CONVERT_TIMEOUT_SEC = float(os.getenv("CONVERT_TIMEOUT_SEC", "300"))
MAX_UPLOAD_MB = int(os.getenv("MAX_UPLOAD_MB", "50"))

CORS_HEADERS = {
    "Access-Control-Allow-Origin": ALLOWED_ORIGIN,
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Accept",
    "Access-Control-Max-Age": "600",
}

USDZ_MEDIA_TYPE = "model/vnd.usdz+zip"

SERVICE: ConversionService | None = None


def build_service() -> ConversionService:
    storage = GcsStorage.from_env(GCS_BUCKET) if CONVERT_MODE == ConversionMode.CLOUD else None
    return ConversionService(
        workspace=LocalWorkspace(str(FILES_FOLDER)),
        converter=UsdFromGltfConverter(CONVERTER_BIN, timeout_sec=CONVERT_TIMEOUT_SEC),
        storage=storage,
        mode=CONVERT_MODE,
        max_upload_mb=MAX_UPLOAD_MB,
    )


def get_service() -> ConversionService:
    if SERVICE is None:
        raise RuntimeError("conversion service is not initialized")
    return SERVICE


@app.on_event("startup")
async def _startup() -> None:
    FILES_FOLDER.mkdir(parents=True, exist_ok=True)
    configure_logging(LOGS_FOLDER)
    global SERVICE
    SERVICE = build_service()
    logger.info(f"USDZ conversion service started in {CONVERT_MODE} mode; files under {FILES_FOLDER}")


def _message(status_code: int, message: str, headers: dict[str, str] | None = None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"message": message}, headers=headers)


def _current_service(request: Request) -> ConversionService | None:
    provider = request.app.dependency_overrides.get(get_service)
    return provider() if provider is not None else SERVICE


def _static_asset(request: Request) -> Path | None:
    service = _current_service(request)
    if service is None or service.mode != ConversionMode.LOCAL:
        return None
    root = STATIC_DIR.resolve()
    candidate = (root / request.url.path.lstrip("/")).resolve()
    if not candidate.is_relative_to(root):
        return None
    if candidate.is_dir():
        candidate = candidate / "index.html"
    return candidate if candidate.is_file() else None


class BodyTooLargeError(Exception):
    pass


class BodySizeLimitMiddleware:
    """Reject request bodies over ``MAX_UPLOAD_MB`` while they stream in.

    Chunked requests carry no Content-Length, so bytes are counted as the
    app receives them. Once the cap is passed, the app's own response is
    dropped and a 413 is sent instead.
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        max_bytes = MAX_UPLOAD_MB * 1024 * 1024
        length = Headers(scope=scope).get("content-length")
        if length and length.isdigit() and int(length) > max_bytes:
            await self._reject(scope, receive, send)
            return

        received = 0
        exceeded = False
        response_started = False

        async def limited_receive() -> Message:
            nonlocal received, exceeded
            message = await receive()
            if message["type"] == "http.request":
                received += len(message.get("body", b""))
                if received > max_bytes:
                    exceeded = True
                    raise BodyTooLargeError(f"request body exceeds {MAX_UPLOAD_MB} MB")
            return message

        async def guarded_send(message: Message) -> None:
            nonlocal response_started
            if exceeded:
                return
            if message["type"] == "http.response.start":
                response_started = True
            await send(message)

        try:
            await self.app(scope, limited_receive, guarded_send)
        except Exception:
            if not exceeded:
                raise
        if exceeded and not response_started:
            await self._reject(scope, receive, send)

    async def _reject(self, scope: Scope, receive: Receive, send: Send) -> None:
        logger.warning(f"{scope['method']} {scope['path']} rejected: request body exceeds {MAX_UPLOAD_MB} MB")
        response = _message(413, f"request body exceeds {MAX_UPLOAD_MB} MB", headers=CORS_HEADERS)
        await response(scope, receive, send)


@app.middleware("http")
async def _cors_and_request_log(request: Request, call_next):
    logger.info(f"[req] {request.method} {request.url.path}")
    logger.info(f"  content-type: {request.headers.get('content-type')}")
    logger.info(f"  content-length: {request.headers.get('content-length')}")
    for k, v in request.headers.items():
        if k.lower() == "authorization":
            continue
        logger.debug(f"  hdr: {k}: {v}")

    if request.method == "OPTIONS":
        return Response(status_code=204, headers=CORS_HEADERS)

    response = await call_next(request)
    response.headers.update(CORS_HEADERS)
    return response


app.add_middleware(BodySizeLimitMiddleware)


@app.exception_handler(ConversionError)
async def _conversion_error(request: Request, exc: ConversionError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(str(exc))
    else:
        logger.warning(f"{request.method} {request.url.path} rejected: {exc}")
    return _message(exc.status_code, str(exc))


@app.exception_handler(StarletteHTTPException)
async def _http_error(request: Request, exc: StarletteHTTPException) -> Response:
    # Unmatched GETs fall through to the frontend bundle in local mode.
    if exc.status_code == 404 and request.method in {"GET", "HEAD"}:
        asset = _static_asset(request)
        if asset is not None:
            return FileResponse(asset)
    return _message(exc.status_code, str(exc.detail), headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    detail = "; ".join(
        f"{'.'.join(str(p) for p in err.get('loc', ()) if p not in {'body', 'query'})}: {err.get('msg')}"
        for err in errors
    )
    logger.warning(f"{request.method} {request.url.path} invalid request: {detail}")
    return _message(400, f"Invalid request: {detail}" if detail else "Invalid request")


@app.get("/healthz", response_class=PlainTextResponse)
def healthz() -> str:
    """Liveness check."""
    return "ok"


@app.post("/api/convert")
async def convert(
    file: UploadFile | None = File(None),
    filename: str | None = Form(None),
    service: ConversionService = Depends(get_service),
) -> JSONResponse:
    """Convert a glTF/GLB model to USDZ.

    In local mode accepts multipart/form-data with a binary part named "file"
    and returns ``{id, name}``; the result is fetched from /api/download.
    In cloud mode accepts a "filename" field naming an object in the bucket
    and returns ``{id, name, uploadedUrl, objectPath}``.
    """
    try:
        if service.mode == ConversionMode.LOCAL:
            if file is None or not file.filename:
                raise InvalidRequestError("You must upload a .gltf or .glb file in the 'file' form field")
            result = await service.convert_upload(file.filename, file.read)
        else:
            result = await service.convert_object(filename)
    except ConversionError:
        raise
    except Exception as e:
        logger.exception(f"Conversion failed: {e}")
        return _message(500, str(e))
    return JSONResponse(content=result.to_response())


@app.get("/api/download")
async def download(
    request_id: str = Query(..., alias="id"),
    name: str = Query(...),
    service: ConversionService = Depends(get_service),
) -> FileResponse:
    """Stream a converted file kept by a local-mode request."""
    if service.mode != ConversionMode.LOCAL:
        raise StarletteHTTPException(status_code=404, detail="Not Found")
    path = service.locate_result(request_id, name)
    return FileResponse(path, media_type=USDZ_MEDIA_TYPE, filename=name)


def run() -> None:
    """Run the ASGI server using uvicorn.

    Exposes the app at host:port (default 0.0.0.0:8080). Set PORT env var to override.
    """
    import uvicorn

    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", "8080"))
    reload = os.getenv("RELOAD", "false").lower() in {"1", "true", "yes", "on"}

    uvicorn.run("usdz_service.webapi:app", host=host, port=port, reload=reload)


if __name__ == "__main__":
    run()
