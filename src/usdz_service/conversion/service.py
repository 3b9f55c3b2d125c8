import asyncio
import logging
from pathlib import Path, PurePosixPath
from typing import Awaitable, Callable

from .adapters import LocalWorkspace
from .errors import InvalidRequestError, StorageNotConfiguredError, UploadTooLargeError
from .interfaces import ConversionResult, ConverterGateway, StorageGateway

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = frozenset({".gltf", ".glb"})
MODELS_PREFIX = "models/"
CHUNK = 1024 * 1024


class ConversionMode:
    LOCAL = "local"
    CLOUD = "cloud"

    ALL = (LOCAL, CLOUD)


def check_extension(name: str) -> None:
    ext = PurePosixPath(name).suffix.lower()
    if ext not in ALLOWED_EXTENSIONS:
        raise InvalidRequestError(f"Unsupported file type '{ext or name}'; expected .gltf or .glb")


def normalize_object_name(filename: str) -> str:
    """Place the object under the ``models/`` prefix and reject path escapes."""
    name = filename.strip().lstrip("/")
    if not name.startswith(MODELS_PREFIX):
        name = f"{MODELS_PREFIX}{name}"
    # Check raw segments: PurePosixPath collapses "." and "//".
    if any(p in {"", ".", ".."} for p in name.split("/")):
        raise InvalidRequestError(f"invalid object name: {filename!r}")
    return name


class ConversionService:
    """Core domain service for glTF to USDZ conversion requests.

    This service is framework-agnostic. It owns the request workflow while
    delegating disk layout, storage and the external converter to gateways.
    In ``local`` mode results stay on disk for later download; in ``cloud``
    mode the working directory is always removed after the request.
    """

    def __init__(
        self,
        workspace: LocalWorkspace,
        converter: ConverterGateway,
        storage: StorageGateway | None = None,
        *,
        mode: str = ConversionMode.CLOUD,
        max_upload_mb: int = 50,
    ) -> None:
        if mode not in ConversionMode.ALL:
            raise ValueError(f"unknown conversion mode: {mode!r}")
        self._workspace = workspace
        self._converter = converter
        self._storage = storage
        self._mode = mode
        self._max_upload_mb = max_upload_mb

    @property
    def mode(self) -> str:
        return self._mode

    @property
    def workspace(self) -> LocalWorkspace:
        return self._workspace

    @property
    def storage(self) -> StorageGateway | None:
        return self._storage

    async def convert_upload(
        self,
        filename: str,
        reader: Callable[[int], Awaitable[bytes]],
    ) -> ConversionResult:
        """Persist an uploaded model, convert it, and keep the result on disk."""
        base_name = PurePosixPath(filename.replace("\\", "/")).name
        if not base_name:
            raise InvalidRequestError("You must upload a .gltf or .glb file in the 'file' form field")
        check_extension(base_name)

        request_id, request_dir = self._workspace.new_request()
        input_path = request_dir / base_name

        size_bytes = 0
        max_bytes = self._max_upload_mb * 1024 * 1024
        with input_path.open("wb") as f_out:
            while True:
                chunk = await reader(CHUNK)
                if not chunk:
                    break
                size_bytes += len(chunk)
                if size_bytes > max_bytes:
                    f_out.close()
                    self._workspace.remove(request_dir)
                    raise UploadTooLargeError(f"upload exceeds {self._max_upload_mb} MB")
                f_out.write(chunk)

        logger.info(f"Converting file {base_name} ({size_bytes} bytes) for request {request_id}...")
        name = await asyncio.to_thread(self._converter.convert_to_usdz, str(input_path))
        return ConversionResult(id=request_id, name=name, output_path=request_dir / name)

    async def convert_object(self, filename: str | None) -> ConversionResult:
        """Download a bucket object, convert it, upload the result beside it and sign a URL."""
        if not filename or not filename.strip():
            raise InvalidRequestError("You must provide a 'filename' form field pointing to the object in GCS")
        object_name = normalize_object_name(filename)
        check_extension(object_name)
        if self._storage is None or not self._storage.configured:
            raise StorageNotConfiguredError()

        request_id, request_dir = self._workspace.new_request()
        try:
            source = PurePosixPath(object_name)
            local_dir = request_dir.joinpath(*source.parent.parts)
            local_dir.mkdir(parents=True, exist_ok=True)
            dest_path = local_dir / source.name

            logger.info(f"Downloading {object_name} to {dest_path}")
            await asyncio.to_thread(self._storage.download, object_name, str(dest_path))

            logger.info(f"Converting file {object_name}...")
            name = await asyncio.to_thread(self._converter.convert_to_usdz, str(dest_path))

            output_path = local_dir / name
            dest_object = str(source.parent / name)
            logger.info(f"Uploading converted file {output_path} as {dest_object}")
            await asyncio.to_thread(self._storage.upload, str(output_path), dest_object)
            uploaded_url = await asyncio.to_thread(self._storage.signed_url, dest_object)

            return ConversionResult(
                id=request_id,
                name=name,
                output_path=output_path,
                uploaded_url=uploaded_url,
                object_path=dest_object,
            )
        finally:
            self._workspace.remove(request_dir)

    def locate_result(self, request_id: str, name: str) -> Path:
        return self._workspace.resolve_result(request_id, name)
