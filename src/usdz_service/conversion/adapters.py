import logging
import shutil
import subprocess
import uuid
from datetime import timedelta
from pathlib import Path, PurePosixPath

from google.cloud import storage

from .errors import ConversionFailedError, InvalidRequestError, ResultNotFoundError, StorageNotConfiguredError
from .interfaces import ConverterGateway, StorageGateway

logger = logging.getLogger(__name__)

SIGNED_URL_TTL = timedelta(hours=1)


class LocalWorkspace:
    """Per-request working directories under a single root.

    Every request gets ``<root>/<uuid4>`` so identically named uploads from
    concurrent requests never share a path.
    """

    def __init__(self, files_dir: str) -> None:
        self._base = Path(files_dir).resolve()

    @property
    def base(self) -> Path:
        return self._base

    def new_request(self) -> tuple[str, Path]:
        request_id = str(uuid.uuid4())
        request_dir = self._base / request_id
        request_dir.mkdir(parents=True, exist_ok=False)
        return request_id, request_dir

    def request_dir(self, request_id: str) -> Path:
        try:
            uuid.UUID(request_id)
        except ValueError:
            raise InvalidRequestError(f"invalid request id: {request_id!r}") from None
        return self._base / request_id

    def resolve_result(self, request_id: str, name: str) -> Path:
        if not name or name in {".", ".."} or PurePosixPath(name.replace("\\", "/")).name != name:
            raise InvalidRequestError(f"invalid file name: {name!r}")
        path = self.request_dir(request_id) / name
        if not path.is_file():
            raise ResultNotFoundError("File not found")
        return path

    def remove(self, path: Path) -> None:
        try:
            shutil.rmtree(path)
            logger.info(f"Cleaned up temporary directory {path}")
        except OSError as e:
            logger.warning(f"Failed to remove temp directory {path}: {e}")


class UsdFromGltfConverter(ConverterGateway):
    """Runs the external ``usd_from_gltf`` binary as ``<bin> <input> <output>``."""

    def __init__(self, binary: str = "usd_from_gltf", *, timeout_sec: float = 300.0) -> None:
        self._binary = binary
        self._timeout = timeout_sec

    def convert_to_usdz(self, input_path: str) -> str:
        src = Path(input_path)
        output = src.with_suffix(".usdz")
        try:
            proc = subprocess.run(
                [self._binary, str(src), str(output)],
                capture_output=True,
                text=True,
                errors="replace",
                timeout=self._timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise ConversionFailedError(f"Conversion timed out after {self._timeout:g}s") from e
        except FileNotFoundError as e:
            raise ConversionFailedError(f"Converter binary not found: {self._binary}") from e

        if proc.stderr:
            logger.warning(proc.stderr.strip())
        if proc.returncode != 0:
            logger.warning(f"{self._binary} exited with status {proc.returncode}")

        if not output.is_file():
            raise ConversionFailedError("Failed to create USDZ file")

        logger.info("File converted successfully")
        return output.name


class GcsStorage(StorageGateway):
    """Google Cloud Storage bridge bound to one bucket.

    A missing client or bucket leaves the bridge unconfigured; every
    operation then raises ``StorageNotConfiguredError``.
    """

    def __init__(self, bucket_name: str | None, client: storage.Client | None = None) -> None:
        self._bucket_name = bucket_name or None
        self._client = client

    @classmethod
    def from_env(cls, bucket_name: str | None) -> "GcsStorage":
        if not bucket_name:
            logger.info("No GCS_BUCKET configured; GCS features disabled")
            return cls(None)
        try:
            client = storage.Client()
        except Exception as e:
            logger.warning(f"Failed to initialize Google Cloud Storage client: {e}")
            return cls(bucket_name)
        logger.info(f"Google Cloud Storage client initialized for bucket {bucket_name}")
        return cls(bucket_name, client)

    @property
    def configured(self) -> bool:
        return self._client is not None and self._bucket_name is not None

    @property
    def bucket_name(self) -> str | None:
        return self._bucket_name

    def _bucket(self) -> storage.Bucket:
        if not self.configured:
            raise StorageNotConfiguredError()
        return self._client.bucket(self._bucket_name)  # type: ignore[union-attr]

    def download(self, object_name: str, dest_path: str) -> None:
        self._bucket().blob(object_name).download_to_filename(dest_path)

    def upload(self, local_path: str, object_name: str) -> None:
        self._bucket().blob(object_name).upload_from_filename(local_path)

    def signed_url(self, object_name: str) -> str:
        blob = self._bucket().blob(object_name)
        return blob.generate_signed_url(version="v4", expiration=SIGNED_URL_TTL, method="GET")
