"""Shared fakes and fixtures for the USDZ conversion service tests."""

from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from usdz_service import webapi
from usdz_service.conversion import ConversionFailedError, ConversionMode, ConversionService, LocalWorkspace


class FakeConverter:
    """Writes a placeholder .usdz next to the input, like usd_from_gltf does."""

    def __init__(self, produce_output: bool = True):
        self.produce_output = produce_output
        self.calls: list[str] = []

    def convert_to_usdz(self, input_path: str) -> str:
        self.calls.append(input_path)
        output = Path(input_path).with_suffix(".usdz")
        if not self.produce_output:
            raise ConversionFailedError("Failed to create USDZ file")
        output.write_bytes(b"USDZ:" + Path(input_path).read_bytes())
        return output.name


class FakeStorage:
    """In-memory bucket keyed by object name."""

    def __init__(self, objects: dict[str, bytes] | None = None, configured: bool = True):
        self.objects = dict(objects or {})
        self._configured = configured
        self.downloads: list[tuple[str, str]] = []
        self.uploads: list[tuple[str, str]] = []

    @property
    def configured(self) -> bool:
        return self._configured

    def download(self, object_name: str, dest_path: str) -> None:
        self.downloads.append((object_name, dest_path))
        if object_name not in self.objects:
            raise FileNotFoundError(f"No such object: {object_name}")
        Path(dest_path).write_bytes(self.objects[object_name])

    def upload(self, local_path: str, object_name: str) -> None:
        self.uploads.append((local_path, object_name))
        self.objects[object_name] = Path(local_path).read_bytes()

    def signed_url(self, object_name: str) -> str:
        return f"https://storage.googleapis.com/test-bucket/{object_name}?X-Goog-Expires=3600&X-Goog-Signature=abc"


@pytest.fixture
def converter():
    return FakeConverter()


@pytest.fixture
def storage():
    return FakeStorage({"models/chair.glb": b"glb-bytes", "models/sub/dir/lamp.gltf": b"{}"})


@pytest.fixture
def workspace(tmp_path):
    return LocalWorkspace(str(tmp_path / "files"))


@pytest.fixture
def local_service(workspace, converter):
    return ConversionService(workspace, converter, mode=ConversionMode.LOCAL, max_upload_mb=1)


@pytest.fixture
def cloud_service(workspace, converter, storage):
    return ConversionService(workspace, converter, storage, mode=ConversionMode.CLOUD)


def _client_for(service):
    webapi.app.dependency_overrides[webapi.get_service] = lambda: service
    return TestClient(webapi.app)


@pytest.fixture
def local_client(local_service):
    yield _client_for(local_service)
    webapi.app.dependency_overrides.clear()


@pytest.fixture
def cloud_client(cloud_service):
    yield _client_for(cloud_service)
    webapi.app.dependency_overrides.clear()
