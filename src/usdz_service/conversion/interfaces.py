from dataclasses import dataclass
from pathlib import Path
from typing import Protocol


class ConverterGateway(Protocol):
    def convert_to_usdz(self, input_path: str) -> str:
        """Convert the given glTF/GLB file into a sibling .usdz file synchronously.

        Returns the converted file name. This is a blocking call; callers
        should offload to threads if needed.
        """


class StorageGateway(Protocol):
    @property
    def configured(self) -> bool:
        ...

    def download(self, object_name: str, dest_path: str) -> None:
        ...

    def upload(self, local_path: str, object_name: str) -> None:
        ...

    def signed_url(self, object_name: str) -> str:
        ...


@dataclass(frozen=True)
class ConversionResult:
    id: str
    name: str
    output_path: Path
    uploaded_url: str | None = None
    object_path: str | None = None

    def to_response(self) -> dict[str, str]:
        body = {"id": self.id, "name": self.name}
        if self.uploaded_url is not None:
            body["uploadedUrl"] = self.uploaded_url
        if self.object_path is not None:
            body["objectPath"] = self.object_path
        return body
