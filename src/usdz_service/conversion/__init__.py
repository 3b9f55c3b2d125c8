"""
Domain layer for glTF/GLB to USDZ conversion.
Provides gateways for the external converter and cloud storage plus a
service that runs one conversion request, so front-ends (HTTP or others)
share the same core logic.
"""

from .adapters import GcsStorage, LocalWorkspace, UsdFromGltfConverter
from .errors import (
    ConversionError,
    ConversionFailedError,
    InvalidRequestError,
    ResultNotFoundError,
    StorageNotConfiguredError,
    UploadTooLargeError,
)
from .interfaces import ConversionResult, ConverterGateway, StorageGateway
from .service import ConversionMode, ConversionService
