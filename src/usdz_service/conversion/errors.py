class ConversionError(Exception):
    """Base error for the conversion workflow; carries the HTTP status to report."""

    status_code = 500


class InvalidRequestError(ConversionError):
    status_code = 400


class StorageNotConfiguredError(ConversionError):
    # Kept as 500 to match what existing clients already handle.
    status_code = 500

    def __init__(self, message: str = "GCS is not configured on this server") -> None:
        super().__init__(message)


class ConversionFailedError(ConversionError):
    status_code = 500


class UploadTooLargeError(ConversionError):
    status_code = 413


class ResultNotFoundError(ConversionError):
    status_code = 500
