class ConversionError(Exception):
    """Base error for a failed conversion request.

    `message` is safe to return to the caller; it never carries local paths.
    """

    kind = "conversion_error"
    status_code = 500

    def __init__(self, message: str = "Conversion failed") -> None:
        super().__init__(message)
        self.message = message


class BadRequest(ConversionError):
    kind = "bad_request"
    status_code = 400


class NotFound(ConversionError):
    kind = "not_found"
    status_code = 404


class TransferError(ConversionError):
    kind = "transfer_error"


class ConversionTimeout(ConversionError):
    kind = "timeout"
    status_code = 504


class SpawnError(ConversionError):
    kind = "spawn_error"


class EngineFailure(ConversionError):
    kind = "engine_failure"

    def __init__(self, exit_code: int) -> None:
        super().__init__(f"LibreOffice exited with code {exit_code}")
        self.exit_code = exit_code


class OutputMissing(ConversionError):
    kind = "output_missing"


class ServiceBusy(ConversionError):
    kind = "busy"
    status_code = 503
