"""Custom exceptions for LumiScan."""

from typing import Optional


class LumiscanError(Exception):
    """Base exception for all application errors.

    Attributes:
        message: Human-readable error description
        error_code: Optional error code for programmatic handling
    """

    def __init__(self, message: str, error_code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.error_code = error_code

    def __str__(self) -> str:
        if self.error_code:
            return f"[{self.error_code}] {self.message}"
        return self.message


class ConfigurationError(LumiscanError):
    """Error in configuration or settings.

    Attributes:
        config_key: The configuration key that caused the error (if applicable)
    """

    def __init__(self, message: str, config_key: Optional[str] = None):
        super().__init__(message, error_code="CONFIG_ERROR")
        self.config_key = config_key


class ImageDecodeError(LumiscanError):
    """Image bytes could not be decoded.

    Attributes:
        size: Number of bytes that were handed to the decoder
    """

    def __init__(self, message: str, size: Optional[int] = None):
        super().__init__(message, error_code="DECODE_ERROR")
        self.size = size

    def __str__(self) -> str:
        if self.size is not None:
            return f"{super().__str__()} ({self.size} bytes)"
        return super().__str__()


class OCRError(LumiscanError):
    """Error during OCR engine construction or recognition.

    Attributes:
        engine: Name of the engine that failed (if known)
    """

    def __init__(self, message: str, engine: Optional[str] = None):
        super().__init__(message, error_code="OCR_ERROR")
        self.engine = engine


class AdvisorError(LumiscanError):
    """Error talking to the external advisor.

    Attributes:
        host: Advisor endpoint (if applicable)
    """

    def __init__(self, message: str, host: Optional[str] = None):
        super().__init__(message, error_code="ADVISOR_ERROR")
        self.host = host


class ValidationError(LumiscanError):
    """Error validating inputs or parameters.

    Attributes:
        field: The field that failed validation (if applicable)
    """

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message, error_code="VALIDATION_ERROR")
        self.field = field


class WorkerError(LumiscanError):
    """Error in a scheduled job worker.

    Attributes:
        group_id: The job group that encountered the error (if applicable)
    """

    def __init__(self, message: str, group_id: Optional[str] = None):
        super().__init__(message, error_code="WORKER_ERROR")
        self.group_id = group_id
