"""Error taxonomy shared by the job engine and the HTTP layer.

Errors raised while serving prepare/convert/status/download propagate to the caller.
Errors hit inside a running conversion are recorded on the job instead (see
``ConversionOrchestrator``); their ``code`` ends up in ``Job.error_code``.
"""

from __future__ import annotations


class ConverterError(Exception):
    code = "converter_error"

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__


class ValidationError(ConverterError):
    code = "validation_error"


class MetadataFetchError(ConverterError):
    """Probe failed. ``reason`` is one of: exit_status, parse, timeout, not_found."""

    code = "metadata_fetch_error"

    def __init__(self, message: str, reason: str = "exit_status") -> None:
        super().__init__(message)
        self.reason = reason


class JobNotFound(ConverterError):
    code = "job_not_found"

    def __init__(self, job_id: str) -> None:
        super().__init__(f"Job not found: {job_id}")
        self.job_id = job_id


class UnsupportedFormat(ConverterError):
    code = "unsupported_format"


class ConversionError(ConverterError):
    code = "conversion_error"


class ConversionTimeout(ConversionError):
    code = "conversion_timeout"


class OutputMissing(ConversionError):
    code = "output_missing"


class DownloadNotReady(ConverterError):
    code = "download_not_ready"


class FileSystemError(ConverterError):
    """Cleanup-path only; logged by the caller, never fatal."""

    code = "filesystem_error"
