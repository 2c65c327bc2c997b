from __future__ import annotations


class ImageToolError(RuntimeError):
    pass


class ConfigurationError(ImageToolError):
    pass


class ValidationError(ImageToolError):
    def __init__(self, fields: dict[str, str]) -> None:
        self.fields = dict(fields)
        detail = "; ".join(f"{name}: {reason}" for name, reason in self.fields.items())
        super().__init__(f"Invalid arguments: {detail}")


class InvalidPromptError(ImageToolError):
    pass


class InputFileNotFoundError(ImageToolError, FileNotFoundError):
    def __init__(self, message: str, path: str) -> None:
        super().__init__(message)
        self.path = path

    def __str__(self) -> str:
        return str(self.args[0])


class UnsupportedOperationError(ImageToolError):
    pass


class RemoteApiError(ImageToolError):
    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        retryable: bool = False,
        error_type: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.retryable = retryable
        self.error_type = error_type


class EmptyResultError(ImageToolError):
    pass


class WriteError(ImageToolError):
    pass


class UnknownToolError(ImageToolError):
    pass


RETRYABLE_HTTP_STATUSES = {429, 500, 502, 503, 504}


def is_retryable_status(status_code: int | None) -> bool:
    return status_code in RETRYABLE_HTTP_STATUSES
