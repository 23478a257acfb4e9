"""Full error hierarchy for photorelay.

Every public error class inherits from PhotoRelayError. Each carries a
machine-readable ``code`` (from :class:`ErrorCode`), a human-readable
``message``, an optional structured ``context`` dict, and an optional
``cause`` (chained exception).

Error codes are defined as a :class:`str` enum so that they serialise
naturally to JSON (the relay puts them in its error bodies) and can be
matched with simple ``==`` comparisons.  The same codes double as the
``error`` kind recorded on a failed :class:`~photorelay.models.UploadResult`.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

# ---------------------------------------------------------------------------
# Error code enum
# ---------------------------------------------------------------------------

class ErrorCode(str, Enum):
    """Machine-readable codes for every failure the pipeline can report."""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_TYPE = "INVALID_TYPE"
    TOO_LARGE = "TOO_LARGE"
    EMPTY_FILE = "EMPTY_FILE"
    NO_FILE_PROVIDED = "NO_FILE_PROVIDED"
    ENCODING_ERROR = "ENCODING_ERROR"
    TRANSPORT_ERROR = "TRANSPORT_ERROR"
    STORE_ERROR = "STORE_ERROR"
    RESPONSE_CONTRACT_ERROR = "RESPONSE_CONTRACT_ERROR"
    RELAY_ERROR = "RELAY_ERROR"
    ABANDONED = "ABANDONED"

    @classmethod
    def parse(cls, value: Any) -> ErrorCode | None:
        """Return the member whose value is *value*, or ``None``."""
        try:
            return cls(value)
        except ValueError:
            return None


# ---------------------------------------------------------------------------
# Base error
# ---------------------------------------------------------------------------

class PhotoRelayError(Exception):
    """Base exception for all photorelay errors.

    Parameters
    ----------
    code:
        A value from :class:`ErrorCode` (or any string) identifying the
        error category.
    message:
        A developer-friendly description of what went wrong.
    context:
        Arbitrary structured data providing extra diagnostic detail.
        Keys and expected types are documented per subclass.
    cause:
        The underlying exception, if this error wraps another.
    """

    def __init__(
        self,
        code: str,
        message: str,
        context: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        self.code: str = code
        self.message: str = message
        self.context: dict[str, Any] = context or {}
        self.cause: Exception | None = cause
        super().__init__(message)
        if cause is not None:
            self.__cause__ = cause

    def __repr__(self) -> str:
        ctx = f", context={self.context!r}" if self.context else ""
        return f"{type(self).__name__}(code={self.code!r}, message={self.message!r}{ctx})"


# ---------------------------------------------------------------------------
# Validation errors
# ---------------------------------------------------------------------------

class PhotoRelayValidationError(PhotoRelayError):
    """Base class for candidate files that fail the validation rules.

    Context keys: ``file_name``, plus rule-specific keys per subclass.
    """

    def __init__(
        self,
        code: str = ErrorCode.VALIDATION_ERROR,
        message: str = "Validation error",
        context: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(
            code=code,
            message=message,
            context=context,
            cause=cause,
        )


class PhotoRelayInvalidTypeError(PhotoRelayValidationError):
    """The file's MIME type does not start with ``image/``.

    Context keys: ``file_name``, ``mime_type``.
    """

    def __init__(
        self,
        message: str,
        context: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(
            code=ErrorCode.INVALID_TYPE,
            message=message,
            context=context,
            cause=cause,
        )


class PhotoRelayTooLargeError(PhotoRelayValidationError):
    """The file exceeds the maximum accepted size.

    Context keys: ``file_name``, ``size_bytes``, ``max_bytes``.
    """

    def __init__(
        self,
        message: str,
        context: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(
            code=ErrorCode.TOO_LARGE,
            message=message,
            context=context,
            cause=cause,
        )


class PhotoRelayEmptyFileError(PhotoRelayValidationError):
    """The file has no content.

    Context keys: ``file_name``, ``size_bytes``.
    """

    def __init__(
        self,
        message: str,
        context: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(
            code=ErrorCode.EMPTY_FILE,
            message=message,
            context=context,
            cause=cause,
        )


class PhotoRelayNoFileError(PhotoRelayValidationError):
    """The relay request carried no ``file`` field at all.

    Context keys: ``field``.
    """

    def __init__(
        self,
        message: str,
        context: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(
            code=ErrorCode.NO_FILE_PROVIDED,
            message=message,
            context=context,
            cause=cause,
        )


_VALIDATION_ERRORS: dict[str, type[PhotoRelayValidationError]] = {
    ErrorCode.INVALID_TYPE: PhotoRelayInvalidTypeError,
    ErrorCode.TOO_LARGE: PhotoRelayTooLargeError,
    ErrorCode.EMPTY_FILE: PhotoRelayEmptyFileError,
    ErrorCode.NO_FILE_PROVIDED: PhotoRelayNoFileError,
}


def validation_error_for(
    code: str,
    message: str,
    context: dict[str, Any] | None = None,
) -> PhotoRelayValidationError:
    """Build the validation error subclass matching *code*."""
    cls = _VALIDATION_ERRORS.get(code)
    if cls is None:
        return PhotoRelayValidationError(code=code, message=message, context=context)
    return cls(message=message, context=context)


# ---------------------------------------------------------------------------
# Encoding / transport / store errors
# ---------------------------------------------------------------------------

class PhotoRelayEncodingError(PhotoRelayError):
    """The file bytes could not be encoded for the Media Store.

    Context keys: ``file_name``, ``reason``.
    """

    def __init__(
        self,
        message: str,
        context: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(
            code=ErrorCode.ENCODING_ERROR,
            message=message,
            context=context,
            cause=cause,
        )


class PhotoRelayTransportError(PhotoRelayError):
    """A network-level failure occurred (timeout, DNS, connection refused).

    Context keys: ``url``, ``attempt``.
    """

    def __init__(
        self,
        message: str,
        context: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(
            code=ErrorCode.TRANSPORT_ERROR,
            message=message,
            context=context,
            cause=cause,
        )


class PhotoRelayStoreError(PhotoRelayError):
    """The Media Store rejected or failed the upload.

    Context keys: ``status_code``, ``public_id``, ``attempts``.
    """

    def __init__(
        self,
        message: str,
        context: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(
            code=ErrorCode.STORE_ERROR,
            message=message,
            context=context,
            cause=cause,
        )


class PhotoRelayResponseContractError(PhotoRelayError):
    """A success status arrived without the fields the caller relies on.

    Context keys: ``status_code``, ``missing_field``.
    """

    def __init__(
        self,
        message: str,
        context: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(
            code=ErrorCode.RESPONSE_CONTRACT_ERROR,
            message=message,
            context=context,
            cause=cause,
        )


class PhotoRelayRelayError(PhotoRelayError):
    """The relay answered with an error body carrying no recognised code.

    Context keys: ``status_code``, ``body``.
    """

    def __init__(
        self,
        message: str,
        context: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(
            code=ErrorCode.RELAY_ERROR,
            message=message,
            context=context,
            cause=cause,
        )
