"""gRPC status errors and conversion of arbitrary exceptions to statuses."""

from __future__ import annotations

import asyncio
import concurrent.futures
from typing import Optional, Union

import grpc

_CODE_NAMES = {
    grpc.StatusCode.OK: "OK",
    grpc.StatusCode.CANCELLED: "Canceled",
    grpc.StatusCode.UNKNOWN: "Unknown",
    grpc.StatusCode.INVALID_ARGUMENT: "InvalidArgument",
    grpc.StatusCode.DEADLINE_EXCEEDED: "DeadlineExceeded",
    grpc.StatusCode.NOT_FOUND: "NotFound",
    grpc.StatusCode.ALREADY_EXISTS: "AlreadyExists",
    grpc.StatusCode.PERMISSION_DENIED: "PermissionDenied",
    grpc.StatusCode.RESOURCE_EXHAUSTED: "ResourceExhausted",
    grpc.StatusCode.FAILED_PRECONDITION: "FailedPrecondition",
    grpc.StatusCode.ABORTED: "Aborted",
    grpc.StatusCode.OUT_OF_RANGE: "OutOfRange",
    grpc.StatusCode.UNIMPLEMENTED: "Unimplemented",
    grpc.StatusCode.INTERNAL: "Internal",
    grpc.StatusCode.UNAVAILABLE: "Unavailable",
    grpc.StatusCode.DATA_LOSS: "DataLoss",
    grpc.StatusCode.UNAUTHENTICATED: "Unauthenticated",
}

_CANCELLED_ERRORS = (
    asyncio.CancelledError,
    concurrent.futures.CancelledError,
    grpc.FutureCancelledError,
)
_DEADLINE_ERRORS = (
    TimeoutError,
    asyncio.TimeoutError,
    concurrent.futures.TimeoutError,
    grpc.FutureTimeoutError,
)


def _status_code_from_int(number: int) -> Optional[grpc.StatusCode]:
    for code in grpc.StatusCode:
        if code.value[0] == number:
            return code
    return None


def code_name(code: Union[grpc.StatusCode, int]) -> str:
    """Return the canonical CamelCase name of a status code, e.g. ``FailedPrecondition``."""
    if isinstance(code, grpc.StatusCode):
        return _CODE_NAMES[code]
    resolved = _status_code_from_int(code)
    if resolved is None:
        return f"Code({code})"
    return _CODE_NAMES[resolved]


class StatusError(grpc.RpcError):
    """An error carrying a gRPC status code and message."""

    def __init__(self, code: Union[grpc.StatusCode, int], message: str) -> None:
        if not isinstance(code, grpc.StatusCode):
            resolved = _status_code_from_int(code)
            if resolved is None:
                raise ValueError(f"unknown status code {code!r}")
            code = resolved
        super().__init__(message)
        self._code = code
        self._details = message

    def code(self) -> grpc.StatusCode:
        return self._code

    def details(self) -> str:
        return self._details

    def __str__(self) -> str:
        return f"rpc error: code = {code_name(self._code)} desc = {self._details}"

    def __repr__(self) -> str:
        return f"StatusError({self._code!r}, {self._details!r})"


def _chain(err: BaseException):
    seen = set()
    current: Optional[BaseException] = err
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        current = current.__cause__


def _carries_status(err: BaseException) -> bool:
    return isinstance(err, grpc.RpcError) and callable(getattr(err, "code", None))


def from_error(err: Optional[BaseException]) -> StatusError:
    """Return the status of ``err``.

    ``None`` maps to ``OK``. Errors carrying a gRPC status (directly or as the
    cause of the raised error) keep their code; cancellation and timeout
    errors become ``CANCELLED`` and ``DEADLINE_EXCEEDED``; anything else is
    ``UNKNOWN``.
    """
    if err is None:
        return StatusError(grpc.StatusCode.OK, "")
    if isinstance(err, StatusError):
        return err
    for link in _chain(err):
        if _carries_status(link):
            code = link.code()
            if link is err:
                details = link.details() if callable(getattr(link, "details", None)) else None
                return StatusError(code, details or "")
            return StatusError(code, str(err))
    for link in _chain(err):
        if isinstance(link, _CANCELLED_ERRORS):
            return StatusError(grpc.StatusCode.CANCELLED, str(err))
        if isinstance(link, _DEADLINE_ERRORS):
            return StatusError(grpc.StatusCode.DEADLINE_EXCEEDED, str(err))
    return StatusError(grpc.StatusCode.UNKNOWN, str(err))