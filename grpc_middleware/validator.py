"""Request validation interceptors.

Messages are checked for validation methods: ``validate_all()``,
``validate(all)`` or a plain ``validate()``. A method signals a failed
validation by raising. Invalid messages are rejected with
``INVALID_ARGUMENT``: unary requests before the handler runs, server
streaming requests before the handler runs, and client or bidirectional
stream messages as they are received.
"""

from __future__ import annotations

import functools
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Iterator, Optional, Tuple

import grpc

from grpc_middleware.status import StatusError

OnValidationErrCallback = Callable[[Any, BaseException], None]

_CO_VARARGS = 0x04


@dataclass
class ValidatorOptions:
    """Settings shared by the validation interceptors."""

    should_fail_fast: bool = False
    on_validation_err_callback: Optional[OnValidationErrCallback] = None


Option = Callable[[ValidatorOptions], None]


def _evaluate_opts(opts: Iterable[Option]) -> ValidatorOptions:
    options = ValidatorOptions()
    for opt in opts:
        opt(options)
    return options


def with_on_validation_err_callback(callback: OnValidationErrCallback) -> Option:
    """Register a function called with ``(ctx, error)`` on every validation failure."""

    def apply(options: ValidatorOptions) -> None:
        options.on_validation_err_callback = callback

    return apply


def with_fail_fast() -> Option:
    """Stop validating at the first error; ignored for messages with only a plain ``validate()``."""

    def apply(options: ValidatorOptions) -> None:
        options.should_fail_fast = True

    return apply


def _arity(method: Callable) -> Optional[Tuple[int, Optional[int], int]]:
    """Return (required positional, max positional or None, required keyword-only)."""
    func = getattr(method, "__func__", method)
    code = getattr(func, "__code__", None)
    if code is None:
        return None
    offset = 1 if func is not method else 0
    total = max(code.co_argcount - offset, 0)
    defaults = len(getattr(func, "__defaults__", None) or ())
    required = max(total - defaults, 0)
    maximum = None if code.co_flags & _CO_VARARGS else total
    kw_defaults = getattr(func, "__kwdefaults__", None) or {}
    required_kw = max(code.co_kwonlyargcount - len(kw_defaults), 0)
    return required, maximum, required_kw


def _accepts_argument(method: Callable) -> bool:
    arity = _arity(method)
    if arity is None:
        return False
    _, maximum, _ = arity
    return maximum is None or maximum >= 1


def _callable_without_arguments(method: Callable) -> bool:
    arity = _arity(method)
    if arity is None:
        return True
    required, _, required_kw = arity
    return required == 0 and required_kw == 0


def _select_check(message: Any, fail_fast: bool) -> Optional[Callable[[], Any]]:
    validate_method = getattr(message, "validate", None)
    if not callable(validate_method):
        validate_method = None
    if fail_fast:
        if validate_method is not None and _callable_without_arguments(validate_method):
            return validate_method
        if validate_method is not None and _accepts_argument(validate_method):
            return functools.partial(validate_method, False)
        return None
    validate_all = getattr(message, "validate_all", None)
    if callable(validate_all):
        return validate_all
    if validate_method is not None and _accepts_argument(validate_method):
        return functools.partial(validate_method, True)
    if validate_method is not None and _callable_without_arguments(validate_method):
        return validate_method
    return None


def validate(
    ctx: Any,
    req_or_res: Any,
    should_fail_fast: bool = False,
    on_validation_err_callback: Optional[OnValidationErrCallback] = None,
) -> None:
    """Validate a message, raising :class:`StatusError` with ``INVALID_ARGUMENT`` on failure."""
    check = _select_check(req_or_res, should_fail_fast)
    if check is None:
        return
    try:
        check()
    except Exception as err:
        if on_validation_err_callback is not None:
            on_validation_err_callback(ctx, err)
        raise StatusError(grpc.StatusCode.INVALID_ARGUMENT, str(err)) from err


def _abort_if_invalid(context: Any, message: Any, options: ValidatorOptions) -> None:
    try:
        validate(context, message, options.should_fail_fast, options.on_validation_err_callback)
    except StatusError as err:
        context.abort(err.code(), err.details())
        raise


def _validated(requests: Iterable[Any], context: Any, options: ValidatorOptions) -> Iterator[Any]:
    for request in requests:
        _abort_if_invalid(context, request, options)
        yield request


class _UnaryServerValidator(grpc.ServerInterceptor):
    def __init__(self, options: ValidatorOptions) -> None:
        self._options = options

    def intercept_service(self, continuation, handler_call_details):
        handler = continuation(handler_call_details)
        if handler is None or handler.request_streaming or handler.response_streaming:
            return handler
        behavior = handler.unary_unary
        options = self._options

        def checked(request, context):
            _abort_if_invalid(context, request, options)
            return behavior(request, context)

        return grpc.unary_unary_rpc_method_handler(
            checked,
            request_deserializer=handler.request_deserializer,
            response_serializer=handler.response_serializer,
        )


class _StreamServerValidator(grpc.ServerInterceptor):
    def __init__(self, options: ValidatorOptions) -> None:
        self._options = options

    def intercept_service(self, continuation, handler_call_details):
        handler = continuation(handler_call_details)
        if handler is None:
            return None
        options = self._options
        codec = {
            "request_deserializer": handler.request_deserializer,
            "response_serializer": handler.response_serializer,
        }
        if not handler.request_streaming and handler.response_streaming:
            unary_stream = handler.unary_stream

            def checked_unary_stream(request, context):
                _abort_if_invalid(context, request, options)
                yield from unary_stream(request, context)

            return grpc.unary_stream_rpc_method_handler(checked_unary_stream, **codec)
        if handler.request_streaming and not handler.response_streaming:
            stream_unary = handler.stream_unary

            def checked_stream_unary(request_iterator, context):
                return stream_unary(_validated(request_iterator, context, options), context)

            return grpc.stream_unary_rpc_method_handler(checked_stream_unary, **codec)
        if handler.request_streaming and handler.response_streaming:
            stream_stream = handler.stream_stream

            def checked_stream_stream(request_iterator, context):
                yield from stream_stream(_validated(request_iterator, context, options), context)

            return grpc.stream_stream_rpc_method_handler(checked_stream_stream, **codec)
        return handler


class _UnaryClientValidator(grpc.UnaryUnaryClientInterceptor):
    def __init__(self, options: ValidatorOptions) -> None:
        self._options = options

    def intercept_unary_unary(self, continuation, client_call_details, request):
        validate(
            client_call_details,
            request,
            self._options.should_fail_fast,
            self._options.on_validation_err_callback,
        )
        return continuation(client_call_details, request)


def unary_server_interceptor(*opts: Option) -> grpc.ServerInterceptor:
    """Server interceptor validating the request of unary calls."""
    return _UnaryServerValidator(_evaluate_opts(opts))


def stream_server_interceptor(*opts: Option) -> grpc.ServerInterceptor:
    """Server interceptor validating every inbound message of streaming calls."""
    return _StreamServerValidator(_evaluate_opts(opts))


def unary_client_interceptor(*opts: Option) -> grpc.UnaryUnaryClientInterceptor:
    """Client interceptor validating outgoing unary requests before they are sent."""
    return _UnaryClientValidator(_evaluate_opts(opts))