"""A server stream wrapper whose context can be replaced."""

from __future__ import annotations

from typing import Any


class WrappedServerStream:
    """Wraps a server stream, overriding the context it reports.

    Every other attribute is taken from the wrapped stream. The
    ``wrapped_context`` attribute may be reassigned freely.
    """

    def __init__(self, stream: Any, wrapped_context: Any) -> None:
        self.stream = stream
        self.wrapped_context = wrapped_context

    def context(self) -> Any:
        return self.wrapped_context

    def __getattr__(self, name: str) -> Any:
        stream = self.__dict__.get("stream")
        return getattr(stream, name)


def wrap_server_stream(stream: Any) -> WrappedServerStream:
    """Wrap ``stream`` so its context can be overwritten; already wrapped streams are returned as is."""
    if isinstance(stream, WrappedServerStream):
        return stream
    return WrappedServerStream(stream, stream.context())