"""Per-call reporters that record gRPC call events into metrics."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Any, Iterable, Optional, Tuple, Union

from grpc_middleware.prometheus.collectors import CounterVec, HistogramVec, Labels
from grpc_middleware.prometheus.options import GrpcType, InterceptorConfig, Kind, Option
from grpc_middleware.status import code_name, from_error

Duration = Union[timedelta, float, int]


def _seconds(duration: Duration) -> float:
    if isinstance(duration, timedelta):
        return duration.total_seconds()
    return float(duration)


def _label(value: Union[GrpcType, str]) -> str:
    if isinstance(value, Enum):
        return str(value.value)
    return str(value)


@dataclass(frozen=True)
class CallMeta:
    """What identifies a call: its type, service and method."""

    typ: Union[GrpcType, str]
    service: str
    method: str


class Reporter:
    """Records the events of one call into client or server metrics."""

    def __init__(
        self,
        kind: Union[Kind, str],
        meta: CallMeta,
        client_metrics: Any = None,
        server_metrics: Any = None,
        exemplar: Optional[Labels] = None,
    ) -> None:
        self.kind = Kind(kind)
        self.typ = _label(meta.typ)
        self.service = meta.service
        self.method = meta.method
        self.client_metrics = client_metrics
        self.server_metrics = server_metrics
        self.exemplar = exemplar

    def _labels(self) -> Tuple[str, str, str]:
        return self.typ, self.service, self.method

    def _increment(self, vec: CounterVec, *extra: str) -> None:
        vec.with_label_values(*self._labels(), *extra).add_with_exemplar(1, self.exemplar)

    def _observe(self, vec: Optional[HistogramVec], duration: Duration) -> None:
        if vec is not None:
            vec.with_label_values(*self._labels()).observe_with_exemplar(_seconds(duration), self.exemplar)

    def record_start(self) -> None:
        """Count the call as started."""
        if self.kind == Kind.CLIENT:
            self._increment(self.client_metrics.client_started_counter)
        else:
            self._increment(self.server_metrics.server_started_counter)

    def post_call(self, err: Optional[BaseException], rpc_duration: Duration) -> None:
        """Record the end of the call with the status derived from ``err``."""
        code = code_name(from_error(err).code())
        if self.kind == Kind.SERVER:
            metrics = self.server_metrics
            self._increment(metrics.server_handled_counter, code)
            self._observe(metrics.server_handled_histogram, rpc_duration)
        else:
            metrics = self.client_metrics
            self._increment(metrics.client_handled_counter, code)
            self._observe(metrics.client_handled_histogram, rpc_duration)

    def post_msg_send(self, msg: Any, err: Optional[BaseException], send_duration: Duration) -> None:
        """Record one sent stream message."""
        if self.kind == Kind.SERVER:
            self._increment(self.server_metrics.server_stream_msg_sent)
        else:
            self._increment(self.client_metrics.client_stream_msg_sent)
            self._observe(self.client_metrics.client_stream_send_histogram, send_duration)

    def post_msg_receive(self, msg: Any, err: Optional[BaseException], recv_duration: Duration) -> None:
        """Record one received stream message."""
        if self.kind == Kind.SERVER:
            self._increment(self.server_metrics.server_stream_msg_received)
        else:
            self._increment(self.client_metrics.client_stream_msg_received)
            self._observe(self.client_metrics.client_stream_recv_histogram, recv_duration)


class Reportable:
    """Creates reporters for client or server calls."""

    def __init__(
        self,
        client_metrics: Any = None,
        server_metrics: Any = None,
        opts: Iterable[Option] = (),
    ) -> None:
        self.client_metrics = client_metrics
        self.server_metrics = server_metrics
        self.opts = tuple(opts)

    def server_reporter(self, ctx: Any, meta: CallMeta) -> Tuple[Reporter, Any]:
        """Start reporting a server call; returns the reporter and the context."""
        if self.server_metrics is None:
            raise ValueError("no server metrics to report into")
        return self._reporter(ctx, meta, Kind.SERVER)

    def client_reporter(self, ctx: Any, meta: CallMeta) -> Tuple[Reporter, Any]:
        """Start reporting a client call; returns the reporter and the context."""
        if self.client_metrics is None:
            raise ValueError("no client metrics to report into")
        return self._reporter(ctx, meta, Kind.CLIENT)

    def _reporter(self, ctx: Any, meta: CallMeta, kind: Kind) -> Tuple[Reporter, Any]:
        config = InterceptorConfig.from_options(self.opts)
        exemplar = config.exemplar_fn(ctx) if config.exemplar_fn is not None else None
        reporter = Reporter(
            kind,
            meta,
            client_metrics=self.client_metrics if kind == Kind.CLIENT else None,
            server_metrics=self.server_metrics if kind == Kind.SERVER else None,
            exemplar=exemplar,
        )
        reporter.record_start()
        return reporter, ctx