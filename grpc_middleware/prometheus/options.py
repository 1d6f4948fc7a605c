"""Options for the Prometheus gRPC interceptors and their metrics.

Server and client metrics are built from counters and optional histograms;
the ``with_*`` functions return options that adjust them.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Iterable, List, Optional, Sequence

from grpc_middleware.prometheus.collectors import (
    DEF_BUCKETS,
    CounterOpts,
    HistogramOpts,
    HistogramVec,
    Labels,
)


class GrpcType(str, Enum):
    """The shape of a gRPC call."""

    UNARY = "unary"
    CLIENT_STREAM = "client_stream"
    SERVER_STREAM = "server_stream"
    BIDI_STREAM = "bidi_stream"


class Kind(str, Enum):
    """Whether an interceptor runs on the client or the server."""

    CLIENT = "client"
    SERVER = "server"


@dataclass(frozen=True)
class MethodInfo:
    """A method registered on a service."""

    name: str
    is_client_stream: bool = False
    is_server_stream: bool = False


def type_from_method_info(method_info: MethodInfo) -> GrpcType:
    """The call type implied by a method's streaming flags."""
    if method_info.is_client_stream and method_info.is_server_stream:
        return GrpcType.BIDI_STREAM
    if method_info.is_client_stream:
        return GrpcType.CLIENT_STREAM
    if method_info.is_server_stream:
        return GrpcType.SERVER_STREAM
    return GrpcType.UNARY


CounterOption = Callable[[CounterOpts], None]
HistogramOption = Callable[[HistogramOpts], None]
ExemplarFromContext = Callable[[Any], Optional[Labels]]

_METRIC_LABELS = ("grpc_type", "grpc_service", "grpc_method")


def apply_counter_options(opts: Iterable[CounterOption], counter_opts: CounterOpts) -> CounterOpts:
    """Return a copy of ``counter_opts`` with every option applied."""
    result = dataclasses.replace(counter_opts)
    for opt in opts:
        opt(result)
    return result


def apply_histogram_options(opts: Iterable[HistogramOption], histogram_opts: HistogramOpts) -> HistogramOpts:
    """Return a copy of ``histogram_opts`` with every option applied."""
    result = dataclasses.replace(histogram_opts)
    for opt in opts:
        opt(result)
    return result


def with_const_labels(labels: Labels) -> CounterOption:
    """Add constant labels to counter metrics."""

    def apply(o: CounterOpts) -> None:
        o.const_labels = labels

    return apply


def with_subsystem(subsystem: str) -> CounterOption:
    """Set the subsystem of counter metrics."""

    def apply(o: CounterOpts) -> None:
        o.subsystem = subsystem

    return apply


def with_namespace(namespace: str) -> CounterOption:
    """Set the namespace of counter metrics."""

    def apply(o: CounterOpts) -> None:
        o.namespace = namespace

    return apply


def with_histogram_buckets(buckets: Sequence[float]) -> HistogramOption:
    """Use custom bucket bounds for histograms."""

    def apply(o: HistogramOpts) -> None:
        o.buckets = buckets

    return apply


def with_histogram_opts(opts: HistogramOpts) -> HistogramOption:
    """Take buckets and native-histogram settings from ``opts``, keeping name and labels."""

    def apply(o: HistogramOpts) -> None:
        o.buckets = opts.buckets
        o.native_histogram_bucket_factor = opts.native_histogram_bucket_factor
        o.native_histogram_zero_threshold = opts.native_histogram_zero_threshold
        o.native_histogram_max_bucket_number = opts.native_histogram_max_bucket_number
        o.native_histogram_min_reset_duration = opts.native_histogram_min_reset_duration
        o.native_histogram_max_zero_threshold = opts.native_histogram_max_zero_threshold

    return apply


def with_histogram_const_labels(labels: Labels) -> HistogramOption:
    """Add constant labels to histogram metrics."""

    def apply(o: HistogramOpts) -> None:
        o.const_labels = labels

    return apply


def with_histogram_subsystem(subsystem: str) -> HistogramOption:
    """Set the subsystem of histogram metrics."""

    def apply(o: HistogramOpts) -> None:
        o.subsystem = subsystem

    return apply


def with_histogram_namespace(namespace: str) -> HistogramOption:
    """Set the namespace of histogram metrics."""

    def apply(o: HistogramOpts) -> None:
        o.namespace = namespace

    return apply


@dataclass
class InterceptorConfig:
    """Settings of a metrics interceptor."""

    exemplar_fn: Optional[ExemplarFromContext] = None

    @classmethod
    def from_options(cls, opts: Iterable[Callable[["InterceptorConfig"], None]]) -> "InterceptorConfig":
        config = cls()
        for opt in opts:
            opt(config)
        return config


Option = Callable[[InterceptorConfig], None]


def with_exemplar_from_context(exemplar_fn: ExemplarFromContext) -> Option:
    """Use ``exemplar_fn`` to derive an exemplar from the call context for every metric."""

    def apply(o: InterceptorConfig) -> None:
        o.exemplar_fn = exemplar_fn

    return apply


def _histogram(opts: Sequence[HistogramOption], name: str, help_text: str) -> HistogramVec:
    return HistogramVec(
        apply_histogram_options(opts, HistogramOpts(name=name, help=help_text, buckets=DEF_BUCKETS)),
        _METRIC_LABELS,
    )


@dataclass
class ClientMetricsConfig:
    """Settings used to build client metrics."""

    counter_opts: List[CounterOption] = field(default_factory=list)
    client_handled_histogram: Optional[HistogramVec] = None
    client_stream_recv_histogram: Optional[HistogramVec] = None
    client_stream_send_histogram: Optional[HistogramVec] = None

    @classmethod
    def from_options(cls, opts: Iterable[Callable[["ClientMetricsConfig"], None]]) -> "ClientMetricsConfig":
        config = cls()
        for opt in opts:
            opt(config)
        return config


ClientMetricsOption = Callable[[ClientMetricsConfig], None]


def with_client_counter_options(*opts: CounterOption) -> ClientMetricsOption:
    """Apply ``opts`` to every client counter."""

    def apply(o: ClientMetricsConfig) -> None:
        o.counter_opts = list(opts)

    return apply


def with_client_handling_time_histogram(*opts: HistogramOption) -> ClientMetricsOption:
    """Record the handling time of client RPCs. Histograms can be expensive to keep."""

    def apply(o: ClientMetricsConfig) -> None:
        o.client_handled_histogram = _histogram(
            opts,
            "grpc_client_handling_seconds",
            "Histogram of response latency (seconds) of the gRPC until it is finished by the application.",
        )

    return apply


def with_client_stream_recv_histogram(*opts: HistogramOption) -> ClientMetricsOption:
    """Record the receive time of single stream messages on the client."""

    def apply(o: ClientMetricsConfig) -> None:
        o.client_stream_recv_histogram = _histogram(
            opts,
            "grpc_client_msg_recv_handling_seconds",
            "Histogram of response latency (seconds) of the gRPC single message receive.",
        )

    return apply


def with_client_stream_send_histogram(*opts: HistogramOption) -> ClientMetricsOption:
    """Record the send time of single stream messages on the client."""

    def apply(o: ClientMetricsConfig) -> None:
        o.client_stream_send_histogram = _histogram(
            opts,
            "grpc_client_msg_send_handling_seconds",
            "Histogram of response latency (seconds) of the gRPC single message send.",
        )

    return apply


@dataclass
class ServerMetricsConfig:
    """Settings used to build server metrics."""

    counter_opts: List[CounterOption] = field(default_factory=list)
    server_handled_histogram: Optional[HistogramVec] = None

    @classmethod
    def from_options(cls, opts: Iterable[Callable[["ServerMetricsConfig"], None]]) -> "ServerMetricsConfig":
        config = cls()
        for opt in opts:
            opt(config)
        return config


ServerMetricsOption = Callable[[ServerMetricsConfig], None]


def with_server_counter_options(*opts: CounterOption) -> ServerMetricsOption:
    """Apply ``opts`` to every server counter."""

    def apply(o: ServerMetricsConfig) -> None:
        o.counter_opts = list(opts)

    return apply


def with_server_handling_time_histogram(*opts: HistogramOption) -> ServerMetricsOption:
    """Record the handling time of server RPCs. Histograms can be expensive to keep."""

    def apply(o: ServerMetricsConfig) -> None:
        o.server_handled_histogram = _histogram(
            opts,
            "grpc_server_handling_seconds",
            "Histogram of response latency (seconds) of gRPC that had been application-level handled by the server.",
        )

    return apply