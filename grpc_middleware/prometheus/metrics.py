"""Prometheus metrics for gRPC clients and servers."""

from __future__ import annotations

from typing import Any, Iterable, Iterator, List, Sequence, Union

import grpc

from grpc_middleware.prometheus.collectors import (
    Counter,
    CounterOpts,
    CounterVec,
    Desc,
    Histogram,
    HistogramVec,
)
from grpc_middleware.prometheus.options import (
    ClientMetricsConfig,
    ClientMetricsOption,
    CounterOption,
    MethodInfo,
    Option,
    ServerMetricsConfig,
    ServerMetricsOption,
    apply_counter_options,
    type_from_method_info,
)
from grpc_middleware.prometheus.reporter import Reportable
from grpc_middleware.status import code_name

_LABELS = ("grpc_type", "grpc_service", "grpc_method")
_HANDLED_LABELS = (*_LABELS, "grpc_code")

_Collector = Union[CounterVec, HistogramVec]


def _counter(
    counter_opts: Sequence[CounterOption],
    name: str,
    help_text: str,
    labels: Sequence[str] = _LABELS,
) -> CounterVec:
    return CounterVec(apply_counter_options(counter_opts, CounterOpts(name=name, help=help_text)), labels)


def _describe(collectors: Iterable[_Collector]) -> List[Desc]:
    return [desc for collector in collectors for desc in collector.describe()]


def _collect(collectors: Iterable[_Collector]) -> List[Union[Counter, Histogram]]:
    return [metric for collector in collectors for metric in collector.collect()]


class ClientMetrics:
    """The metrics recorded for a gRPC client."""

    def __init__(self, *opts: ClientMetricsOption) -> None:
        config = ClientMetricsConfig.from_options(opts)
        counter_opts = config.counter_opts
        self.client_started_counter = _counter(
            counter_opts,
            "grpc_client_started_total",
            "Total number of RPCs started on the client.",
        )
        self.client_handled_counter = _counter(
            counter_opts,
            "grpc_client_handled_total",
            "Total number of RPCs completed by the client, regardless of success or failure.",
            _HANDLED_LABELS,
        )
        self.client_stream_msg_received = _counter(
            counter_opts,
            "grpc_client_msg_received_total",
            "Total number of RPC stream messages received by the client.",
        )
        self.client_stream_msg_sent = _counter(
            counter_opts,
            "grpc_client_msg_sent_total",
            "Total number of gRPC stream messages sent by the client.",
        )
        self.client_handled_histogram = config.client_handled_histogram
        self.client_stream_recv_histogram = config.client_stream_recv_histogram
        self.client_stream_send_histogram = config.client_stream_send_histogram

    def _collectors(self) -> Iterator[_Collector]:
        yield self.client_started_counter
        yield self.client_handled_counter
        yield self.client_stream_msg_received
        yield self.client_stream_msg_sent
        for histogram in (
            self.client_handled_histogram,
            self.client_stream_recv_histogram,
            self.client_stream_send_histogram,
        ):
            if histogram is not None:
                yield histogram

    def describe(self) -> List[Desc]:
        """Descriptors of every metric this collection can produce."""
        return _describe(self._collectors())

    def collect(self) -> List[Union[Counter, Histogram]]:
        """Every metric currently held."""
        return _collect(self._collectors())

    def reportable(self, *opts: Option) -> Reportable:
        """A reporter factory recording client calls into these metrics."""
        return Reportable(client_metrics=self, opts=opts)


class ServerMetrics:
    """The metrics recorded for a gRPC server."""

    def __init__(self, *opts: ServerMetricsOption) -> None:
        config = ServerMetricsConfig.from_options(opts)
        counter_opts = config.counter_opts
        self.server_started_counter = _counter(
            counter_opts,
            "grpc_server_started_total",
            "Total number of RPCs started on the server.",
        )
        self.server_handled_counter = _counter(
            counter_opts,
            "grpc_server_handled_total",
            "Total number of RPCs completed on the server, regardless of success or failure.",
            _HANDLED_LABELS,
        )
        self.server_stream_msg_received = _counter(
            counter_opts,
            "grpc_server_msg_received_total",
            "Total number of RPC stream messages received on the server.",
        )
        self.server_stream_msg_sent = _counter(
            counter_opts,
            "grpc_server_msg_sent_total",
            "Total number of gRPC stream messages sent by the server.",
        )
        self.server_handled_histogram = config.server_handled_histogram

    def _collectors(self) -> Iterator[_Collector]:
        yield self.server_started_counter
        yield self.server_handled_counter
        yield self.server_stream_msg_received
        yield self.server_stream_msg_sent
        if self.server_handled_histogram is not None:
            yield self.server_handled_histogram

    def describe(self) -> List[Desc]:
        """Descriptors of every metric this collection can produce."""
        return _describe(self._collectors())

    def collect(self) -> List[Union[Counter, Histogram]]:
        """Every metric currently held."""
        return _collect(self._collectors())

    def initialize_metrics(self, service_info: Any) -> None:
        """Create zero-valued metrics for every method of every service.

        ``service_info`` maps service names to their methods (an iterable of
        :class:`MethodInfo`, or an object with a ``methods`` attribute). An
        object with a ``get_service_info()`` method is accepted as well.
        """
        getter = getattr(service_info, "get_service_info", None)
        if callable(getter):
            service_info = getter()
        for service_name, info in service_info.items():
            for method_info in getattr(info, "methods", info):
                self._pre_register_method(service_name, method_info)

    def _pre_register_method(self, service_name: str, method_info: MethodInfo) -> None:
        method_type = type_from_method_info(method_info).value
        labels = (method_type, service_name, method_info.name)
        self.server_started_counter.with_label_values(*labels)
        self.server_stream_msg_received.with_label_values(*labels)
        self.server_stream_msg_sent.with_label_values(*labels)
        if self.server_handled_histogram is not None:
            self.server_handled_histogram.with_label_values(*labels)
        for code in grpc.StatusCode:
            self.server_handled_counter.with_label_values(*labels, code_name(code))

    def reportable(self, *opts: Option) -> Reportable:
        """A reporter factory recording server calls into these metrics."""
        return Reportable(server_metrics=self, opts=opts)