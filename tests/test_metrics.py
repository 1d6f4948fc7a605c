import asyncio

import grpc
import pytest

from grpc_middleware.prometheus.collectors import Counter, Histogram
from grpc_middleware.prometheus.metrics import ClientMetrics, ServerMetrics
from grpc_middleware.prometheus.options import (
    GrpcType,
    MethodInfo,
    with_client_counter_options,
    with_client_handling_time_histogram,
    with_histogram_namespace,
    with_histogram_subsystem,
    with_namespace,
    with_server_counter_options,
    with_server_handling_time_histogram,
    with_subsystem,
)
from grpc_middleware.prometheus.reporter import CallMeta
from grpc_middleware.status import StatusError

SERVICE = "testing.testpb.v1.TestService"
LIST_RESPONSE_COUNT = 100


def _value(vec, *labels):
    return int(vec.with_label_values(*labels).value)


def _hist_count(vec, *labels):
    return vec.with_label_values(*labels).count


def _client_reporter(metrics, typ, method):
    reporter, _ = metrics.reportable().client_reporter(None, CallMeta(typ, SERVICE, method))
    return reporter


def _server_reporter(metrics, typ, method):
    reporter, _ = metrics.reportable().server_reporter(None, CallMeta(typ, SERVICE, method))
    return reporter


@pytest.fixture
def client_metrics():
    return ClientMetrics(with_client_handling_time_histogram())


@pytest.fixture
def server_metrics():
    return ServerMetrics(with_server_handling_time_histogram())


def test_client_unary_increments_metrics(client_metrics):
    m = client_metrics
    r = _client_reporter(m, GrpcType.UNARY, "PingEmpty")
    r.post_call(None, 0.001)
    assert _value(m.client_started_counter, "unary", SERVICE, "PingEmpty") == 1
    assert _value(m.client_handled_counter, "unary", SERVICE, "PingEmpty", "OK") == 1
    assert _hist_count(m.client_handled_histogram, "unary", SERVICE, "PingEmpty") == 1

    r = _client_reporter(m, GrpcType.UNARY, "PingError")
    r.post_call(StatusError(grpc.StatusCode.FAILED_PRECONDITION, "Userspace error"), 0.001)
    assert _value(m.client_started_counter, "unary", SERVICE, "PingError") == 1
    assert _value(m.client_handled_counter, "unary", SERVICE, "PingError", "FailedPrecondition") == 1
    assert _hist_count(m.client_handled_histogram, "unary", SERVICE, "PingError") == 1


def test_client_started_streaming_increments_started(client_metrics):
    m = client_metrics
    _client_reporter(m, GrpcType.SERVER_STREAM, "PingList")
    assert _value(m.client_started_counter, "server_stream", SERVICE, "PingList") == 1
    _client_reporter(m, GrpcType.SERVER_STREAM, "PingList")
    assert _value(m.client_started_counter, "server_stream", SERVICE, "PingList") == 2


def test_client_streaming_increments_metrics(client_metrics):
    m = client_metrics
    r = _client_reporter(m, GrpcType.SERVER_STREAM, "PingList")
    r.post_msg_send(object(), None, 0.0)
    for _ in range(LIST_RESPONSE_COUNT + 1):  # responses plus end of stream
        r.post_msg_receive(object(), None, 0.0)
    r.post_call(None, 0.01)

    labels = ("server_stream", SERVICE, "PingList")
    assert _value(m.client_started_counter, *labels) == 1
    assert _value(m.client_handled_counter, *labels, "OK") == 1
    assert _value(m.client_stream_msg_received, *labels) == LIST_RESPONSE_COUNT + 1
    assert _value(m.client_stream_msg_sent, *labels) == 1
    assert _hist_count(m.client_handled_histogram, *labels) == 1

    r = _client_reporter(m, GrpcType.SERVER_STREAM, "PingList")
    err = StatusError(grpc.StatusCode.FAILED_PRECONDITION, "foobar")
    r.post_msg_receive(None, err, 0.0)
    r.post_call(err, 0.01)
    assert _value(m.client_started_counter, *labels) == 2
    assert _value(m.client_handled_counter, *labels, "FailedPrecondition") == 1
    assert _hist_count(m.client_handled_histogram, *labels) == 2


def test_client_with_subsystem():
    m = ClientMetrics(
        with_client_counter_options(with_subsystem("subsystem1")),
        with_client_handling_time_histogram(with_histogram_subsystem("subsystem1")),
    )
    counter = m.client_started_counter.with_label_values("unary", SERVICE, "dummy")
    hist = m.client_handled_histogram.with_label_values("unary", SERVICE, "dummy")
    assert counter.desc.fq_name.split("_")[0] == "subsystem1"
    assert hist.desc.fq_name.split("_")[0] == "subsystem1"


def test_client_with_namespace():
    m = ClientMetrics(
        with_client_counter_options(with_namespace("namespace1")),
        with_client_handling_time_histogram(with_histogram_namespace("namespace1")),
    )
    counter = m.client_started_counter.with_label_values("unary", SERVICE, "dummy")
    hist = m.client_handled_histogram.with_label_values("unary", SERVICE, "dummy")
    assert counter.desc.fq_name.split("_")[0] == "namespace1"
    assert hist.desc.fq_name.split("_")[0] == "namespace1"


def test_client_describe_without_histograms():
    names = [d.fq_name for d in ClientMetrics().describe()]
    assert names == [
        "grpc_client_started_total",
        "grpc_client_handled_total",
        "grpc_client_msg_received_total",
        "grpc_client_msg_sent_total",
    ]


def test_client_describe_with_histogram(client_metrics):
    names = [d.fq_name for d in client_metrics.describe()]
    assert names[-1] == "grpc_client_handling_seconds"
    assert len(names) == 5


def test_server_with_subsystem():
    m = ServerMetrics(
        with_server_counter_options(with_subsystem("subsystem1")),
        with_server_handling_time_histogram(with_histogram_subsystem("subsystem1")),
    )
    counter = m.server_started_counter.with_label_values("unary", SERVICE, "dummy")
    hist = m.server_handled_histogram.with_label_values("unary", SERVICE, "dummy")
    assert counter.desc.fq_name.split("_")[0] == "subsystem1"
    assert hist.desc.fq_name.split("_")[0] == "subsystem1"


def _find(metrics, fq_name, *label_values):
    wanted = set(label_values)
    return [
        m
        for m in metrics.collect()
        if m.desc.fq_name == fq_name and wanted <= set(m.label_values)
    ]


def test_register_presets_stuff(server_metrics):
    server_metrics.initialize_metrics(
        {
            SERVICE: [
                MethodInfo("PingEmpty"),
                MethodInfo("PingList", is_server_stream=True),
            ]
        }
    )
    cases = [
        ("grpc_server_started_total", [SERVICE, "PingEmpty", "unary"]),
        ("grpc_server_started_total", [SERVICE, "PingList", "server_stream"]),
        ("grpc_server_msg_received_total", [SERVICE, "PingList", "server_stream"]),
        ("grpc_server_msg_sent_total", [SERVICE, "PingEmpty", "unary"]),
        ("grpc_server_handling_seconds", [SERVICE, "PingEmpty", "unary"]),
        ("grpc_server_handling_seconds", [SERVICE, "PingList", "server_stream"]),
        ("grpc_server_handled_total", [SERVICE, "PingList", "server_stream", "OutOfRange"]),
        ("grpc_server_handled_total", [SERVICE, "PingList", "server_stream", "Aborted"]),
        ("grpc_server_handled_total", [SERVICE, "PingEmpty", "unary", "FailedPrecondition"]),
        ("grpc_server_handled_total", [SERVICE, "PingEmpty", "unary", "ResourceExhausted"]),
    ]
    for name, labels in cases:
        found = _find(server_metrics, name, *labels)
        assert len(found) == 1, (name, labels)
        assert set(labels) <= set(found[0].label_values)


def test_initialize_metrics_creates_zero_values(server_metrics):
    server_metrics.initialize_metrics({SERVICE: [MethodInfo("PingStream", True, True)]})
    handled = _find(server_metrics, "grpc_server_handled_total", SERVICE, "PingStream")
    assert len(handled) == len(list(grpc.StatusCode))
    assert all(isinstance(c, Counter) and c.value == 0 for c in handled)
    hist = _find(server_metrics, "grpc_server_handling_seconds", "bidi_stream")
    assert len(hist) == 1 and isinstance(hist[0], Histogram) and hist[0].count == 0


def test_initialize_metrics_accepts_service_info_provider():
    class _Info:
        methods = [MethodInfo("PingClientStream", is_client_stream=True)]

    class _Server:
        def get_service_info(self):
            return {SERVICE: _Info()}

    m = ServerMetrics()
    m.initialize_metrics(_Server())
    started = _find(m, "grpc_server_started_total", "client_stream", SERVICE, "PingClientStream")
    assert len(started) == 1


def test_server_unary_increments_metrics(server_metrics):
    m = server_metrics
    _server_reporter(m, GrpcType.UNARY, "PingEmpty").post_call(None, 0.001)
    assert _value(m.server_started_counter, "unary", SERVICE, "PingEmpty") == 1
    assert _value(m.server_handled_counter, "unary", SERVICE, "PingEmpty", "OK") == 1
    assert _hist_count(m.server_handled_histogram, "unary", SERVICE, "PingEmpty") == 1

    err = StatusError(grpc.StatusCode.FAILED_PRECONDITION, "Userspace error")
    _server_reporter(m, GrpcType.UNARY, "PingError").post_call(err, 0.001)
    assert _value(m.server_started_counter, "unary", SERVICE, "PingError") == 1
    assert _value(m.server_handled_counter, "unary", SERVICE, "PingError", "FailedPrecondition") == 1
    assert _hist_count(m.server_handled_histogram, "unary", SERVICE, "PingError") == 1


def test_server_streaming_increments_metrics(server_metrics):
    m = server_metrics
    labels = ("server_stream", SERVICE, "PingList")
    r = _server_reporter(m, GrpcType.SERVER_STREAM, "PingList")
    r.post_msg_receive(object(), None, 0.0)
    for _ in range(LIST_RESPONSE_COUNT):
        r.post_msg_send(object(), None, 0.0)
    r.post_call(None, 0.01)
    assert _value(m.server_started_counter, *labels) == 1
    assert _value(m.server_handled_counter, *labels, "OK") == 1
    assert _value(m.server_stream_msg_sent, *labels) == LIST_RESPONSE_COUNT
    assert _value(m.server_stream_msg_received, *labels) == 1
    assert _hist_count(m.server_handled_histogram, *labels) == 1

    r = _server_reporter(m, GrpcType.SERVER_STREAM, "PingList")
    r.post_call(StatusError(grpc.StatusCode.FAILED_PRECONDITION, "foobar"), 0.01)
    assert _value(m.server_started_counter, *labels) == 2
    assert _value(m.server_handled_counter, *labels, "FailedPrecondition") == 1
    assert _hist_count(m.server_handled_histogram, *labels) == 2


def test_context_cancelled_treated_as_status(server_metrics):
    m = server_metrics
    r = _server_reporter(m, GrpcType.BIDI_STREAM, "PingStream")
    r.post_call(asyncio.CancelledError(), 0.01)
    assert _value(m.server_handled_counter, "bidi_stream", SERVICE, "PingStream", "Canceled") == 1


def test_reset_clears_counts(server_metrics):
    m = server_metrics
    _server_reporter(m, GrpcType.UNARY, "PingEmpty")
    m.server_started_counter.reset()
    assert _value(m.server_started_counter, "unary", SERVICE, "PingEmpty") == 0