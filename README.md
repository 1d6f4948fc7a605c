# grpc_middleware

Helpers for gRPC services and clients built on `grpcio`:

- `grpc_middleware.metadata`: `MD` is a mutable mapping from metadata keys to lists of values. It has chainable
  `get`, `set`, `add`, `delete` and `clone` methods. Values set or added under keys ending in `-bin` are
  base64-encoded.
- `grpc_middleware.validator`: interceptors that reject messages with `INVALID_ARGUMENT` when their validation
  method raises.
- `grpc_middleware.status`: `StatusError`, an `RpcError` carrying a status code and message. `from_error` maps any
  exception to a status, and `code_name` gives a code's CamelCase name.
- `grpc_middleware.prometheus`: counters and histograms in the Prometheus data model. `ClientMetrics` and
  `ServerMetrics` hold them, and reporters record each call's events into them.
- `grpc_middleware.backoff`: `jitter_up` and `exponent_base2` for retry delays.
- `grpc_middleware.wrappers`: `wrap_server_stream` wraps a stream so that the context it reports can be replaced.

## Installation

```
pip install grpc_middleware
```

## Metadata

```python
from grpc_middleware.metadata import pairs

md = pairs("singlekey", "uno", "multikey", "one", "multikey", "two")
md.get("multikey")              # "one"
md.get("nokey")                 # ""
md.add("multikey", "three").set("x-client-header", "2")
subset = md.clone("multikey")   # deep copy of only the listed keys (matched case-insensitively)
md.to_tuples()                  # [("singlekey", "uno"), ("multikey", "one"), ...]
```

`extract_incoming(context)` reads a servicer context's invocation metadata. `extract_outgoing(call_details)` reads
the metadata of client call details. Either one returns an empty `MD` when there is none.
`md.to_outgoing(call_details)` returns new `grpc.ClientCallDetails` that carry `md`, for use in a client
interceptor. `md.to_incoming(context)` returns a view of a servicer context whose `invocation_metadata()` is `md`.

## Validation

```python
from concurrent import futures

import grpc
from grpc_middleware import validator

server = grpc.server(
    futures.ThreadPoolExecutor(max_workers=4),
    interceptors=[
        validator.unary_server_interceptor(),
        validator.stream_server_interceptor(validator.with_fail_fast()),
    ],
)
```

A message is checked with `validate_all()`, `validate(all)` or `validate()`, whichever it defines. A method signals
failure by raising. With `with_fail_fast()`, a message that has `validate()` is checked with it, or with
`validate(False)`, and `validate_all()` is not used. Without it, `validate_all()` comes first, then `validate(True)`,
then `validate()`. Messages without any of these methods pass.

On failure, the callback set with `with_on_validation_err_callback(callback)` is called with `(ctx, error)`. The call
is then aborted with `INVALID_ARGUMENT`.

- `unary_server_interceptor` checks the request of unary-unary methods before the handler runs.
- `stream_server_interceptor` checks the request of server-streaming methods before the handler runs. For client-
  and bidirectional-streaming methods it checks each message as the handler reads it.
- `unary_client_interceptor` checks outgoing unary requests and raises `StatusError` before anything is sent.
- `validate(ctx, message, should_fail_fast, callback)` performs the same check directly.

## Status

```python
import grpc
from grpc_middleware.status import StatusError, code_name, from_error

from_error(None).code()                                      # grpc.StatusCode.OK
from_error(TimeoutError()).code()                            # grpc.StatusCode.DEADLINE_EXCEEDED
from_error(ValueError("boom")).code()                        # grpc.StatusCode.UNKNOWN
code_name(grpc.StatusCode.FAILED_PRECONDITION)               # "FailedPrecondition"
str(StatusError(grpc.StatusCode.NOT_FOUND, "missing"))       # "rpc error: code = NotFound desc = missing"
```

## Metrics

```python
from grpc_middleware.prometheus.metrics import ServerMetrics
from grpc_middleware.prometheus.options import (
    GrpcType,
    MethodInfo,
    with_server_counter_options,
    with_server_handling_time_histogram,
    with_subsystem,
)
from grpc_middleware.prometheus.reporter import CallMeta

metrics = ServerMetrics(
    with_server_counter_options(with_subsystem("api")),
    with_server_handling_time_histogram(),
)
metrics.initialize_metrics({"pkg.Service": [MethodInfo("Ping"), MethodInfo("List", is_server_stream=True)]})

reportable = metrics.reportable()
reporter, ctx = reportable.server_reporter(None, CallMeta(GrpcType.UNARY, "pkg.Service", "Ping"))
reporter.post_call(None, 0.012)   # counts the call as handled with code "OK" and records 0.012 s

metrics.server_handled_counter.with_label_values("unary", "pkg.Service", "Ping", "OK").value  # 1.0
```

Server metrics are `grpc_server_started_total`, `grpc_server_handled_total` (which also has a `grpc_code`
label), `grpc_server_msg_received_total`, `grpc_server_msg_sent_total` and, when enabled,
`grpc_server_handling_seconds`. Client metrics use the same names under `grpc_client_`. Their optional histograms
are enabled with `with_client_handling_time_histogram`, `with_client_stream_recv_histogram` and
`with_client_stream_send_histogram`.

Counter names are adjusted with `with_namespace`, `with_subsystem` and `with_const_labels`. Histogram names and
buckets are adjusted with `with_histogram_namespace`, `with_histogram_subsystem`, `with_histogram_const_labels`,
`with_histogram_buckets` and `with_histogram_opts`. Pass `with_exemplar_from_context(fn)` to `reportable()` to
attach the labels returned by `fn(ctx)` as an exemplar to every recorded value.

`describe()` lists the metric descriptors and `collect()` returns the current `Counter` and `Histogram` samples.
`initialize_metrics` accepts a mapping from service names to their `MethodInfo` entries. It creates every label
set, including one handled counter per status code, so that all series exist before the first call.

## What this package does not do

- No ready-made gRPC interceptors record metrics. The reporters must be called from your own interceptor code:
  `server_reporter`/`client_reporter` when a call starts, `post_msg_send`/`post_msg_receive` for each stream
  message, and `post_call` when it ends.
- There is no metrics registry, text exposition format or HTTP endpoint for scraping. Samples are read with
  `collect()`.

## Running the tests

```
pip install -e .[test]
pytest
```