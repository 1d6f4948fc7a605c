"""gRPC helpers: metadata, validation interceptors, status errors, call metrics, backoff and stream wrapping."""

__version__ = "0.1.0"