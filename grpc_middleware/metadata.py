"""Convenience handling of gRPC metadata.

The :class:`MD` mapping makes it easy to take incoming metadata from a
server handler and put it into outgoing client metadata::

    md = extract_incoming(servicer_context).clone("authorization", "custom")
    details = md.set("x-client-header", "2").set("x-another", "3").to_outgoing(details)
"""

from __future__ import annotations

import base64
import collections
from collections.abc import Iterable, Iterator, Mapping, MutableMapping
from typing import Any, List, Optional, Tuple, Union

import grpc

_BIN_HDR_SUFFIX = "-bin"

Value = Union[str, bytes]


def encode_key_value(key: str, value: Union[str, bytes]) -> Tuple[str, Value]:
    """Lower-case ``key``; base64-encode ``value`` when the key is binary (``-bin``)."""
    key = key.lower()
    if key.endswith(_BIN_HDR_SUFFIX):
        raw = value if isinstance(value, bytes) else value.encode("utf-8")
        return key, base64.b64encode(raw).decode("ascii")
    return key, value


class MD(MutableMapping):
    """Metadata: a mapping of keys to lists of values."""

    def __init__(self, data: Optional[Mapping[str, Iterable[Value]]] = None) -> None:
        self._data: dict = {}
        if data:
            for key, values in data.items():
                self[key] = values

    def __getitem__(self, key: str) -> List[Value]:
        return self._data[key]

    def __setitem__(self, key: str, values: Iterable[Value]) -> None:
        if isinstance(values, (str, bytes)):
            raise TypeError("metadata values must be a sequence, not a single string")
        self._data[key] = list(values)

    def __delitem__(self, key: str) -> None:
        if key not in self._data:
            raise KeyError(key)
        self._data.pop(key)

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __repr__(self) -> str:
        return f"MD({self._data!r})"

    def clone(self, *copied_keys: str) -> "MD":
        """Deep copy, keeping only ``copied_keys`` (case-insensitive) when any are given."""
        wanted = {key.casefold() for key in copied_keys}
        return MD(
            {
                key: values
                for key, values in self._data.items()
                if not wanted or key.casefold() in wanted
            }
        )

    def get(self, key: str) -> Value:  # type: ignore[override]
        """Return the first value for ``key``, or an empty string if unset."""
        k, _ = encode_key_value(key, "")
        values = self._data.get(k)
        if not values:
            return ""
        return values[0]

    def delete(self, key: str) -> "MD":
        """Remove every value for ``key``; missing keys are ignored."""
        k, _ = encode_key_value(key, "")
        self._data.pop(k, None)
        return self

    def set(self, key: str, value: Union[str, bytes]) -> "MD":
        """Replace all values for ``key`` with ``value``."""
        k, v = encode_key_value(key, value)
        self._data[k] = [v]
        return self

    def add(self, key: str, value: Union[str, bytes]) -> "MD":
        """Append ``value`` to the values for ``key``."""
        k, v = encode_key_value(key, value)
        self._data.setdefault(k, []).append(v)
        return self

    def to_tuples(self) -> List[Tuple[str, Value]]:
        """Flatten into ``(key, value)`` pairs as accepted by grpc.

        Values of binary (``-bin``) keys are given as bytes.
        """
        result = []
        for key, values in self._data.items():
            binary = key.endswith(_BIN_HDR_SUFFIX)
            for value in values:
                if binary and isinstance(value, str):
                    value = value.encode("utf-8")
                result.append((key, value))
        return result

    def to_outgoing(self, call_details: Any) -> grpc.ClientCallDetails:
        """Return client call details equal to ``call_details`` but carrying this metadata."""
        return _ClientCallDetails(
            method=getattr(call_details, "method", None),
            timeout=getattr(call_details, "timeout", None),
            metadata=self.to_tuples(),
            credentials=getattr(call_details, "credentials", None),
            wait_for_ready=getattr(call_details, "wait_for_ready", None),
            compression=getattr(call_details, "compression", None),
        )

    def to_incoming(self, context: Any) -> "_IncomingContext":
        """Return a view of a servicer context whose invocation metadata is this metadata."""
        return _IncomingContext(context, self.clone())


class _ClientCallDetails(
    collections.namedtuple(
        "_ClientCallDetails",
        ("method", "timeout", "metadata", "credentials", "wait_for_ready", "compression"),
    ),
    grpc.ClientCallDetails,
):
    pass


class _IncomingContext:
    """Delegates to a servicer context, replacing its invocation metadata."""

    def __init__(self, parent: Any, md: MD) -> None:
        self._parent = parent
        self._md = md

    def invocation_metadata(self) -> Tuple[Tuple[str, Value], ...]:
        return tuple(self._md.to_tuples())

    def __getattr__(self, name: str) -> Any:
        parent = self.__dict__.get("_parent")
        return getattr(parent, name)


def pairs(*kv: Value) -> MD:
    """Build metadata from alternating keys and values; keys are lower-cased."""
    if len(kv) % 2:
        raise ValueError(f"pairs got the odd number of input pairs for metadata: {len(kv)}")
    return _from_tuples(zip(kv[::2], kv[1::2]))


def _from_tuples(items: Optional[Iterable[Tuple[str, Value]]]) -> MD:
    md = MD()
    for key, value in items or ():
        md.setdefault(key.lower(), []).append(value)
    return md


def extract_incoming(context: Any) -> MD:
    """Return the incoming metadata of a servicer context, or an empty MD."""
    getter = getattr(context, "invocation_metadata", None)
    return _from_tuples(getter() if callable(getter) else None)


def extract_outgoing(call_details: Any) -> MD:
    """Return the outgoing metadata of client call details, or an empty MD."""
    return _from_tuples(getattr(call_details, "metadata", None))