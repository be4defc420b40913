"""Fixed-layout message types and their binary serialization."""

from __future__ import annotations

import struct
from dataclasses import astuple, dataclass
from typing import ClassVar, Tuple, Type, TypeVar, Union

BytesLike = Union[bytes, bytearray, memoryview]
M = TypeVar("M")


@dataclass
class Pose:
    """A planar pose."""

    FORMAT: ClassVar[struct.Struct] = struct.Struct("<fff")
    x: float = 0.0
    y: float = 0.0
    theta: float = 0.0


@dataclass
class SumRequest:
    """Two integers to be added."""

    FORMAT: ClassVar[struct.Struct] = struct.Struct("<ii")
    num1: int = 0
    num2: int = 0


@dataclass
class SumResponse:
    """The sum of a SumRequest."""

    FORMAT: ClassVar[struct.Struct] = struct.Struct("<i")
    sum: int = 0


@dataclass
class MyServiceRequest:
    """A generic two-operand request."""

    FORMAT: ClassVar[struct.Struct] = struct.Struct("<ii")
    a: int = 0
    b: int = 0


@dataclass
class MyServiceResponse:
    """A generic single-value response."""

    FORMAT: ClassVar[struct.Struct] = struct.Struct("<i")
    sum: int = 0


@dataclass
class ServiceHeader:
    """Header put in front of every service request and response."""

    FORMAT: ClassVar[struct.Struct] = struct.Struct("<Q")
    request_id: int = 0


def _layout(message_type: type) -> struct.Struct:
    layout = getattr(message_type, "FORMAT", None)
    if not isinstance(layout, struct.Struct):
        raise TypeError(f"{message_type!r} is not a message type")
    return layout


def serialize(msg) -> bytes:
    """Encode a message into its fixed-size binary form."""
    layout = _layout(type(msg))
    try:
        return layout.pack(*astuple(msg))
    except struct.error as exc:
        raise ValueError(f"cannot serialize {msg!r}: {exc}") from exc


def unpack_from(message_type: Type[M], buffer: BytesLike, offset: int = 0) -> Tuple[M, int]:
    """Decode a message at ``offset``; return it with the offset just past it."""
    layout = _layout(message_type)
    if offset < 0 or len(buffer) - offset < layout.size:
        raise ValueError(
            f"{message_type.__name__} needs {layout.size} bytes at offset {offset}, "
            f"buffer holds {len(buffer)}"
        )
    values = layout.unpack_from(buffer, offset)
    return message_type(*values), offset + layout.size


def deserialize(message_type: Type[M], buffer: BytesLike) -> M:
    """Decode a message from the start of ``buffer``; trailing bytes are ignored."""
    msg, _ = unpack_from(message_type, buffer, 0)
    return msg