"""Transport interface, its configuration and the frame format shared by transports."""

from __future__ import annotations

import struct
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, NamedTuple, Optional, Union

ReceiveCallback = Callable[[str, int, int, bytes], None]
"""Called as ``callback(topic, seq_num, timestamp, payload)`` for each received frame."""

BytesLike = Union[bytes, bytearray, memoryview]

MAX_FRAME_SIZE = 1500
_HEADER = struct.Struct("<IQ")
HEADER_SIZE = _HEADER.size
MAX_PAYLOAD_SIZE = MAX_FRAME_SIZE - HEADER_SIZE
RECV_SIZE = MAX_FRAME_SIZE - 1

PORT_BASE = 9000
PORT_RANGE = 1000

_FNV_OFFSET = 0xCBF29CE484222325
_FNV_PRIME = 0x100000001B3
_MASK_64 = 0xFFFFFFFFFFFFFFFF


@dataclass
class TransportConfig:
    """Settings shared by transport instances."""

    iface_ip: str = "127.0.0.1"
    multicast_addr: str = "239.255.0.1"
    use_multicast: bool = False
    dynamic_port: int = 0


class Frame(NamedTuple):
    """A decoded frame: sequence number, sender timestamp and payload."""

    seq_num: int
    timestamp: int
    payload: bytes


class Transport(ABC):
    """Something that can send frames for a topic and deliver received ones."""

    @abstractmethod
    def send(self, topic: str, msg: BytesLike, seq_num: int, timestamp: int) -> None:
        """Send one message for ``topic``."""

    @abstractmethod
    def set_receive_callback(self, callback: Optional[ReceiveCallback]) -> None:
        """Install the function called for every received frame."""

    def close(self) -> None:
        """Release sockets and threads held by the transport."""

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def map_topic_to_port(topic: str) -> int:
    """Map a topic name to a port in the range 9000-9999."""
    digest = _FNV_OFFSET
    for byte in topic.encode("utf-8"):
        digest ^= byte
        digest = (digest * _FNV_PRIME) & _MASK_64
    return PORT_BASE + digest % PORT_RANGE


def encode_frame(seq_num: int, timestamp: int, payload: BytesLike) -> bytes:
    """Build a frame: 32-bit sequence number, 64-bit timestamp, then the payload."""
    body = bytes(payload)
    if len(body) > MAX_PAYLOAD_SIZE:
        raise ValueError(
            f"payload of {len(body)} bytes exceeds the limit of {MAX_PAYLOAD_SIZE}"
        )
    return _HEADER.pack(seq_num & 0xFFFFFFFF, timestamp & _MASK_64) + body


def decode_frame(data: BytesLike) -> Frame:
    """Split a received frame into its header fields and payload."""
    raw = bytes(data)
    if len(raw) < HEADER_SIZE:
        raise ValueError(f"frame of {len(raw)} bytes is shorter than its header")
    seq_num, timestamp = _HEADER.unpack_from(raw)
    return Frame(seq_num, timestamp, raw[HEADER_SIZE:])