"""Publishers, subscribers and typed subscribers on top of a transport."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import replace
from typing import Callable, Generic, Type, TypeVar, Union

from .messages import deserialize
from .transport import BytesLike, Transport

logger = logging.getLogger(__name__)

M = TypeVar("M")

SubscriberCallback = Callable[[int, int, bytes], None]
"""Called as ``callback(seq_num, latency_us, payload)``."""

_SEQ_MASK = 0xFFFFFFFF


def current_time_us() -> int:
    """Monotonic clock reading in microseconds."""
    return time.monotonic_ns() // 1000


class Publisher:
    """Sends messages on one topic, numbering them from zero."""

    def __init__(self, topic: str, transport: Transport):
        self.topic = topic
        self.transport = transport
        self._sequence_number = 0
        self._lock = threading.Lock()

    def _next_seq(self) -> int:
        with self._lock:
            seq = self._sequence_number
            self._sequence_number = (seq + 1) & _SEQ_MASK
        return seq

    def publish(self, msg: Union[str, BytesLike]) -> None:
        """Publish text (encoded as UTF-8) or bytes."""
        payload = msg.encode("utf-8") if isinstance(msg, str) else bytes(msg)
        self.publish_raw(payload)

    def publish_raw(self, buffer: BytesLike) -> None:
        """Publish a raw byte buffer."""
        seq = self._next_seq()
        self.transport.send(self.topic, bytes(buffer), seq, current_time_us())

    def has_peers(self) -> bool:
        return True


class Subscriber:
    """Installs a callback on a transport that receives payloads with their latency."""

    def __init__(self, topic: str, transport: Transport, callback: SubscriberCallback):
        self.topic = topic
        self.transport = transport
        self._callback = callback
        transport.set_receive_callback(self._on_frame)

    def _on_frame(self, topic: str, seq_num: int, timestamp: int, payload: bytes) -> None:
        latency_us = current_time_us() - timestamp
        self._callback(seq_num, latency_us, bytes(payload))

    def has_peers(self) -> bool:
        return True


class TypedSubscriber(Generic[M]):
    """Keeps the latest message of one type received on a topic."""

    def __init__(self, node, topic: str, message_type: Type[M]):
        self.topic = topic
        self.message_type = message_type
        self._lock = threading.Lock()
        self._latest: M = message_type()
        self._subscriber = node.create_subscriber(topic, self._on_message)

    def _on_message(self, seq_num: int, latency_us: int, payload: bytes) -> None:
        try:
            msg = deserialize(self.message_type, payload)
        except ValueError as exc:
            logger.warning("dropped message on %s: %s", self.topic, exc)
            return
        with self._lock:
            self._latest = msg

    def get_latest(self) -> M:
        """Return a copy of the latest message, or a default one if none arrived."""
        with self._lock:
            return replace(self._latest)