"""Per-topic transport registry."""

from __future__ import annotations

import threading
from dataclasses import replace
from typing import Dict

from .p2p import PeerToPeerTcpTransport
from .transport import TransportConfig


class TransportManager:
    """Creates one peer-to-peer transport per topic and hands out the same one again."""

    def __init__(self, config: TransportConfig):
        self.config = replace(config)
        self._transports: Dict[str, PeerToPeerTcpTransport] = {}
        self._lock = threading.Lock()

    def get_transport(self, topic: str) -> PeerToPeerTcpTransport:
        """Return the transport for ``topic``, creating it and starting its discovery."""
        with self._lock:
            transport = self._transports.get(topic)
            if transport is not None:
                return transport
            transport = PeerToPeerTcpTransport(self.config, topic)
            transport.discovery.start()
            self._transports[topic] = transport
            return transport

    @property
    def topics(self) -> list:
        with self._lock:
            return list(self._transports)

    def close(self) -> None:
        """Close every transport created so far."""
        with self._lock:
            transports = list(self._transports.values())
            self._transports.clear()
        for transport in transports:
            transport.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()