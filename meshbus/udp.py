"""UDP transport with optional multicast."""

from __future__ import annotations

import logging
import socket
import struct
import threading
from dataclasses import replace
from typing import Optional

from .transport import (
    RECV_SIZE,
    BytesLike,
    ReceiveCallback,
    Transport,
    TransportConfig,
    decode_frame,
    encode_frame,
    map_topic_to_port,
)

logger = logging.getLogger(__name__)

MULTICAST_TTL = 16
_LOOPBACK = "127.0.0.1"
_POLL_INTERVAL = 0.2


class UdpTransport(Transport):
    """Sends frames to the port of their topic; receives on the port of ``bind_topic``.

    Without ``bind_topic`` the socket binds an ephemeral port, as a publisher does.
    """

    def __init__(self, config: TransportConfig, bind_topic: str = ""):
        self._config = replace(config)
        self._callback: Optional[ReceiveCallback] = None
        self._stop_event = threading.Event()

        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            if bind_topic:
                port = map_topic_to_port(bind_topic)
                logger.info("binding to port %d for topic %s", port, bind_topic)
            else:
                port = 0
                logger.info("starting in publisher mode")
            sock.bind(("", port))

            try:
                sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_TTL, MULTICAST_TTL)
            except OSError as exc:
                logger.warning("cannot set multicast ttl: %s", exc)

            if self._uses_multicast():
                membership = struct.pack(
                    "4s4s",
                    socket.inet_aton(self._config.multicast_addr),
                    socket.inet_aton(self._config.iface_ip),
                )
                sock.setsockopt(socket.IPPROTO_IP, socket.IP_ADD_MEMBERSHIP, membership)
                logger.info("joined multicast group on iface %s", self._config.iface_ip)
            else:
                logger.info("using unicast on iface %s", self._config.iface_ip)
            sock.settimeout(_POLL_INTERVAL)
        except BaseException:
            sock.close()
            raise

        self._sock = sock
        self._thread = threading.Thread(target=self._recv_loop, name="udp-recv", daemon=True)
        self._thread.start()

    def _uses_multicast(self) -> bool:
        return self._config.use_multicast and self._config.iface_ip != _LOOPBACK

    def send(self, topic: str, msg: BytesLike, seq_num: int, timestamp: int) -> None:
        port = map_topic_to_port(topic)
        if self._uses_multicast():
            host = self._config.multicast_addr
        else:
            host = self._config.iface_ip
        frame = encode_frame(seq_num, timestamp, msg)
        try:
            self._sock.sendto(frame, (host, port))
        except OSError as exc:
            logger.error("sendto %s:%d failed: %s", host, port, exc)
            return
        logger.debug("sent seq=%d to %s port=%d", seq_num, host, port)

    def set_receive_callback(self, callback: Optional[ReceiveCallback]) -> None:
        self._callback = callback

    def close(self) -> None:
        if self._stop_event.is_set():
            return
        self._stop_event.set()
        self._thread.join()
        self._sock.close()

    def _recv_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                data, (_, src_port) = self._sock.recvfrom(RECV_SIZE)
            except TimeoutError:
                continue
            except OSError as exc:
                if self._stop_event.is_set():
                    break
                logger.error("recvfrom failed: %s", exc)
                self._stop_event.wait(_POLL_INTERVAL)
                continue
            try:
                frame = decode_frame(data)
            except ValueError as exc:
                logger.warning("dropped datagram: %s", exc)
                continue
            callback = self._callback
            if callback is not None:
                callback(f"[port_{src_port}]", frame.seq_num, frame.timestamp, frame.payload)