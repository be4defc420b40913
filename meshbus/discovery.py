"""Multicast peer discovery for a single topic."""

from __future__ import annotations

import logging
import re
import socket
import struct
import threading
from typing import Callable, List, Optional, Set, Tuple

logger = logging.getLogger(__name__)

DEFAULT_DISCOVERY_PORT = 9999
MULTICAST_GROUP = "239.255.0.1"
ANNOUNCE_INTERVAL = 1.0
_RECV_SIZE = 511
_POLL_INTERVAL = 0.2
_LEADING_INT = re.compile(r"\s*[+-]?\d+")

PeerCallback = Callable[[str, int], None]


def format_announcement(topic: str, port: int) -> str:
    """Build the announcement text ``HELLO:<topic>:<port>``."""
    return f"HELLO:{topic}:{port}"


def parse_announcement(message: str) -> Tuple[str, int]:
    """Return the topic and port carried by an announcement."""
    parts = message.split(":")
    if len(parts) < 3:
        raise ValueError(f"malformed announcement: {message!r}")
    match = _LEADING_INT.match(parts[2])
    if match is None:
        raise ValueError(f"announcement carries no port: {message!r}")
    return parts[1], int(match.group()) & 0xFFFF


class Discovery:
    """Announces a local port for a topic and reports peers announcing the same topic."""

    def __init__(self, topic: str, discovery_port: int = DEFAULT_DISCOVERY_PORT):
        self.topic = topic
        self.port = discovery_port
        self._local_port = 0
        self._callback: Optional[PeerCallback] = None
        self._known_peers: Set[str] = set()
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._threads: List[threading.Thread] = []

    @property
    def running(self) -> bool:
        return bool(self._threads)

    def start(self) -> None:
        """Start announcing and listening in background threads."""
        if self._threads:
            raise RuntimeError("discovery is already running")
        self._stop_event.clear()
        self._threads = [
            threading.Thread(target=self._recv_loop, name="discovery-recv", daemon=True),
            threading.Thread(target=self._send_loop, name="discovery-send", daemon=True),
        ]
        for thread in self._threads:
            thread.start()

    def stop(self) -> None:
        """Stop both background threads and wait for them."""
        self._stop_event.set()
        for thread in self._threads:
            thread.join()
        self._threads = []

    def set_peer_callback(self, callback: Optional[PeerCallback]) -> None:
        self._callback = callback

    def set_local_port(self, port: int) -> None:
        self._local_port = port

    def handle_announcement(self, message: str, peer_ip: str) -> bool:
        """Process one announcement; return True if it names a new peer for this topic."""
        topic, peer_port = parse_announcement(message)
        if topic != self.topic:
            return False
        key = f"{peer_ip}:{peer_port}"
        with self._lock:
            if key in self._known_peers:
                return False
            self._known_peers.add(key)
        logger.info("new peer discovered: %s:%d", peer_ip, peer_port)
        callback = self._callback
        if callback is not None:
            callback(peer_ip, peer_port)
        return True

    def _recv_loop(self) -> None:
        try:
            sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        except OSError as exc:
            logger.error("discovery socket: %s", exc)
            return
        with sock:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            try:
                sock.bind(("", self.port))
            except OSError as exc:
                logger.error("discovery bind: %s", exc)
                return
            membership = struct.pack(
                "4s4s", socket.inet_aton(MULTICAST_GROUP), socket.inet_aton("0.0.0.0")
            )
            try:
                sock.setsockopt(socket.IPPROTO_IP, socket.IP_ADD_MEMBERSHIP, membership)
            except OSError as exc:
                logger.warning("discovery multicast join: %s", exc)
            sock.settimeout(_POLL_INTERVAL)

            while not self._stop_event.is_set():
                try:
                    data, (peer_ip, _) = sock.recvfrom(_RECV_SIZE)
                except TimeoutError:
                    continue
                except OSError as exc:
                    logger.error("discovery recvfrom: %s", exc)
                    self._stop_event.wait(_POLL_INTERVAL)
                    continue
                message = data.split(b"\0", 1)[0].decode("utf-8", errors="replace")
                try:
                    self.handle_announcement(message, peer_ip)
                except ValueError as exc:
                    logger.warning("ignored announcement from %s: %s", peer_ip, exc)

    def _send_loop(self) -> None:
        try:
            sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        except OSError as exc:
            logger.error("discovery socket: %s", exc)
            return
        with sock:
            try:
                sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_TTL, 1)
            except OSError as exc:
                logger.warning("discovery multicast ttl: %s", exc)
            while not self._stop_event.is_set():
                message = format_announcement(self.topic, self._local_port)
                try:
                    sock.sendto(message.encode("utf-8"), (MULTICAST_GROUP, self.port))
                except OSError as exc:
                    logger.error("discovery sendto: %s", exc)
                self._stop_event.wait(ANNOUNCE_INTERVAL)

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()