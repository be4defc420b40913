"""TCP transport that connects directly to peers found by multicast discovery."""

from __future__ import annotations

import logging
import socket
import threading
from dataclasses import replace
from typing import List, Optional

from .discovery import Discovery
from .transport import (
    RECV_SIZE,
    BytesLike,
    ReceiveCallback,
    Transport,
    TransportConfig,
    decode_frame,
    encode_frame,
)

logger = logging.getLogger(__name__)

LISTEN_BACKLOG = 10
CONNECT_RETRY_INTERVAL = 0.5
CONNECT_TIMEOUT = 2.0
_POLL_INTERVAL = 0.2


class PeerToPeerTcpTransport(Transport):
    """Listens on an ephemeral port and sends every frame to each connected peer.

    The listening port is announced through a :class:`Discovery` for the topic;
    each newly discovered peer is connected to with :meth:`add_peer`. The discovery
    is created here but started by whoever owns the transport.
    """

    def __init__(self, config: TransportConfig, topic: str):
        self._config = replace(config)
        self._topic = topic
        self._callback: Optional[ReceiveCallback] = None
        self._stop_event = threading.Event()
        self._peers: List[socket.socket] = []
        self._peers_lock = threading.Lock()
        self._clients: List[socket.socket] = []
        self._client_threads: List[threading.Thread] = []
        self._clients_lock = threading.Lock()

        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind(("", 0))
            port = sock.getsockname()[1]
            logger.info("bound to port %d for topic %s", port, topic)
            sock.listen(LISTEN_BACKLOG)
            sock.settimeout(_POLL_INTERVAL)
        except BaseException:
            sock.close()
            raise
        self._server_sock = sock
        self._config.dynamic_port = port
        logger.info("listening on port %d for topic %s", port, topic)

        self._discovery = Discovery(topic)
        self._discovery.set_local_port(port)
        self._discovery.set_peer_callback(self._on_peer_discovered)

        self._server_thread = threading.Thread(
            target=self._server_loop, name="p2p-accept", daemon=True
        )
        self._server_thread.start()

    @property
    def topic(self) -> str:
        return self._topic

    @property
    def config(self) -> TransportConfig:
        return self._config

    @property
    def listen_port(self) -> int:
        """The port this transport accepts peer connections on."""
        return self._config.dynamic_port

    @property
    def discovery(self) -> Discovery:
        return self._discovery

    @property
    def peer_count(self) -> int:
        """Number of outgoing peer connections."""
        with self._peers_lock:
            return len(self._peers)

    @property
    def closed(self) -> bool:
        return self._stop_event.is_set()

    def send(self, topic: str, msg: BytesLike, seq_num: int, timestamp: int) -> None:
        frame = encode_frame(seq_num, timestamp, msg)
        with self._peers_lock:
            for peer in self._peers:
                try:
                    peer.sendall(frame)
                except OSError as exc:
                    logger.error("write to peer failed: %s", exc)
                else:
                    logger.debug("sent seq=%d to a peer", seq_num)

    def set_receive_callback(self, callback: Optional[ReceiveCallback]) -> None:
        self._callback = callback

    def add_peer(self, peer_ip: str, peer_port: int) -> None:
        """Connect to a peer, retrying until it accepts or the transport is closed."""
        logger.info("connecting to peer %s:%d", peer_ip, peer_port)
        while True:
            if self._stop_event.is_set():
                raise RuntimeError("transport is closed")
            sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
            sock.settimeout(CONNECT_TIMEOUT)
            try:
                sock.connect((peer_ip, peer_port))
            except OSError as exc:
                sock.close()
                logger.warning("connect to %s:%d failed, retrying: %s", peer_ip, peer_port, exc)
                self._stop_event.wait(CONNECT_RETRY_INTERVAL)
                continue
            break
        sock.settimeout(None)
        logger.info("connected to peer %s:%d", peer_ip, peer_port)
        with self._peers_lock:
            if self._stop_event.is_set():
                sock.close()
                raise RuntimeError("transport is closed")
            self._peers.append(sock)

    def close(self) -> None:
        if self._stop_event.is_set():
            return
        self._stop_event.set()
        self._server_sock.close()
        self._server_thread.join()
        self._discovery.stop()
        with self._peers_lock:
            for peer in self._peers:
                peer.close()
            self._peers.clear()
        with self._clients_lock:
            threads = list(self._client_threads)
        for thread in threads:
            thread.join()

    def _on_peer_discovered(self, peer_ip: str, peer_port: int) -> None:
        logger.info("new peer: %s:%d", peer_ip, peer_port)
        try:
            self.add_peer(peer_ip, peer_port)
        except RuntimeError as exc:
            logger.info("peer %s:%d not added: %s", peer_ip, peer_port, exc)

    def _server_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                conn, _ = self._server_sock.accept()
            except TimeoutError:
                continue
            except OSError as exc:
                if self._stop_event.is_set():
                    break
                logger.error("accept failed: %s", exc)
                self._stop_event.wait(_POLL_INTERVAL)
                continue
            logger.info("peer connected")
            conn.settimeout(_POLL_INTERVAL)
            thread = threading.Thread(
                target=self._client_recv_loop, args=(conn,), name="p2p-client", daemon=True
            )
            with self._clients_lock:
                self._clients.append(conn)
                self._client_threads.append(thread)
            thread.start()

    def _client_recv_loop(self, conn: socket.socket) -> None:
        try:
            while not self._stop_event.is_set():
                try:
                    data = conn.recv(RECV_SIZE)
                except TimeoutError:
                    continue
                except OSError as exc:
                    if not self._stop_event.is_set():
                        logger.error("read failed: %s", exc)
                    break
                if not data:
                    logger.info("peer disconnected")
                    break
                try:
                    frame = decode_frame(data)
                except ValueError as exc:
                    logger.warning("dropped data: %s", exc)
                    continue
                callback = self._callback
                if callback is not None:
                    callback(self._topic, frame.seq_num, frame.timestamp, frame.payload)
        finally:
            with self._clients_lock:
                if conn in self._clients:
                    self._clients.remove(conn)
            conn.close()