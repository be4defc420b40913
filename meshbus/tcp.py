"""TCP transport with a server that relays between connected clients."""

from __future__ import annotations

import logging
import socket
import threading
import time
from dataclasses import replace
from typing import List, Optional

from .transport import (
    RECV_SIZE,
    BytesLike,
    Frame,
    ReceiveCallback,
    Transport,
    TransportConfig,
    decode_frame,
    encode_frame,
    map_topic_to_port,
)

logger = logging.getLogger(__name__)

LISTEN_BACKLOG = 10
CONNECT_RETRY_INTERVAL = 0.5
_POLL_INTERVAL = 0.2


class TcpTransport(Transport):
    """A TCP server or client on the port of one topic.

    The server delivers frames from each client to its callbacks and relays them to
    the other connected clients. The client only sends.
    """

    def __init__(self, config: TransportConfig, topic: str, is_server: bool):
        self._config = replace(config)
        self._topic = topic
        self._is_server = is_server
        self._stop_event = threading.Event()
        self._callbacks: List[ReceiveCallback] = []
        self._callbacks_lock = threading.Lock()
        self._clients: List[socket.socket] = []
        self._client_threads: List[threading.Thread] = []
        self._clients_lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None

        port = map_topic_to_port(topic)
        if is_server:
            self._sock = self._listen(port)
            logger.info("listening on port %d for topic %s", port, topic)
            self._thread = threading.Thread(
                target=self._server_loop, name="tcp-accept", daemon=True
            )
            self._thread.start()
        else:
            self._sock = self._connect(config.iface_ip, port)

    @staticmethod
    def _listen(port: int) -> socket.socket:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind(("", port))
            sock.listen(LISTEN_BACKLOG)
            sock.settimeout(_POLL_INTERVAL)
        except BaseException:
            sock.close()
            raise
        return sock

    @staticmethod
    def _connect(host: str, port: int) -> socket.socket:
        logger.info("connecting to %s port %d", host, port)
        while True:
            sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
            try:
                sock.connect((host, port))
            except OSError as exc:
                sock.close()
                logger.warning("connect failed, retrying: %s", exc)
                time.sleep(CONNECT_RETRY_INTERVAL)
                continue
            logger.info("connected to %s port %d", host, port)
            return sock

    def send(self, topic: str, msg: BytesLike, seq_num: int, timestamp: int) -> None:
        if self._is_server:
            raise RuntimeError("a TCP server transport cannot send")
        frame = encode_frame(seq_num, timestamp, msg)
        try:
            self._sock.sendall(frame)
        except OSError as exc:
            logger.error("write failed: %s", exc)
            return
        logger.debug(
            "sent seq=%d to %s port=%d", seq_num, self._config.iface_ip, map_topic_to_port(topic)
        )

    def set_receive_callback(self, callback: ReceiveCallback) -> None:
        self.add_receive_callback(callback)

    def add_receive_callback(self, callback: ReceiveCallback) -> None:
        """Register one more function to receive frames."""
        with self._callbacks_lock:
            self._callbacks.append(callback)
            count = len(self._callbacks)
        logger.info("registered subscriber callback (%d total)", count)

    def close(self) -> None:
        if self._stop_event.is_set():
            return
        self._stop_event.set()
        self._sock.close()
        if self._thread is not None:
            self._thread.join()
        with self._clients_lock:
            threads = list(self._client_threads)
            clients = list(self._clients)
        for thread in threads:
            thread.join()
        for client in clients:
            client.close()

    def _server_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                conn, _ = self._sock.accept()
            except TimeoutError:
                continue
            except OSError as exc:
                if self._stop_event.is_set():
                    break
                logger.error("accept failed: %s", exc)
                self._stop_event.wait(_POLL_INTERVAL)
                continue
            logger.info("client connected")
            conn.settimeout(_POLL_INTERVAL)
            thread = threading.Thread(
                target=self._client_recv_loop, args=(conn,), name="tcp-client", daemon=True
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
                    logger.info("client disconnected")
                    break
                try:
                    frame = decode_frame(data)
                except ValueError as exc:
                    logger.warning("dropped data: %s", exc)
                    continue
                with self._callbacks_lock:
                    callbacks = list(self._callbacks)
                for callback in callbacks:
                    callback(self._topic, frame.seq_num, frame.timestamp, frame.payload)
                self._broadcast(conn, frame)
        finally:
            with self._clients_lock:
                if conn in self._clients:
                    self._clients.remove(conn)
            conn.close()

    def _broadcast(self, sender: socket.socket, frame: Frame) -> None:
        data = encode_frame(frame.seq_num, frame.timestamp, frame.payload)
        with self._clients_lock:
            for client in self._clients:
                if client is sender:
                    continue
                try:
                    client.sendall(data)
                except OSError as exc:
                    logger.error("broadcast write failed: %s", exc)
                else:
                    logger.debug("broadcast seq=%d to a client", frame.seq_num)