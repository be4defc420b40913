import queue
import socket

import pytest

from meshbus.tcp import TcpTransport
from meshbus.transport import TransportConfig, decode_frame, encode_frame, map_topic_to_port


def _raw_client(topic):
    sock = socket.create_connection(("127.0.0.1", map_topic_to_port(topic)), timeout=5)
    return sock


def test_client_to_server_delivery():
    topic = "meshbus_tcp_delivery_test"
    received = queue.Queue()
    config = TransportConfig()
    with TcpTransport(config, topic, True) as server:
        server.set_receive_callback(lambda *frame: received.put(frame))
        with TcpTransport(config, topic, False) as client:
            client.send(topic, b"pose", 3, 99)
            frame = received.get(timeout=5)
    assert frame == (topic, 3, 99, b"pose")


def test_all_callbacks_invoked():
    topic = "meshbus_tcp_callbacks_test"
    first = queue.Queue()
    second = queue.Queue()
    config = TransportConfig()
    with TcpTransport(config, topic, True) as server:
        server.add_receive_callback(lambda *frame: first.put(frame))
        server.set_receive_callback(lambda *frame: second.put(frame))
        with TcpTransport(config, topic, False) as client:
            client.send(topic, b"abc", 1, 2)
            assert first.get(timeout=5) == second.get(timeout=5)


def test_server_cannot_send():
    topic = "meshbus_tcp_server_send_test"
    with TcpTransport(TransportConfig(), topic, True) as server:
        with pytest.raises(RuntimeError):
            server.send(topic, b"x", 0, 0)


def test_short_data_is_dropped():
    topic = "meshbus_tcp_short_test"
    received = queue.Queue()
    with TcpTransport(TransportConfig(), topic, True) as server:
        server.set_receive_callback(lambda *frame: received.put(frame))
        with _raw_client(topic) as raw:
            raw.sendall(b"\x01\x02")
            with pytest.raises(queue.Empty):
                received.get(timeout=0.5)
            raw.sendall(encode_frame(5, 6, b"ok"))
            assert received.get(timeout=5) == (topic, 5, 6, b"ok")


def test_close_twice_leaves_port_free():
    topic = "meshbus_tcp_close_test"
    server = TcpTransport(TransportConfig(), topic, True)
    server.close()
    server.close()
    with TcpTransport(TransportConfig(), topic, True) as again:
        with pytest.raises(RuntimeError):
            again.send(topic, b"", 0, 0)