import pytest

from meshbus.manager import TransportManager
from meshbus.transport import TransportConfig


@pytest.fixture
def manager():
    mgr = TransportManager(TransportConfig())
    yield mgr
    mgr.close()


def test_same_topic_returns_same_transport(manager):
    first = manager.get_transport("sum_service/request")
    second = manager.get_transport("sum_service/request")
    assert first is second
    assert manager.topics == ["sum_service/request"]


def test_different_topics_get_different_transports(manager):
    a = manager.get_transport("topic_a")
    b = manager.get_transport("topic_b")
    assert a is not b
    assert a.topic == "topic_a"
    assert b.topic == "topic_b"
    assert a.listen_port != b.listen_port


def test_discovery_started_on_creation(manager):
    transport = manager.get_transport("topic_c")
    assert transport.discovery.running is True


def test_close_stops_transports():
    mgr = TransportManager(TransportConfig())
    transport = mgr.get_transport("topic_d")
    mgr.close()
    assert transport.closed is True
    assert transport.discovery.running is False
    assert mgr.topics == []


def test_context_manager_closes():
    with TransportManager(TransportConfig()) as mgr:
        transport = mgr.get_transport("topic_e")
    assert transport.closed is True
    with pytest.raises(RuntimeError):
        transport.add_peer("127.0.0.1", transport.listen_port)


def test_config_is_copied():
    config = TransportConfig(iface_ip="127.0.0.1")
    mgr = TransportManager(config)
    try:
        config.iface_ip = "10.0.0.1"
        assert mgr.config.iface_ip == "127.0.0.1"
    finally:
        mgr.close()