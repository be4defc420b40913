import pytest

from meshbus.messages import Pose, SumRequest, SumResponse, serialize
from meshbus.node import Node
from meshbus.transport import Transport, TransportConfig


class LoopbackTransport(Transport):
    def __init__(self):
        self.callback = None
        self.sent = []
        self.closed = False

    def send(self, topic, msg, seq_num, timestamp):
        payload = bytes(msg)
        self.sent.append((topic, seq_num, payload))
        if self.callback is not None:
            self.callback(topic, seq_num, timestamp, payload)

    def set_receive_callback(self, callback):
        self.callback = callback

    def close(self):
        self.closed = True


@pytest.fixture
def transport():
    return LoopbackTransport()


def test_publisher_reaches_subscriber(transport):
    node = Node("talker", transport=transport)
    received = []
    node.create_subscriber("chat", lambda seq, latency, payload: received.append((seq, payload)))
    pub = node.create_publisher("chat")
    pub.publish_raw(b"abc")
    pub.publish("hi")
    assert received == [(0, b"abc"), (1, b"hi")]
    assert [topic for topic, _, _ in transport.sent] == ["chat", "chat"]


def test_typed_subscriber_keeps_latest(transport):
    node = Node("poses", transport=transport)
    sub = node.create_typed_subscriber(Pose, "pose_topic")
    assert sub.get_latest() == Pose()
    node.create_publisher("pose_topic").publish_raw(serialize(Pose(1.5, -2.0, 0.25)))
    assert sub.get_latest() == Pose(1.5, -2.0, 0.25)


def test_name_is_kept(transport):
    assert Node("example_pub_sub", transport=transport).name == "example_pub_sub"


def test_config_and_transport_together_rejected(transport):
    with pytest.raises(ValueError):
        Node("both", TransportConfig(), transport)


def test_transport_node_has_no_services(transport):
    node = Node("plain", transport=transport)
    assert node.transport_manager is None
    with pytest.raises(RuntimeError):
        node.create_service_client("sum", SumRequest, SumResponse)
    with pytest.raises(RuntimeError):
        node.create_typed_service_client("sum", SumRequest, SumResponse)
    with pytest.raises(RuntimeError):
        node.create_service_server("sum", SumRequest, SumResponse, lambda r: SumResponse())


def test_config_node_owns_manager():
    config = TransportConfig(iface_ip="10.0.0.5")
    with Node("managed", config) as node:
        assert node.transport is None
        assert node.transport_manager.config == config
        assert node.transport_manager.topics == []


def test_default_config_node():
    with Node("defaults") as node:
        assert node.transport_manager.config == TransportConfig()


def test_context_exit_closes_transport(transport):
    with Node("closer", transport=transport):
        assert transport.closed is False
    assert transport.closed is True