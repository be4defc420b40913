from types import SimpleNamespace

import pytest

from meshbus.messages import ServiceHeader, SumRequest, SumResponse, deserialize, serialize, unpack_from
from meshbus.pubsub import current_time_us
from meshbus.service import ServiceClient, ServiceServer, TypedServiceClient
from meshbus.transport import Transport


class LoopbackTransport(Transport):
    def __init__(self):
        self.callback = None
        self.sent = []

    def send(self, topic, msg, seq_num, timestamp):
        payload = bytes(msg)
        self.sent.append((topic, seq_num, payload))
        if self.callback is not None:
            self.callback(topic, seq_num, timestamp, payload)

    def set_receive_callback(self, callback):
        self.callback = callback


class FakeManager:
    def __init__(self):
        self.transports = {}

    def get_transport(self, topic):
        return self.transports.setdefault(topic, LoopbackTransport())


@pytest.fixture
def node():
    return SimpleNamespace(transport_manager=FakeManager())


def deliver(transport, payload):
    transport.callback("topic", 0, current_time_us(), payload)


def echo(req):
    return SumResponse(sum=req.num1)


def test_client_uses_request_and_response_topics(node):
    ServiceClient(node, "sum", SumRequest, SumResponse)
    assert set(node.transport_manager.transports) == {"sum/request", "sum/response"}


def test_call_sends_header_then_body(node):
    client = ServiceClient(node, "sum", SumRequest, SumResponse)
    request_id = client.call(SumRequest(3, 4))
    [(topic, _, payload)] = node.transport_manager.transports["sum/request"].sent
    assert topic == "sum/request"
    assert payload == serialize(ServiceHeader(request_id)) + serialize(SumRequest(3, 4))
    header, offset = unpack_from(ServiceHeader, payload)
    assert header.request_id == 1
    assert deserialize(SumRequest, payload[offset:]) == SumRequest(3, 4)


def test_request_ids_increase_from_one(node):
    client = ServiceClient(node, "sum", SumRequest, SumResponse)
    ids = [client.call(SumRequest(0, 0)) for _ in range(2)]
    assert ids == [1, 2]


def test_round_trip_with_server(node):
    ServiceServer(node, "sum", SumRequest, SumResponse, echo)
    client = ServiceClient(node, "sum", SumRequest, SumResponse)
    client.call(SumRequest(42, 1))
    assert client.wait_for_response(0) is True
    assert client.get_latest_response() == SumResponse(42)


def test_callback_receives_matching_response(node):
    ServiceServer(node, "sum", SumRequest, SumResponse, echo)
    client = ServiceClient(node, "sum", SumRequest, SumResponse)
    received = []
    client.call(SumRequest(42, 1), received.append)
    assert received == [SumResponse(42)]


def test_timeout_without_server(node):
    client = ServiceClient(node, "sum", SumRequest, SumResponse)
    client.call(SumRequest(1, 2))
    assert client.wait_for_response(20) is False
    assert client.get_latest_response() == SumResponse()


def test_response_with_other_id_is_ignored(node):
    client = ServiceClient(node, "sum", SumRequest, SumResponse)
    request_id = client.call(SumRequest(1, 2))
    response_transport = node.transport_manager.transports["sum/response"]
    deliver(response_transport, serialize(ServiceHeader(request_id + 98)) + serialize(SumResponse(5)))
    assert client.wait_for_response(0) is False
    deliver(response_transport, serialize(ServiceHeader(request_id)) + serialize(SumResponse(5)))
    assert client.wait_for_response(0) is True
    assert client.get_latest_response() == SumResponse(5)


def test_short_response_is_dropped(node):
    client = ServiceClient(node, "sum", SumRequest, SumResponse)
    client.call(SumRequest(1, 2))
    deliver(node.transport_manager.transports["sum/response"], b"\x01")
    assert client.wait_for_response(0) is False


def test_new_call_forgets_previous_response(node):
    client = ServiceClient(node, "sum", SumRequest, SumResponse)
    request_id = client.call(SumRequest(1, 2))
    deliver(
        node.transport_manager.transports["sum/response"],
        serialize(ServiceHeader(request_id)) + serialize(SumResponse(5)),
    )
    assert client.get_latest_response() == SumResponse(5)
    client.call(SumRequest(1, 2))
    assert client.get_latest_response() == SumResponse()


def test_server_replies_with_request_id(node):
    ServiceServer(node, "sum", SumRequest, SumResponse, echo)
    deliver(
        node.transport_manager.transports["sum/request"],
        serialize(ServiceHeader(7)) + serialize(SumRequest(9, 0)),
    )
    [(topic, _, payload)] = node.transport_manager.transports["sum/response"].sent
    assert topic == "sum/response"
    header, offset = unpack_from(ServiceHeader, payload)
    assert header.request_id == 7
    assert deserialize(SumResponse, payload[offset:]) == SumResponse(9)


def test_failing_handler_sends_no_reply(node):
    def broken(req):
        raise ArithmeticError("boom")

    ServiceServer(node, "sum", SumRequest, SumResponse, broken)
    deliver(
        node.transport_manager.transports["sum/request"],
        serialize(ServiceHeader(3)) + serialize(SumRequest(1, 1)),
    )
    assert node.transport_manager.transports["sum/response"].sent == []


def test_wait_for_service_succeeds(node):
    client = ServiceClient(node, "sum", SumRequest, SumResponse)
    assert client.wait_for_service(10) is True


def test_typed_client_round_trip(node):
    ServiceServer(node, "sum", SumRequest, SumResponse, echo)
    client = TypedServiceClient(node, "sum", SumRequest, SumResponse)
    assert client.get_latest_response() == SumResponse()
    client.call(SumRequest(11, 5))
    assert client.wait_for_response(0) is True
    assert client.get_latest_response() == SumResponse(11)


def test_typed_client_timeout_without_server(node):
    client = TypedServiceClient(node, "sum", SumRequest, SumResponse)
    client.call(SumRequest(11, 5))
    assert client.wait_for_response(10) is False


def test_node_without_manager_is_rejected():
    bare = SimpleNamespace(transport_manager=None)
    with pytest.raises(RuntimeError):
        ServiceClient(bare, "sum", SumRequest, SumResponse)
    with pytest.raises(RuntimeError):
        ServiceServer(bare, "sum", SumRequest, SumResponse, echo)