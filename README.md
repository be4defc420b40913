# meshbus

A small publish/subscribe and request/response middleware for Python.
Nodes exchange fixed-layout binary messages over TCP or UDP. Peers that
share a topic find each other by multicast announcements and connect
directly over TCP.

It depends on nothing outside the standard library.

## Installing

```
pip install .
```

With the test tools:

```
pip install ".[test]"
```

## Modules

- `meshbus.transport` – the `Transport` base class, `TransportConfig`
  (`iface_ip`, `multicast_addr`, `use_multicast`, `dynamic_port`), the
  frame format (`encode_frame`, `decode_frame`, `Frame`) and
  `map_topic_to_port`, which maps a topic name to a port in 9000–9999 with
  a hash that is the same in every process.
- `meshbus.messages` – the message types `Pose`, `SumRequest`,
  `SumResponse`, `MyServiceRequest`, `MyServiceResponse` and
  `ServiceHeader`, with `serialize`, `deserialize` and `unpack_from`.
- `meshbus.discovery` – `Discovery`, which announces
  `HELLO:<topic>:<port>` to the multicast group 239.255.0.1 on port 9999
  once a second and calls a peer callback once for each new peer of the
  same topic; `format_announcement` and `parse_announcement`.
- `meshbus.p2p` – `PeerToPeerTcpTransport`: listens on an ephemeral port,
  connects to each peer that its discovery reports, and sends every frame
  to all connected peers.
- `meshbus.tcp` – `TcpTransport`: either a server on the topic's port,
  which hands each received frame to all of its callbacks and relays it to
  the other connected clients, or a client, which only sends. A server
  raises `RuntimeError` from `send`.
- `meshbus.udp` – `UdpTransport`: sends each frame to the port of its
  topic, unicast to `iface_ip` or, with `use_multicast` on a non-loopback
  interface, to `multicast_addr`. Given a `bind_topic` it receives on that
  topic's port.
- `meshbus.manager` – `TransportManager`: one `PeerToPeerTcpTransport` per
  topic, created on first use with its discovery started.
- `meshbus.pubsub` – `Publisher`, `Subscriber`, `TypedSubscriber` and
  `current_time_us`.
- `meshbus.service` – `ServiceServer`, `ServiceClient` and
  `TypedServiceClient`.
- `meshbus.node` – `Node`, the usual entry point.
- `meshbus.examples` – the demo programs behind `meshbus-examples`.

## Frames and messages

Every frame on the wire is a little-endian 32-bit sequence number, a
64-bit timestamp in microseconds, then the payload. A payload may be at
most 1487 bytes; `encode_frame` raises `ValueError` beyond that, and
`decode_frame` raises `ValueError` for data shorter than the header.

Messages are dataclasses with a fixed binary layout:

```python
from meshbus.messages import Pose, deserialize, serialize

data = serialize(Pose(x=1.0, y=2.0, theta=0.5))   # 12 bytes, three floats
pose = deserialize(Pose, data)
```

`unpack_from(message_type, buffer, offset)` returns the message and the
offset just past it; a buffer too short for the message raises
`ValueError`.

## Publishing and subscribing

```python
import time

from meshbus.messages import Pose, serialize
from meshbus.node import Node
from meshbus.transport import TransportConfig

with Node("pose_demo", config=TransportConfig()) as node:
    publisher = node.create_publisher("pose_topic")
    subscriber = node.create_typed_subscriber(Pose, "pose_topic")

    publisher.publish_raw(serialize(Pose(x=1.0, y=2.0, theta=0.1)))
    time.sleep(0.5)
    print(subscriber.get_latest())
```

`Publisher` numbers its messages from zero; `publish` takes text (sent as
UTF-8) or bytes, `publish_raw` takes bytes. A `Subscriber` callback is
called as `callback(seq_num, latency_us, payload)`. A `TypedSubscriber`
keeps the latest decoded message and returns a default-valued one until
something has arrived.

## Services

A service uses two topics, `<service>/request` and `<service>/response`.
Each request and response starts with a `ServiceHeader` holding the
request id.

A server answers requests with a handler:

```python
from meshbus.messages import SumRequest, SumResponse
from meshbus.node import Node
from meshbus.transport import TransportConfig

node = Node("sum_server", config=TransportConfig())
server = node.create_service_server(
    "sum_service",
    SumRequest,
    SumResponse,
    lambda request: SumResponse(sum=request.num1 + request.num2),
)
```

A client sends a request and waits for the reply that carries its id;
replies to earlier requests are ignored:

```python
node = Node("sum_client", config=TransportConfig())
client = node.create_typed_service_client("sum_service", SumRequest, SumResponse)

client.call(SumRequest(num1=2, num2=12))
if client.wait_for_response(500):
    print(client.get_latest_response().sum)
```

`ServiceClient.call` returns the request id and takes an optional callback
for matching responses. Services need a node built from a config; a node
built around a single transport raises `RuntimeError` when asked for one.

## Choosing a transport directly

A node can also be built around one transport of your choosing, which it
then uses for every topic:

```python
from meshbus.node import Node
from meshbus.transport import TransportConfig
from meshbus.udp import UdpTransport

config = TransportConfig(iface_ip="127.0.0.1", use_multicast=False)
with UdpTransport(config, "pose_topic") as receiving:
    node = Node("udp_node", transport=receiving)
```

Transports, transport managers and nodes hold sockets and threads; use
them as context managers or call `close()` when done.

## Demo programs

```
meshbus-examples --help
meshbus-examples pub_sub --iterations 5
meshbus-examples tcp_pub_sub --iterations 5
meshbus-examples udp_pub_sub --iterations 5
meshbus-examples service_server --duration 30
meshbus-examples service_client --iterations 5
```

Without `--iterations` or `--duration` a demo runs until interrupted. The
same demos are available as `run_pub_sub`, `run_tcp_pub_sub`,
`run_udp_pub_sub`, `run_service_client` and `run_service_server` in
`meshbus.examples`.

## What it does not do

- There is no peer tracking: `has_peers` always returns `True`, so
  `ServiceClient.wait_for_service` returns at once, and peers that go away
  are not removed.
- TCP streams are not split into frames: each read of up to 1499 bytes is
  taken as one frame, so frames that arrive together or in pieces are not
  separated or joined again.
- Messages are not queued: a typed subscriber or service client keeps only
  the latest one.

## Running the tests

```
pytest
```