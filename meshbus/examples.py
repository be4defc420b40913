"""Runnable demonstrations of publish/subscribe and services over each transport."""

from __future__ import annotations

import argparse
import itertools
import time
from contextlib import ExitStack
from typing import Iterable, List, Optional, Sequence, Tuple

from .messages import Pose, SumRequest, SumResponse, serialize
from .node import Node
from .pubsub import Publisher, TypedSubscriber
from .tcp import TcpTransport
from .transport import TransportConfig
from .udp import UdpTransport

POSE_TOPIC = "pose_topic"
SUM_SERVICE = "sum_service"
PUBLISH_INTERVAL = 0.5
RESPONSE_TIMEOUT_MS = 500
CALL_INTERVAL = 2.0
SERVER_TICK = 1.0
LOCALHOST = "127.0.0.1"

PoseHistory = List[Tuple[Pose, Pose]]


def _counts(iterations: Optional[int]) -> Iterable[int]:
    return itertools.count() if iterations is None else range(iterations)


def _make_pose(count: int) -> Pose:
    return Pose(x=count * 1.0, y=count * 2.0, theta=count * 0.1)


def _describe(pose: Pose) -> str:
    return f"x={pose.x:g} y={pose.y:g} theta={pose.theta:g}"


def _pub_sub_loop(
    label: str, pub: Publisher, sub: TypedSubscriber, iterations: Optional[int]
) -> PoseHistory:
    history: PoseHistory = []
    for count in _counts(iterations):
        msg = _make_pose(count)
        pub.publish_raw(serialize(msg))
        print(f"[{label}Publisher] Pose {_describe(msg)}", flush=True)
        time.sleep(PUBLISH_INTERVAL)
        latest = sub.get_latest()
        print(f"[{label}Subscriber] Latest Pose {_describe(latest)}", flush=True)
        history.append((msg, latest))
    return history


def run_pub_sub(iterations: Optional[int] = None) -> PoseHistory:
    """Publish poses and read them back through peer-to-peer transports."""
    with Node("example_pub_sub", TransportConfig()) as node:
        pub = node.create_publisher(POSE_TOPIC)
        sub = node.create_typed_subscriber(Pose, POSE_TOPIC)
        return _pub_sub_loop("", pub, sub, iterations)


def run_tcp_pub_sub(iterations: Optional[int] = None) -> PoseHistory:
    """Publish poses from a TCP client to a TCP server on localhost."""
    config = TransportConfig(iface_ip=LOCALHOST)
    with ExitStack() as stack:
        server = stack.enter_context(TcpTransport(config, POSE_TOPIC, True))
        client = stack.enter_context(TcpTransport(config, POSE_TOPIC, False))
        node = Node("tcp_server_node", transport=server)
        sub = node.create_typed_subscriber(Pose, POSE_TOPIC)
        pub = Publisher(POSE_TOPIC, client)
        return _pub_sub_loop("TCP ", pub, sub, iterations)


def run_udp_pub_sub(iterations: Optional[int] = None) -> PoseHistory:
    """Publish poses over unicast UDP to a receiver bound to the topic's port."""
    config = TransportConfig(iface_ip=LOCALHOST, use_multicast=False)
    with ExitStack() as stack:
        pub_transport = stack.enter_context(UdpTransport(config))
        sub_transport = stack.enter_context(UdpTransport(config, POSE_TOPIC))
        pub = Publisher(POSE_TOPIC, pub_transport)
        node = Node("udp_node", transport=sub_transport)
        sub = node.create_typed_subscriber(Pose, POSE_TOPIC)
        return _pub_sub_loop("UDP ", pub, sub, iterations)


def run_service_client(
    iterations: Optional[int] = None,
) -> List[Tuple[SumRequest, Optional[SumResponse]]]:
    """Call the sum service repeatedly; each result is None when it timed out."""
    results: List[Tuple[SumRequest, Optional[SumResponse]]] = []
    with Node("example_service_client", TransportConfig()) as node:
        client = node.create_typed_service_client(SUM_SERVICE, SumRequest, SumResponse)
        for count in _counts(iterations):
            if count:
                time.sleep(CALL_INTERVAL)
            request = SumRequest(num1=count, num2=count + 10)
            client.call(request)
            if client.wait_for_response(RESPONSE_TIMEOUT_MS):
                response = client.get_latest_response()
                print(f"[Client] {request.num1} + {request.num2} = {response.sum}", flush=True)
                results.append((request, response))
            else:
                print("[Client] Timeout waiting for response.", flush=True)
                results.append((request, None))
    return results


def run_service_server(duration: Optional[float] = None) -> int:
    """Serve the sum service for ``duration`` seconds (forever if None); return requests served."""
    served: List[SumRequest] = []

    def handle(request: SumRequest) -> SumResponse:
        response = SumResponse(sum=request.num1 + request.num2)
        print(f"[Server] Received: {request.num1} + {request.num2} = {response.sum}", flush=True)
        served.append(request)
        return response

    with Node("example_service_server", TransportConfig()) as node:
        node.create_service_server(SUM_SERVICE, SumRequest, SumResponse, handle)
        deadline = None if duration is None else time.monotonic() + duration
        while True:
            if deadline is None:
                time.sleep(SERVER_TICK)
                continue
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            time.sleep(min(SERVER_TICK, remaining))
    return len(served)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="meshbus-examples", description=__doc__)
    commands = parser.add_subparsers(dest="command", required=True)
    for name in ("pub_sub", "tcp_pub_sub", "udp_pub_sub", "service_client"):
        sub = commands.add_parser(name)
        sub.add_argument("--iterations", type=int, default=None, help="stop after this many rounds")
    server = commands.add_parser("service_server")
    server.add_argument("--duration", type=float, default=None, help="serve for this many seconds")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = _build_parser().parse_args(argv)
    runners = {
        "pub_sub": run_pub_sub,
        "tcp_pub_sub": run_tcp_pub_sub,
        "udp_pub_sub": run_udp_pub_sub,
        "service_client": run_service_client,
    }
    try:
        if args.command == "service_server":
            run_service_server(args.duration)
        else:
            runners[args.command](args.iterations)
    except KeyboardInterrupt:
        pass
    return 0


if __name__ == "__main__":
    raise SystemExit(main())