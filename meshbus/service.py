"""Request/response services built from a request topic and a response topic."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import replace
from typing import Any, Callable, Generic, Optional, Type, TypeVar

from .messages import ServiceHeader, serialize, unpack_from
from .pubsub import Publisher, Subscriber

logger = logging.getLogger(__name__)

Req = TypeVar("Req")
Resp = TypeVar("Resp")

ResponseCallback = Callable[[Any], None]

_ID_MASK = 0xFFFFFFFF
_POLL_INTERVAL = 0.01


def _request_topic(service_name: str) -> str:
    return f"{service_name}/request"


def _response_topic(service_name: str) -> str:
    return f"{service_name}/response"


def _manager_of(node):
    manager = getattr(node, "transport_manager", None)
    if manager is None:
        raise RuntimeError("services need a node that owns a transport manager")
    return manager


def _compose(request_id: int, body) -> bytes:
    return serialize(ServiceHeader(request_id)) + serialize(body)


class ServiceClient(Generic[Req, Resp]):
    """Sends numbered requests and keeps the response that answers the latest one."""

    def __init__(self, node, service_name: str, request_type: Type[Req], response_type: Type[Resp]):
        manager = _manager_of(node)
        self.node = node
        self.service_name = service_name
        self.request_type = request_type
        self.response_type = response_type

        self._lock = threading.Lock()
        self._response_ready = threading.Condition(self._lock)
        self._latest: Optional[Resp] = None
        self._request_counter = 1
        self._expected_id = 0
        self._callback_lock = threading.Lock()
        self._callback: Optional[ResponseCallback] = None

        request_transport = manager.get_transport(_request_topic(service_name))
        response_transport = manager.get_transport(_response_topic(service_name))
        self._request_pub = Publisher(_request_topic(service_name), request_transport)
        self._response_sub = Subscriber(
            _response_topic(service_name), response_transport, self._on_response
        )

    def call(self, request: Req, callback: Optional[ResponseCallback] = None) -> int:
        """Send a request and return its id.

        A given ``callback`` replaces the previous one and is called with each
        response that answers the latest request.
        """
        with self._lock:
            self._latest = None
            request_id = self._request_counter
            self._request_counter = (request_id + 1) & _ID_MASK
            self._expected_id = request_id
        if callback is not None:
            with self._callback_lock:
                self._callback = callback
        self._request_pub.publish_raw(_compose(request_id, request))
        logger.info("sent request ID=%d", request_id)
        return request_id

    def wait_for_response(self, timeout_ms: int = 1000) -> bool:
        """Wait until the latest request has been answered."""
        with self._response_ready:
            return self._response_ready.wait_for(
                lambda: self._latest is not None, timeout=timeout_ms / 1000
            )

    def wait_for_service(self, timeout_ms: int = 2000) -> bool:
        """Wait until both service topics have peers."""
        deadline = time.monotonic() + timeout_ms / 1000
        while True:
            if self._request_pub.has_peers() and self._response_sub.has_peers():
                return True
            if time.monotonic() > deadline:
                return False
            time.sleep(_POLL_INTERVAL)

    def get_latest_response(self) -> Resp:
        """Return the answer to the latest request, or a default response."""
        with self._lock:
            if self._latest is None:
                return self.response_type()
            return replace(self._latest)

    def _on_response(self, seq_num: int, latency_us: int, payload: bytes) -> None:
        try:
            header, offset = unpack_from(ServiceHeader, payload)
            response, _ = unpack_from(self.response_type, payload, offset)
        except ValueError as exc:
            logger.warning("dropped response on %s: %s", self.service_name, exc)
            return
        with self._lock:
            match = header.request_id == self._expected_id
            if match:
                self._latest = response
                self._response_ready.notify_all()
        logger.info(
            "received response ID=%d latency=%d us %s",
            header.request_id,
            latency_us,
            "[MATCH]" if match else "[IGNORED]",
        )
        with self._callback_lock:
            callback = self._callback
        if match and callback is not None:
            callback(replace(response))


class ServiceServer(Generic[Req, Resp]):
    """Answers each request with what ``handler`` returns, under the request's id."""

    def __init__(
        self,
        node,
        service_name: str,
        request_type: Type[Req],
        response_type: Type[Resp],
        handler: Callable[[Req], Resp],
    ):
        manager = _manager_of(node)
        self.node = node
        self.service_name = service_name
        self.request_type = request_type
        self.response_type = response_type
        self.handler = handler

        request_transport = manager.get_transport(_request_topic(service_name))
        response_transport = manager.get_transport(_response_topic(service_name))
        self._response_pub = Publisher(_response_topic(service_name), response_transport)
        self._request_sub = Subscriber(
            _request_topic(service_name), request_transport, self._on_request
        )

    def _on_request(self, seq_num: int, latency_us: int, payload: bytes) -> None:
        try:
            header, offset = unpack_from(ServiceHeader, payload)
            request, _ = unpack_from(self.request_type, payload, offset)
        except ValueError as exc:
            logger.warning("dropped request on %s: %s", self.service_name, exc)
            return
        try:
            reply = _compose(header.request_id, self.handler(request))
        except Exception:
            logger.exception("handler for %s failed", self.service_name)
            return
        self._response_pub.publish_raw(reply)
        logger.info("replied to request ID=%d", header.request_id)


class TypedServiceClient(Generic[Req, Resp]):
    """A service client that keeps the responses delivered to it through its callback."""

    def __init__(self, node, service_name: str, request_type: Type[Req], response_type: Type[Resp]):
        self.response_type = response_type
        self._client: ServiceClient[Req, Resp] = ServiceClient(
            node, service_name, request_type, response_type
        )
        self._lock = threading.Lock()
        self._response_ready = threading.Condition(self._lock)
        self._latest: Optional[Resp] = None

    def call(self, request: Req) -> int:
        """Send a request and forget any earlier response."""
        with self._lock:
            self._latest = None
        return self._client.call(request, self._on_response)

    def wait_for_response(self, timeout_ms: int = 1000) -> bool:
        with self._response_ready:
            return self._response_ready.wait_for(
                lambda: self._latest is not None, timeout=timeout_ms / 1000
            )

    def get_latest_response(self) -> Resp:
        with self._lock:
            if self._latest is None:
                return self.response_type()
            return replace(self._latest)

    def _on_response(self, response: Resp) -> None:
        with self._lock:
            self._latest = response
            self._response_ready.notify_all()