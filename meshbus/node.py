"""Nodes: the entry point for creating publishers, subscribers and services."""

from __future__ import annotations

from typing import Callable, Optional, Type, TypeVar

from .manager import TransportManager
from .pubsub import Publisher, Subscriber, TypedSubscriber
from .service import ServiceClient, ServiceServer, TypedServiceClient
from .transport import Transport, TransportConfig

M = TypeVar("M")
Req = TypeVar("Req")
Resp = TypeVar("Resp")


class Node:
    """A named participant that creates endpoints on its transports.

    Given a ``config`` (or nothing) the node owns a :class:`TransportManager` that
    creates a transport per topic. Given a ``transport`` every topic uses that one
    transport; services need a transport manager and are not available then.
    """

    def __init__(
        self,
        name: str,
        config: Optional[TransportConfig] = None,
        transport: Optional[Transport] = None,
    ):
        if config is not None and transport is not None:
            raise ValueError("give a node either a config or a transport, not both")
        self.name = name
        self.transport = transport
        self.transport_manager: Optional[TransportManager] = None
        if transport is None:
            self.transport_manager = TransportManager(
                config if config is not None else TransportConfig()
            )

    def _transport_for(self, topic: str) -> Transport:
        if self.transport_manager is not None:
            return self.transport_manager.get_transport(topic)
        return self.transport

    def create_publisher(self, topic: str) -> Publisher:
        return Publisher(topic, self._transport_for(topic))

    def create_subscriber(self, topic: str, callback: Callable[[int, int, bytes], None]) -> Subscriber:
        return Subscriber(topic, self._transport_for(topic), callback)

    def create_typed_subscriber(self, message_type: Type[M], topic: str) -> TypedSubscriber[M]:
        return TypedSubscriber(self, topic, message_type)

    def create_service_client(
        self, service_name: str, request_type: Type[Req], response_type: Type[Resp]
    ) -> ServiceClient[Req, Resp]:
        return ServiceClient(self, service_name, request_type, response_type)

    def create_service_server(
        self,
        service_name: str,
        request_type: Type[Req],
        response_type: Type[Resp],
        handler: Callable[[Req], Resp],
    ) -> ServiceServer[Req, Resp]:
        return ServiceServer(self, service_name, request_type, response_type, handler)

    def create_typed_service_client(
        self, service_name: str, request_type: Type[Req], response_type: Type[Resp]
    ) -> TypedServiceClient[Req, Resp]:
        return TypedServiceClient(self, service_name, request_type, response_type)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if self.transport_manager is not None:
            self.transport_manager.close()
        if self.transport is not None:
            self.transport.close()