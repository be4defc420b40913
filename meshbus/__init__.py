"""Publish/subscribe and request/response middleware over TCP and UDP with multicast peer discovery."""

__version__ = "0.1.0"

__all__ = [
    "discovery",
    "examples",
    "manager",
    "messages",
    "node",
    "p2p",
    "pubsub",
    "service",
    "tcp",
    "transport",
    "udp",
]