"""MQTT package for the cold-chain monitor.

Keeps a validated device snapshot in sync with the broker and issues commands:
- session.py: TransportSession with connection lifecycle and reconnect backoff
- synchronizer.py: Deduplication, payload parsing and state merge
- commands.py: Command intents to publishes, with one reconnect grace period
- payloads.py: Inbound payload variants and field resolution
- dedup.py: Recently seen (topic, payload) pairs
- retry_policy.py: Exponential reconnect backoff
"""

from .commands import CommandDispatcher, CommandOutcome, DeviceCommand
from .session import SessionListener, TransportSession
from .synchronizer import StateSynchronizer

__all__ = [
    "CommandDispatcher",
    "CommandOutcome",
    "DeviceCommand",
    "SessionListener",
    "StateSynchronizer",
    "TransportSession",
]
