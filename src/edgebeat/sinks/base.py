"""
Push sink interface.

The scheduler hands every serialized snapshot to each configured sink once.
Delivery is best-effort: a sink reports failure by raising PublishError and
the scheduler logs it and moves on. Reconnects and backoff belong inside
the sink, and must never hold up the caller past `timeout`.
"""

from abc import ABC, abstractmethod


class PublishError(RuntimeError):
    """A snapshot could not be delivered by a sink."""


class PublishSink(ABC):

    @abstractmethod
    def publish(self, payload: bytes, timeout: float) -> None:
        """Deliver one payload, giving up after `timeout` seconds."""
        ...

    @abstractmethod
    def name(self) -> str:
        """Human-readable name for logs."""
        ...

    def close(self):
        pass
