"""Interface between the UDS application layer and a transport layer."""

from __future__ import annotations

import abc
import enum
from dataclasses import dataclass

NOOP_ADDR = 0xFFFFFFFF


class TpStatus(enum.IntFlag):
    """Transport layer status flags."""

    IDLE = 0x0
    SEND_IN_PROGRESS = 0x1
    RECV_COMPLETE = 0x2


class MessageType(enum.IntEnum):
    """Application message type."""

    DIAG = 0
    REMOTE_DIAG = 1
    SECURE_DIAG = 2
    SECURE_REMOTE_DIAG = 3


class TargetAddressType(enum.IntEnum):
    """Target addressing: physical (1:1) or functional (multicast)."""

    PHYSICAL = 0
    FUNCTIONAL = 1


@dataclass
class SDU:
    """Service data unit metadata passed between application and transport."""

    message_type: MessageType = MessageType.DIAG
    source_address: int = 0
    target_address: int = 0
    target_address_type: TargetAddressType = TargetAddressType.PHYSICAL
    address_extension: int = 0


class Transport(abc.ABC):
    """A transport layer used by clients and servers.

    Implementations raise :class:`iso14229.constants.UDSError` on failure.
    """

    @abc.abstractmethod
    def send_buffer_size(self) -> int:
        """Largest message the transport can send."""

    @abc.abstractmethod
    def send(self, data: bytes, info: SDU | None = None) -> int:
        """Start sending ``data``; return bytes accepted, 0 if sending is still pending.

        With ``info`` of None, physical addressing is used.
        """

    @abc.abstractmethod
    def poll(self) -> TpStatus:
        """Advance the transport and report its status."""

    @abc.abstractmethod
    def peek(self) -> tuple[bytes, SDU]:
        """Return the received message and its metadata, or empty bytes if none.

        The result stays the same until :meth:`ack_recv` is called.
        """

    @abc.abstractmethod
    def ack_recv(self) -> None:
        """Discard the received message; :meth:`peek` then returns nothing until more arrives."""

    def recv_data(self) -> bytes | None:
        """The received message, or None if nothing is waiting."""
        data, _ = self.peek()
        return bytes(data) if data else None

    def recv_len(self) -> int:
        """Length of the received message, 0 if nothing is waiting."""
        data = self.recv_data()
        return len(data) if data else 0