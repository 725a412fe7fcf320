"""Server request context and the arguments handed to server event handlers."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field

from .constants import (
    NEGATIVE_RESPONSE_SID,
    SERVER_DEFAULT_XFER_DATA_MAX_BLOCKLENGTH,
    TP_MTU,
    NRC,
)
from .transport import SDU

Copier = Callable[[bytes], int]


@dataclass
class Request:
    """One request being served: the received message and the response being built."""

    recv: bytes = b""
    send: bytearray = field(default_factory=bytearray)
    send_buf_size: int = TP_MTU
    info: SDU = field(default_factory=SDU)

    def copy(self, data: bytes) -> int:
        """Append ``data`` to the response if it fits; return a response code."""
        data = bytes(data)
        if len(data) <= self.send_buf_size - len(self.send):
            self.send += data
            return NRC.POSITIVE_RESPONSE
        return NRC.RESPONSE_TOO_LONG

    def negative_response(self, code: int) -> int:
        """Replace the response with a negative response carrying ``code``; return ``code``."""
        sid = self.recv[0] if self.recv else 0
        self.send[:] = bytes((NEGATIVE_RESPONSE_SID, sid, code & 0xFF))
        return code

    def no_response(self) -> None:
        """Send nothing for this request."""
        self.send.clear()


@dataclass
class DiagSessCtrlArgs:
    """DiagnosticSessionControl: requested session; the handler may override timings."""

    type: int
    p2_ms: int
    p2_star_ms: int


@dataclass
class ECUResetArgs:
    """ECUReset: requested reset type and the delay before the scheduled reset."""

    type: int
    power_down_time_ms: int


@dataclass
class RDBIArgs:
    """ReadDataByIdentifier: the handler copies the record for ``data_id``."""

    data_id: int
    copy: Copier


@dataclass
class ReadMemByAddrArgs:
    """ReadMemoryByAddress: the handler copies exactly ``mem_size`` bytes."""

    mem_addr: int
    mem_size: int
    copy: Copier


@dataclass
class CommCtrlArgs:
    """CommunicationControl request."""

    ctrl_type: int
    comm_type: int


@dataclass
class SecAccessRequestSeedArgs:
    """SecurityAccess requestSeed: the handler copies a seed."""

    level: int
    data_record: bytes
    copy_seed: Copier


@dataclass
class SecAccessValidateKeyArgs:
    """SecurityAccess sendKey: the handler checks ``key`` for ``level``."""

    level: int
    key: bytes


@dataclass
class WDBIArgs:
    """WriteDataByIdentifier request."""

    data_id: int
    data: bytes


@dataclass
class RoutineCtrlArgs:
    """RoutineControl: the handler may copy a status record."""

    ctrl_type: int
    routine_id: int
    option_record: bytes
    copy_status_record: Copier


@dataclass
class RequestDownloadArgs:
    """RequestDownload: the handler may lower the block length."""

    addr: int
    size: int
    data_format_identifier: int
    max_number_of_block_length: int = SERVER_DEFAULT_XFER_DATA_MAX_BLOCKLENGTH


@dataclass
class RequestUploadArgs:
    """RequestUpload: the handler may lower the block length."""

    addr: int
    size: int
    data_format_identifier: int
    max_number_of_block_length: int = SERVER_DEFAULT_XFER_DATA_MAX_BLOCKLENGTH


@dataclass
class TransferDataArgs:
    """TransferData: received block; at most ``max_resp_len`` bytes may be copied back."""

    data: bytes
    max_resp_len: int
    copy_response: Copier


@dataclass
class RequestTransferExitArgs:
    """RequestTransferExit: request data; the handler may copy response data."""

    data: bytes
    copy_response: Copier