"""UDS client: builds requests and drives the request/response state machine."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from typing import Any, BinaryIO

from .constants import (
    CLIENT_DEFAULT_P2_MS,
    CLIENT_DEFAULT_P2_STAR_MS,
    NEGATIVE_RESPONSE_SID,
    REQ_0X27_BASE_LEN,
    REQ_0X31_MIN_LEN,
    REQ_0X34_BASE_LEN,
    REQ_0X35_BASE_LEN,
    REQ_0X36_BASE_LEN,
    RESP_0X10_LEN,
    NRC,
    SID,
    ClientOptions,
    Err,
    RequestState,
    SeqState,
    UDSError,
    millis,
    request_sid_of,
    response_sid_of,
    security_access_level_is_reserved,
    time_after,
)
from .transport import SDU, MessageType, TargetAddressType, Transport, TpStatus

log = logging.getLogger(__name__)

Step = Callable[["Client"], SeqState]


def _be_bytes(value: int, count: int) -> bytes:
    """The ``count`` low bytes of ``value``, most significant first."""
    return bytes((value >> (8 * shift)) & 0xFF for shift in reversed(range(count)))


class Client:
    """A UDS client polled from the application's main loop.

    Send methods raise :class:`UDSError` when a request cannot be started.
    Failures that happen while a request is in flight are recorded in
    :attr:`err` and end the request.
    """

    def __init__(self, tp: Transport | None = None) -> None:
        self.tp = tp
        self.p2_ms = CLIENT_DEFAULT_P2_MS
        self.p2_star_ms = CLIENT_DEFAULT_P2_STAR_MS
        if self.p2_star_ms < self.p2_ms:
            log.warning("p2_star_ms must be >= p2_ms")
            self.p2_star_ms = self.p2_ms
        self.p2_timer = 0
        self.request = bytearray()
        self.response = b""
        self.send_buf_size = 0
        self.err = Err.OK
        self.state = RequestState.IDLE
        self.options = ClientOptions.NONE
        self.default_options = ClientOptions.NONE
        self._options_copy = ClientOptions.NONE
        self.steps: Sequence[Step] | None = None
        self.step_index = 0
        self.sequence_data: Any = None

    # ------------------------------------------------------------------
    # state machine

    def _clear_request_context(self) -> None:
        self.request = bytearray()
        self.response = b""
        self.state = RequestState.IDLE
        self.err = Err.OK

    def _change_state(self, state: RequestState) -> None:
        log.debug("client state: %s -> %s", self.state.name, state.name)
        self.state = state

    def _validate_response(self) -> Err:
        resp = self.response
        req = self.request
        if len(resp) < 1:
            return Err.RESP_TOO_SHORT
        if resp[0] == NEGATIVE_RESPONSE_SID:
            if len(resp) < 2:
                return Err.RESP_TOO_SHORT
            if req[0] != resp[1]:
                return Err.SID_MISMATCH
            if len(resp) > 2 and resp[2] == NRC.REQUEST_CORRECTLY_RECEIVED_RESPONSE_PENDING:
                return Err.OK
            if self._options_copy & ClientOptions.NEG_RESP_IS_ERR:
                return Err.NEG_RESP
            return Err.OK
        if response_sid_of(req[0]) != resp[0]:
            return Err.SID_MISMATCH
        if req[0] == SID.ECU_RESET:
            if len(resp) < 2:
                return Err.RESP_TOO_SHORT
            if len(req) < 2 or req[1] != resp[1]:
                return Err.SUBFUNCTION_MISMATCH
        return Err.OK

    def _finish(self) -> None:
        self.tp.ack_recv()
        self._change_state(RequestState.IDLE)

    def _handle_response(self) -> None:
        resp = self.response
        if resp[0] == NEGATIVE_RESPONSE_SID:
            if len(resp) > 2 and resp[2] == NRC.REQUEST_CORRECTLY_RECEIVED_RESPONSE_PENDING:
                log.debug("got RCRRP, setting p2 timer")
                self.p2_timer = (millis() + self.p2_star_ms) & 0xFFFFFFFF
                self.response = b""
                self.tp.ack_recv()
                self._change_state(RequestState.AWAIT_RESPONSE)
                return
        elif request_sid_of(resp[0]) == SID.DIAGNOSTIC_SESSION_CONTROL:
            if len(resp) < RESP_0X10_LEN:
                log.debug("SID 0x10 response too short")
                self.err = Err.RESP_TOO_SHORT
                self._finish()
                return
            if self._options_copy & ClientOptions.IGNORE_SRV_TIMINGS:
                self._finish()
                return
            self.p2_ms = int.from_bytes(resp[2:4], "big")
            self.p2_star_ms = int.from_bytes(resp[4:6], "big") * 10
            log.debug("received new timings: p2: %d, p2*: %d", self.p2_ms, self.p2_star_ms)
        self._finish()

    def _poll_low_level(self) -> None:
        tp_status = self.tp.poll()
        state = self.state
        if state == RequestState.IDLE:
            self.options = self.default_options
        elif state == RequestState.SENDING:
            functional = bool(self._options_copy & ClientOptions.FUNCTIONAL)
            info = SDU(
                message_type=MessageType.DIAG,
                target_address_type=(
                    TargetAddressType.FUNCTIONAL if functional else TargetAddressType.PHYSICAL
                ),
            )
            try:
                sent = self.tp.send(bytes(self.request), info)
            except UDSError as exc:
                self.err = Err.TPORT
                log.debug("tport err: %s", exc)
                return
            if sent == 0:
                log.debug("send in progress...")
            elif sent == len(self.request):
                self._change_state(RequestState.AWAIT_SEND_COMPLETE)
            else:
                self.err = Err.BUFSIZ
        elif state == RequestState.AWAIT_SEND_COMPLETE:
            if self._options_copy & ClientOptions.FUNCTIONAL:
                # Functional addressing applies only to single-frame transmission.
                self._change_state(RequestState.IDLE)
            if not tp_status & TpStatus.SEND_IN_PROGRESS:
                if self._options_copy & ClientOptions.SUPPRESS_POS_RESP:
                    self._change_state(RequestState.IDLE)
                else:
                    self._change_state(RequestState.AWAIT_RESPONSE)
                    self.p2_timer = (millis() + self.p2_ms) & 0xFFFFFFFF
        elif state == RequestState.AWAIT_RESPONSE:
            try:
                data, info = self.tp.peek()
            except UDSError:
                self.err = Err.TPORT
                self._change_state(RequestState.IDLE)
                return
            if info.target_address_type == TargetAddressType.FUNCTIONAL:
                self.tp.ack_recv()
                return
            if not data:
                if time_after(millis(), self.p2_timer):
                    self.err = Err.TIMEOUT
                    self._change_state(RequestState.IDLE)
            else:
                log.debug("received %d bytes", len(data))
                self.response = bytes(data)
                self._change_state(RequestState.PROCESS_RESPONSE)
        elif state == RequestState.PROCESS_RESPONSE:
            self.err = self._validate_response()
            if self.err == Err.OK:
                self._handle_response()
            else:
                self._finish()

    def poll(self) -> bool:
        """Advance the client; True while a request or sequence is still running."""
        self._poll_low_level()
        if self.err:
            return False
        if self.state != RequestState.IDLE:
            return True
        if self.steps is None or self.step_index >= len(self.steps):
            return False
        result = self.steps[self.step_index](self)
        if result == SeqState.DONE:
            return False
        if result == SeqState.RUNNING:
            return True
        if result == SeqState.GOTO_NEXT:
            self.step_index += 1
            return True
        raise ValueError(f"invalid sequence state: {result!r}")

    def run_sequence(self, steps: Sequence[Step], data: Any = None) -> None:
        """Install a list of steps that :meth:`poll` runs one after another."""
        self.steps = list(steps)
        self.step_index = 0
        self.sequence_data = data

    def await_idle(self) -> SeqState:
        """Sequence step that waits for the current request to finish."""
        if self.err:
            return SeqState.DONE
        if self.state == RequestState.IDLE:
            return SeqState.GOTO_NEXT
        return SeqState.RUNNING

    # ------------------------------------------------------------------
    # requests

    def _pre_request_check(self) -> None:
        if self.state != RequestState.IDLE:
            raise UDSError(Err.BUSY)
        self._clear_request_context()
        if self.tp is None:
            raise UDSError(Err.TPORT, "no transport")
        try:
            self.send_buf_size = self.tp.send_buffer_size()
        except UDSError as exc:
            raise UDSError(Err.TPORT, str(exc)) from exc

    def _send_request(self, payload: bytes | bytearray) -> None:
        self.request = bytearray(payload)
        self._options_copy = ClientOptions(self.options)
        if self._options_copy & ClientOptions.SUPPRESS_POS_RESP and len(self.request) > 1:
            self.request[1] |= 0x80
        self._change_state(RequestState.SENDING)
        self._poll_low_level()

    def send_bytes(self, data: bytes) -> None:
        """Send a raw request."""
        self._pre_request_check()
        if len(data) > self.send_buf_size:
            raise UDSError(Err.BUFSIZ)
        self._send_request(data)

    def send_ecu_reset(self, reset_type: int) -> None:
        """ECUReset (0x11)."""
        self._pre_request_check()
        self._send_request(bytes((SID.ECU_RESET, reset_type)))

    def send_diag_sess_ctrl(self, mode: int) -> None:
        """DiagnosticSessionControl (0x10)."""
        self._pre_request_check()
        self._send_request(bytes((SID.DIAGNOSTIC_SESSION_CONTROL, mode)))

    def send_comm_ctrl(self, ctrl: int, comm: int) -> None:
        """CommunicationControl (0x28)."""
        self._pre_request_check()
        self._send_request(bytes((SID.COMMUNICATION_CONTROL, ctrl, comm)))

    def send_tester_present(self) -> None:
        """TesterPresent (0x3E)."""
        self._pre_request_check()
        self._send_request(bytes((SID.TESTER_PRESENT, 0)))

    def send_rdbi(self, dids: Sequence[int]) -> None:
        """ReadDataByIdentifier (0x22) for one or more data identifiers."""
        self._pre_request_check()
        if not dids:
            raise UDSError(Err.INVALID_ARG, "no data identifiers")
        payload = bytearray((SID.READ_DATA_BY_IDENTIFIER,))
        for did in dids:
            if len(payload) + 2 > self.send_buf_size:
                raise UDSError(Err.INVALID_ARG, "too many data identifiers")
            payload += (did & 0xFFFF).to_bytes(2, "big")
        self._send_request(payload)

    def send_wdbi(self, data_id: int, data: bytes) -> None:
        """WriteDataByIdentifier (0x2E)."""
        self._pre_request_check()
        if not data:
            raise UDSError(Err.INVALID_ARG, "no data")
        if self.send_buf_size <= 3 or len(data) > self.send_buf_size - 3:
            raise UDSError(Err.BUFSIZ)
        payload = bytes((SID.WRITE_DATA_BY_IDENTIFIER,)) + (data_id & 0xFFFF).to_bytes(2, "big")
        self._send_request(payload + bytes(data))

    def send_routine_ctrl(self, control_type: int, routine_id: int, data: bytes | None = None) -> None:
        """RoutineControl (0x31)."""
        self._pre_request_check()
        data = bytes(data or b"")
        if data and len(data) > self.send_buf_size - REQ_0X31_MIN_LEN:
            raise UDSError(Err.BUFSIZ)
        payload = bytes((SID.ROUTINE_CONTROL, control_type)) + (routine_id & 0xFFFF).to_bytes(2, "big")
        self._send_request(payload + data)

    def _address_and_length_request(
        self,
        sid: int,
        base_len: int,
        data_format: int,
        address_and_length_format: int,
        memory_address: int,
        memory_size: int,
    ) -> None:
        self._pre_request_check()
        size_bytes = (address_and_length_format & 0xF0) >> 4
        address_bytes = address_and_length_format & 0x0F
        if base_len + size_bytes + address_bytes > self.send_buf_size:
            raise UDSError(Err.BUFSIZ)
        payload = (
            bytes((sid, data_format, address_and_length_format))
            + _be_bytes(memory_address, address_bytes)
            + _be_bytes(memory_size, size_bytes)
        )
        self._send_request(payload)

    def send_request_download(
        self, data_format: int, address_and_length_format: int, memory_address: int, memory_size: int
    ) -> None:
        """RequestDownload (0x34)."""
        self._address_and_length_request(
            SID.REQUEST_DOWNLOAD, REQ_0X34_BASE_LEN, data_format,
            address_and_length_format, memory_address, memory_size,
        )

    def send_request_upload(
        self, data_format: int, address_and_length_format: int, memory_address: int, memory_size: int
    ) -> None:
        """RequestUpload (0x35)."""
        self._address_and_length_request(
            SID.REQUEST_UPLOAD, REQ_0X35_BASE_LEN, data_format,
            address_and_length_format, memory_address, memory_size,
        )

    def send_transfer_data(self, block_sequence_counter: int, block_length: int, data: bytes) -> None:
        """TransferData (0x36) carrying ``data``; ``block_length`` includes the 2-byte header."""
        self._pre_request_check()
        if block_length <= 2:
            raise UDSError(Err.INVALID_ARG, "block length must exceed 2")
        if len(data) + 2 > block_length:
            raise UDSError(Err.INVALID_ARG, "data does not fit in block length")
        log.debug("size: %d, blocklength: %d", len(data), block_length)
        self._send_request(bytes((SID.TRANSFER_DATA, block_sequence_counter & 0xFF)) + bytes(data))

    def send_transfer_data_stream(
        self, block_sequence_counter: int, block_length: int, stream: BinaryIO
    ) -> int:
        """TransferData (0x36) with up to ``block_length - 2`` bytes read from ``stream``.

        Returns the number of bytes read.
        """
        self._pre_request_check()
        if block_length <= 2:
            raise UDSError(Err.INVALID_ARG, "block length must exceed 2")
        chunk = stream.read(block_length - REQ_0X36_BASE_LEN) or b""
        log.debug("size: %d, blocklength: %d", len(chunk), block_length)
        self._send_request(bytes((SID.TRANSFER_DATA, block_sequence_counter & 0xFF)) + chunk)
        return len(chunk)

    def send_request_transfer_exit(self) -> None:
        """RequestTransferExit (0x37)."""
        self._pre_request_check()
        self._send_request(bytes((SID.REQUEST_TRANSFER_EXIT,)))

    def ctrl_dtc_setting(self, dtc_setting_type: int, data: bytes | None = None) -> None:
        """ControlDTCSetting (0x85)."""
        self._pre_request_check()
        if dtc_setting_type in (0x00, 0x7F) or 0x03 <= dtc_setting_type <= 0x3F:
            raise UDSError(Err.INVALID_ARG, "reserved DTC setting type")
        data = bytes(data or b"")
        if data and len(data) > self.send_buf_size - 2:
            raise UDSError(Err.BUFSIZ)
        self._send_request(bytes((SID.CONTROL_DTC_SETTING, dtc_setting_type)) + data)

    def send_security_access(self, level: int, data: bytes | None = None) -> None:
        """SecurityAccess (0x27): request a seed (odd level) or send a key (even level)."""
        self._pre_request_check()
        if security_access_level_is_reserved(level):
            raise UDSError(Err.INVALID_ARG, "reserved security access level")
        data = bytes(data or b"")
        if data and len(data) > self.send_buf_size - REQ_0X27_BASE_LEN:
            raise UDSError(Err.BUFSIZ)
        self._send_request(bytes((SID.SECURITY_ACCESS, level)) + data)