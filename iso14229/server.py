"""UDS server: receives requests from a transport and dispatches them to services."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from . import services, transfer
from .constants import (
    SERVER_0X27_BRUTE_FORCE_MITIGATION_BOOT_DELAY_MS,
    SERVER_DEFAULT_P2_MS,
    SERVER_DEFAULT_P2_STAR_MS,
    SERVER_DEFAULT_S3_MS,
    NRC,
    SID,
    DiagnosticSessionType,
    Err,
    ServerEvent,
    UDSError,
    millis,
    time_after,
)
from .events import Request
from .transport import TargetAddressType, Transport

log = logging.getLogger(__name__)

_U32 = 0xFFFFFFFF

Service = Callable[[Any, Request], int]
Handler = Callable[["Server", ServerEvent, Any], int]

_SERVICES: dict[int, Service] = {
    SID.DIAGNOSTIC_SESSION_CONTROL: services.diagnostic_session_control,
    SID.ECU_RESET: services.ecu_reset,
    SID.READ_DATA_BY_IDENTIFIER: services.read_data_by_identifier,
    SID.READ_MEMORY_BY_ADDRESS: services.read_memory_by_address,
    SID.SECURITY_ACCESS: services.security_access,
    SID.COMMUNICATION_CONTROL: services.communication_control,
    SID.WRITE_DATA_BY_IDENTIFIER: services.write_data_by_identifier,
    SID.ROUTINE_CONTROL: services.routine_control,
    SID.REQUEST_DOWNLOAD: transfer.request_download,
    SID.REQUEST_UPLOAD: transfer.request_upload,
    SID.TRANSFER_DATA: transfer.transfer_data,
    SID.REQUEST_TRANSFER_EXIT: transfer.request_transfer_exit,
    SID.TESTER_PRESENT: services.tester_present,
    SID.CONTROL_DTC_SETTING: services.control_dtc_setting,
}

_WITH_SUBFUNCTION = frozenset({
    SID.DIAGNOSTIC_SESSION_CONTROL,
    SID.ECU_RESET,
    SID.SECURITY_ACCESS,
    SID.COMMUNICATION_CONTROL,
    SID.ROUTINE_CONTROL,
    SID.TESTER_PRESENT,
    SID.CONTROL_DTC_SETTING,
})

_WITHOUT_SUBFUNCTION = frozenset({
    SID.READ_DATA_BY_IDENTIFIER,
    SID.READ_MEMORY_BY_ADDRESS,
    SID.WRITE_DATA_BY_IDENTIFIER,
    SID.REQUEST_DOWNLOAD,
    SID.REQUEST_UPLOAD,
    SID.TRANSFER_DATA,
    SID.REQUEST_TRANSFER_EXIT,
})

# Negative responses that are not sent for functionally addressed requests.
_SILENT_WHEN_FUNCTIONAL = frozenset({
    NRC.SERVICE_NOT_SUPPORTED,
    NRC.SUB_FUNCTION_NOT_SUPPORTED,
    NRC.SERVICE_NOT_SUPPORTED_IN_ACTIVE_SESSION,
    NRC.SUB_FUNCTION_NOT_SUPPORTED_IN_ACTIVE_SESSION,
    NRC.REQUEST_OUT_OF_RANGE,
})


def _later(ms: int) -> int:
    return (millis() + ms) & _U32


def service_for_sid(sid: int) -> Service | None:
    """The built-in handler for a request SID, or None if the service is not implemented."""
    service = _SERVICES.get(sid)
    if service is None:
        log.debug("no handler for request SID %x", sid)
    return service


def evaluate_service_response(srv: Server, req: Request) -> int:
    """Run the service for ``req`` and apply the response suppression rules."""
    sid = req.recv[0]
    service = service_for_sid(sid)
    if service is None or srv.handler is None:
        return req.negative_response(NRC.SERVICE_NOT_SUPPORTED)

    suppress = False
    if sid in _WITH_SUBFUNCTION:
        response = service(srv, req)
        suppress_bit = len(req.recv) > 1 and bool(req.recv[1] & 0x80)
        suppress = suppress_bit and response == NRC.POSITIVE_RESPONSE
    elif sid in _WITHOUT_SUBFUNCTION:
        response = service(srv, req)
    else:
        response = NRC.SERVICE_NOT_SUPPORTED

    functional = req.info.target_address_type == TargetAddressType.FUNCTIONAL
    if (functional and response in _SILENT_WHEN_FUNCTIONAL) or suppress:
        req.no_response()
    return response


class Server:
    """A UDS server polled from the application's main loop.

    ``handler(server, event, args)`` is called for each :class:`ServerEvent`
    and returns a response code.
    """

    def __init__(self, tp: Transport | None = None, handler: Handler | None = None) -> None:
        self.tp = tp
        self.handler = handler
        self.p2_ms = SERVER_DEFAULT_P2_MS
        self.p2_star_ms = SERVER_DEFAULT_P2_STAR_MS
        self.s3_ms = SERVER_DEFAULT_S3_MS

        self.ecu_reset_scheduled = 0
        self.ecu_reset_timer = 0
        self.p2_timer = _later(self.p2_ms)
        self.s3_session_timeout_timer = _later(self.s3_ms)
        self.sec_access_boot_delay_timer = _later(SERVER_0X27_BRUTE_FORCE_MITIGATION_BOOT_DELAY_MS)
        self.sec_access_auth_fail_timer = millis()

        self.xfer_is_active = False
        self.xfer_block_sequence_counter = 1
        self.xfer_total_bytes = 0
        self.xfer_byte_counter = 0
        self.xfer_block_length = 0

        self.session_type = DiagnosticSessionType.DEFAULT
        self.security_level = 0

        self.rcrrp = False
        self.request_in_progress = False
        self.not_ready_to_receive = False

        self.request = Request()

    def emit(self, event: ServerEvent, args: Any = None) -> int:
        """Hand an event to the application handler and return its response code."""
        if self.handler is None:
            log.debug("unhandled server event %s: no handler installed", event)
            return NRC.GENERAL_REJECT
        return self.handler(self, event, args)

    def poll(self) -> None:
        """Advance the server: timers, transport, request processing and responses."""
        if self.tp is None:
            raise UDSError(Err.TPORT, "no transport")

        if self.session_type != DiagnosticSessionType.DEFAULT and time_after(
            millis(), self.s3_session_timeout_timer
        ):
            self.emit(ServerEvent.SESSION_TIMEOUT, None)

        if self.ecu_reset_scheduled and time_after(millis(), self.ecu_reset_timer):
            self.emit(ServerEvent.DO_SCHEDULED_RESET, self.ecu_reset_scheduled)

        self.tp.poll()
        req = self.request

        if self.request_in_progress:
            if self.rcrrp:
                # Answer again only once the service stops asking for more time
                # or the p2 timer runs out.
                response = evaluate_service_response(self, req)
                if response == NRC.REQUEST_CORRECTLY_RECEIVED_RESPONSE_PENDING:
                    self.not_ready_to_receive = True
                else:
                    self.rcrrp = False
                    self.not_ready_to_receive = False
                    self.p2_timer = _later(self.p2_ms)

            if time_after(millis(), self.p2_timer):
                try:
                    self.tp.send(bytes(req.send), None)
                except UDSError as exc:
                    self.emit(ServerEvent.ERR, Err.TPORT)
                    log.debug("send failed: %s", exc)

                if self.rcrrp:
                    # Consecutive 0x78 responses are at least 0.3 * p2* apart.
                    self.p2_timer = _later(self.p2_star_ms * 3 // 10)
                else:
                    self.p2_timer = _later(self.p2_ms)
                    self.tp.ack_recv()
                    self.request_in_progress = False
            return

        if self.not_ready_to_receive:
            return

        try:
            data, info = self.tp.peek()
            send_buf_size = self.tp.send_buffer_size()
        except UDSError as exc:
            self.emit(ServerEvent.ERR, Err.TPORT)
            log.debug("bad transport: %s", exc)
            return

        if not data:
            return

        self.request = Request(
            recv=bytes(data), send=bytearray(), send_buf_size=send_buf_size, info=info
        )
        response = evaluate_service_response(self, self.request)
        self.request_in_progress = True
        if response == NRC.REQUEST_CORRECTLY_RECEIVED_RESPONSE_PENDING:
            self.rcrrp = True