"""Server handlers for the UDS services that do not deal with data transfer.

Each handler takes the server and the request, writes the response into the
request and returns the response code (``NRC.POSITIVE_RESPONSE`` on success).
"""

from __future__ import annotations

from typing import Any

from .constants import (
    CLIENT_DEFAULT_P2_MS,
    CLIENT_DEFAULT_P2_STAR_MS,
    REQ_0X10_LEN,
    REQ_0X11_MIN_LEN,
    REQ_0X23_MIN_LEN,
    REQ_0X27_BASE_LEN,
    REQ_0X28_BASE_LEN,
    REQ_0X2E_BASE_LEN,
    REQ_0X2E_MIN_LEN,
    REQ_0X31_MIN_LEN,
    REQ_0X3E_MAX_LEN,
    REQ_0X3E_MIN_LEN,
    REQ_0X85_BASE_LEN,
    RESP_0X23_BASE_LEN,
    RESP_0X27_BASE_LEN,
    SERVER_0X27_BRUTE_FORCE_MITIGATION_AUTH_FAIL_DELAY_MS,
    SERVER_DEFAULT_POWER_DOWN_TIME_MS,
    NRC,
    SID,
    DiagnosticSessionType,
    ECUResetType,
    RoutineControlType,
    ServerEvent,
    millis,
    response_sid_of,
    security_access_level_is_reserved,
    time_after,
)
from .events import (
    CommCtrlArgs,
    DiagSessCtrlArgs,
    ECUResetArgs,
    RDBIArgs,
    ReadMemByAddrArgs,
    Request,
    RoutineCtrlArgs,
    SecAccessRequestSeedArgs,
    SecAccessValidateKeyArgs,
    WDBIArgs,
)

_U32 = 0xFFFFFFFF
_MAX_FIELD_BYTES = 8

_INCORRECT_LENGTH = NRC.INCORRECT_MESSAGE_LENGTH_OR_INVALID_FORMAT


def _later(ms: int) -> int:
    return (millis() + ms) & _U32


def decode_address_and_length(req: Request, offset: int) -> tuple[int, int, int]:
    """Decode the addressAndLengthFormatIdentifier at ``offset`` and what follows it.

    Returns ``(code, memory_address, memory_size)``; ``code`` is
    ``NRC.POSITIVE_RESPONSE`` when the fields were decoded.
    """
    recv = req.recv
    if len(recv) < 3 or offset >= len(recv):
        return _INCORRECT_LENGTH, 0, 0
    size_len = (recv[offset] & 0xF0) >> 4
    address_len = recv[offset] & 0x0F
    if not 0 < size_len <= _MAX_FIELD_BYTES:
        return NRC.REQUEST_OUT_OF_RANGE, 0, 0
    if not 0 < address_len <= _MAX_FIELD_BYTES:
        return NRC.REQUEST_OUT_OF_RANGE, 0, 0
    start = offset + 1
    if start + address_len + size_len > len(recv):
        return _INCORRECT_LENGTH, 0, 0
    address = int.from_bytes(recv[start:start + address_len], "big")
    size = int.from_bytes(recv[start + address_len:start + address_len + size_len], "big")
    return NRC.POSITIVE_RESPONSE, address, size


def diagnostic_session_control(srv: Any, req: Request) -> int:
    """DiagnosticSessionControl (0x10)."""
    if len(req.recv) < REQ_0X10_LEN:
        return req.negative_response(_INCORRECT_LENGTH)
    session_type = req.recv[1] & 0x4F
    args = DiagSessCtrlArgs(
        type=session_type, p2_ms=CLIENT_DEFAULT_P2_MS, p2_star_ms=CLIENT_DEFAULT_P2_STAR_MS
    )
    err = srv.emit(ServerEvent.DIAG_SESS_CTRL, args)
    if err != NRC.POSITIVE_RESPONSE:
        return req.negative_response(err)

    srv.session_type = session_type
    if session_type != DiagnosticSessionType.DEFAULT:
        srv.s3_session_timeout_timer = _later(srv.s3_ms)

    p2 = args.p2_ms & 0xFFFF
    p2_star = (args.p2_star_ms // 10) & 0xFFFF
    req.send[:] = (
        bytes((response_sid_of(SID.DIAGNOSTIC_SESSION_CONTROL), session_type))
        + p2.to_bytes(2, "big")
        + p2_star.to_bytes(2, "big")
    )
    return NRC.POSITIVE_RESPONSE


def ecu_reset(srv: Any, req: Request) -> int:
    """ECUReset (0x11)."""
    if len(req.recv) < REQ_0X11_MIN_LEN:
        return req.negative_response(_INCORRECT_LENGTH)
    reset_type = req.recv[1] & 0x3F
    args = ECUResetArgs(type=reset_type, power_down_time_ms=SERVER_DEFAULT_POWER_DOWN_TIME_MS)
    err = srv.emit(ServerEvent.ECU_RESET, args)
    if err != NRC.POSITIVE_RESPONSE:
        return req.negative_response(err)

    srv.not_ready_to_receive = True
    srv.ecu_reset_scheduled = reset_type
    srv.ecu_reset_timer = _later(args.power_down_time_ms)

    req.send[:] = bytes((response_sid_of(SID.ECU_RESET), reset_type))
    if reset_type == ECUResetType.ENABLE_RAPID_POWER_SHUTDOWN:
        req.send.append(min(args.power_down_time_ms // 1000, 255))
    return NRC.POSITIVE_RESPONSE


def read_data_by_identifier(srv: Any, req: Request) -> int:
    """ReadDataByIdentifier (0x22)."""
    recv = req.recv
    req.send[:] = bytes((response_sid_of(SID.READ_DATA_BY_IDENTIFIER),))
    if (len(recv) - 1) % 2:
        return req.negative_response(_INCORRECT_LENGTH)
    identifiers = [int.from_bytes(recv[i:i + 2], "big") for i in range(1, len(recv) - 1, 2)]
    if not identifiers:
        return req.negative_response(_INCORRECT_LENGTH)
    for data_id in identifiers:
        if len(req.send) + 3 > req.send_buf_size:
            return req.negative_response(NRC.RESPONSE_TOO_LONG)
        req.send += data_id.to_bytes(2, "big")
        ret = srv.emit(ServerEvent.READ_DATA_BY_IDENT, RDBIArgs(data_id=data_id, copy=req.copy))
        if ret != NRC.POSITIVE_RESPONSE:
            return req.negative_response(ret)
    return NRC.POSITIVE_RESPONSE


def read_memory_by_address(srv: Any, req: Request) -> int:
    """ReadMemoryByAddress (0x23)."""
    if len(req.recv) < REQ_0X23_MIN_LEN:
        return req.negative_response(_INCORRECT_LENGTH)
    ret, address, length = decode_address_and_length(req, 1)
    if ret != NRC.POSITIVE_RESPONSE:
        return req.negative_response(ret)
    args = ReadMemByAddrArgs(mem_addr=address, mem_size=length, copy=req.copy)
    req.send[:] = bytes((response_sid_of(SID.READ_MEMORY_BY_ADDRESS),))
    ret = srv.emit(ServerEvent.READ_MEM_BY_ADDR, args)
    if ret != NRC.POSITIVE_RESPONSE:
        return req.negative_response(ret)
    if len(req.send) != RESP_0X23_BASE_LEN + length:
        return NRC.GENERAL_PROGRAMMING_FAILURE
    return NRC.POSITIVE_RESPONSE


def security_access(srv: Any, req: Request) -> int:
    """SecurityAccess (0x27): odd sub-functions request a seed, even ones send a key."""
    recv = req.recv
    if len(recv) < REQ_0X27_BASE_LEN:
        return req.negative_response(_INCORRECT_LENGTH)
    sub_function = recv[1]
    if security_access_level_is_reserved(sub_function):
        return req.negative_response(_INCORRECT_LENGTH)
    if not time_after(millis(), srv.sec_access_boot_delay_timer):
        return req.negative_response(NRC.REQUIRED_TIME_DELAY_NOT_EXPIRED)
    if not time_after(millis(), srv.sec_access_auth_fail_timer):
        return req.negative_response(NRC.EXCEED_NUMBER_OF_ATTEMPTS)

    req.send[:] = bytes((response_sid_of(SID.SECURITY_ACCESS), sub_function))
    payload = bytes(recv[REQ_0X27_BASE_LEN:])

    if sub_function % 2 == 0:
        requested_level = sub_function - 1
        response = srv.emit(
            ServerEvent.SEC_ACCESS_VALIDATE_KEY,
            SecAccessValidateKeyArgs(level=requested_level, key=payload),
        )
        if response != NRC.POSITIVE_RESPONSE:
            srv.sec_access_auth_fail_timer = _later(
                SERVER_0X27_BRUTE_FORCE_MITIGATION_AUTH_FAIL_DELAY_MS
            )
            return req.negative_response(response)
        # requestSeed 0x01 pairs with sendKey 0x02, 0x03 with 0x04, and so on.
        srv.security_level = requested_level
        del req.send[RESP_0X27_BASE_LEN:]
        return NRC.POSITIVE_RESPONSE

    if sub_function == srv.security_level:
        # An already unlocked level answers with an all-zero seed.
        return req.copy(b"\x00\x00")

    response = srv.emit(
        ServerEvent.SEC_ACCESS_REQUEST_SEED,
        SecAccessRequestSeedArgs(level=sub_function, data_record=payload, copy_seed=req.copy),
    )
    if response != NRC.POSITIVE_RESPONSE:
        return req.negative_response(response)
    if len(req.send) <= RESP_0X27_BASE_LEN:
        return req.negative_response(NRC.GENERAL_PROGRAMMING_FAILURE)
    return NRC.POSITIVE_RESPONSE


def communication_control(srv: Any, req: Request) -> int:
    """CommunicationControl (0x28)."""
    if len(req.recv) < REQ_0X28_BASE_LEN:
        return req.negative_response(_INCORRECT_LENGTH)
    control_type = req.recv[1] & 0x7F
    communication_type = req.recv[2]
    err = srv.emit(
        ServerEvent.COMM_CTRL, CommCtrlArgs(ctrl_type=control_type, comm_type=communication_type)
    )
    if err != NRC.POSITIVE_RESPONSE:
        return req.negative_response(err)
    req.send[:] = bytes((response_sid_of(SID.COMMUNICATION_CONTROL), control_type))
    return NRC.POSITIVE_RESPONSE


def write_data_by_identifier(srv: Any, req: Request) -> int:
    """WriteDataByIdentifier (0x2E)."""
    recv = req.recv
    if len(recv) < REQ_0X2E_MIN_LEN:
        return req.negative_response(_INCORRECT_LENGTH)
    data_id = int.from_bytes(recv[1:3], "big")
    args = WDBIArgs(data_id=data_id, data=bytes(recv[REQ_0X2E_BASE_LEN:]))
    err = srv.emit(ServerEvent.WRITE_DATA_BY_IDENT, args)
    if err != NRC.POSITIVE_RESPONSE:
        return req.negative_response(err)
    req.send[:] = bytes((response_sid_of(SID.WRITE_DATA_BY_IDENTIFIER),)) + data_id.to_bytes(2, "big")
    return NRC.POSITIVE_RESPONSE


def routine_control(srv: Any, req: Request) -> int:
    """RoutineControl (0x31)."""
    recv = req.recv
    if len(recv) < REQ_0X31_MIN_LEN:
        return req.negative_response(_INCORRECT_LENGTH)
    control_type = recv[1] & 0x7F
    routine_id = int.from_bytes(recv[2:4], "big")
    args = RoutineCtrlArgs(
        ctrl_type=control_type,
        routine_id=routine_id,
        option_record=bytes(recv[REQ_0X31_MIN_LEN:]),
        copy_status_record=req.copy,
    )
    req.send[:] = bytes((response_sid_of(SID.ROUTINE_CONTROL), control_type)) + routine_id.to_bytes(
        2, "big"
    )
    if control_type not in (
        RoutineControlType.START_ROUTINE,
        RoutineControlType.STOP_ROUTINE,
        RoutineControlType.REQUEST_ROUTINE_RESULTS,
    ):
        return req.negative_response(NRC.REQUEST_OUT_OF_RANGE)
    err = srv.emit(ServerEvent.ROUTINE_CTRL, args)
    if err != NRC.POSITIVE_RESPONSE:
        return req.negative_response(err)
    return NRC.POSITIVE_RESPONSE


def tester_present(srv: Any, req: Request) -> int:
    """TesterPresent (0x3E): keeps the diagnostic session alive."""
    if not REQ_0X3E_MIN_LEN <= len(req.recv) <= REQ_0X3E_MAX_LEN:
        return req.negative_response(_INCORRECT_LENGTH)
    if req.recv[1] not in (0x00, 0x80):
        return req.negative_response(NRC.SUB_FUNCTION_NOT_SUPPORTED)
    srv.s3_session_timeout_timer = _later(srv.s3_ms)
    req.send[:] = bytes((response_sid_of(SID.TESTER_PRESENT), 0x00))
    return NRC.POSITIVE_RESPONSE


def control_dtc_setting(srv: Any, req: Request) -> int:
    """ControlDTCSetting (0x85)."""
    if len(req.recv) < REQ_0X85_BASE_LEN:
        return req.negative_response(_INCORRECT_LENGTH)
    setting_type = req.recv[1] & 0x3F
    req.send[:] = bytes((response_sid_of(SID.CONTROL_DTC_SETTING), setting_type))
    return NRC.POSITIVE_RESPONSE