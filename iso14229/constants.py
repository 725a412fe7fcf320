"""Protocol constants, error codes and small helpers shared by client and server."""

from __future__ import annotations

import enum
import time

# Default timings (milliseconds).
CLIENT_DEFAULT_P2_MS = 150
CLIENT_DEFAULT_P2_STAR_MS = 1500
SERVER_DEFAULT_P2_MS = 50
SERVER_DEFAULT_P2_STAR_MS = 2000
SERVER_DEFAULT_S3_MS = 3000
SERVER_DEFAULT_POWER_DOWN_TIME_MS = 60
SERVER_0X27_BRUTE_FORCE_MITIGATION_BOOT_DELAY_MS = 1000
SERVER_0X27_BRUTE_FORCE_MITIGATION_AUTH_FAIL_DELAY_MS = 1000
SERVER_DEFAULT_XFER_DATA_MAX_BLOCKLENGTH = 0xFFF

# Largest transport-layer message.
TP_MTU = 4095

# Message lengths used when building and checking service messages.
NEG_RESP_LEN = 3
RESP_0X10_LEN = 6
REQ_0X10_LEN = 2
REQ_0X11_MIN_LEN = 2
RESP_0X11_BASE_LEN = 2
RESP_0X22_BASE_LEN = 1
REQ_0X23_MIN_LEN = 4
RESP_0X23_BASE_LEN = 1
REQ_0X27_BASE_LEN = 2
RESP_0X27_BASE_LEN = 2
REQ_0X28_BASE_LEN = 3
RESP_0X28_LEN = 2
REQ_0X2E_BASE_LEN = 3
REQ_0X2E_MIN_LEN = 4
RESP_0X2E_LEN = 3
REQ_0X31_MIN_LEN = 4
RESP_0X31_MIN_LEN = 4
REQ_0X34_BASE_LEN = 3
RESP_0X34_BASE_LEN = 2
REQ_0X35_BASE_LEN = 3
RESP_0X35_BASE_LEN = 2
REQ_0X36_BASE_LEN = 2
RESP_0X36_BASE_LEN = 2
REQ_0X37_BASE_LEN = 1
RESP_0X37_BASE_LEN = 1
REQ_0X3E_MIN_LEN = 2
REQ_0X3E_MAX_LEN = 2
RESP_0X3E_LEN = 2
REQ_0X85_BASE_LEN = 2
RESP_0X85_LEN = 2

NEGATIVE_RESPONSE_SID = 0x7F

_U32 = 0xFFFFFFFF


class Err(enum.IntEnum):
    """Library error codes."""

    OK = 0
    ERR = 1
    TIMEOUT = 2
    NEG_RESP = 3
    DID_MISMATCH = 4
    SID_MISMATCH = 5
    SUBFUNCTION_MISMATCH = 6
    TPORT = 7
    FILE_IO = 8
    RESP_TOO_SHORT = 9
    BUFSIZ = 10
    INVALID_ARG = 11
    BUSY = 12


class UDSError(Exception):
    """Raised when a UDS operation fails; carries an :class:`Err` code."""

    def __init__(self, code: Err, message: str | None = None) -> None:
        self.code = Err(code)
        self.message = message if message is not None else self.code.name
        super().__init__(self.message)


class ClientOptions(enum.IntFlag):
    """Per-request client options."""

    NONE = 0
    SUPPRESS_POS_RESP = 0x1
    FUNCTIONAL = 0x2
    NEG_RESP_IS_ERR = 0x4
    IGNORE_SRV_TIMINGS = 0x8


class RequestState(enum.IntEnum):
    """States of the client request state machine."""

    IDLE = 0
    SENDING = 1
    AWAIT_SEND_COMPLETE = 2
    AWAIT_RESPONSE = 3
    PROCESS_RESPONSE = 4


class SeqState(enum.IntEnum):
    """Result of one step of a client request sequence."""

    DONE = 0
    RUNNING = 1
    GOTO_NEXT = 2


class SID(enum.IntEnum):
    """Service identifiers."""

    DIAGNOSTIC_SESSION_CONTROL = 0x10
    ECU_RESET = 0x11
    CLEAR_DIAGNOSTIC_INFORMATION = 0x14
    READ_DTC_INFORMATION = 0x19
    READ_DATA_BY_IDENTIFIER = 0x22
    READ_MEMORY_BY_ADDRESS = 0x23
    READ_SCALING_DATA_BY_IDENTIFIER = 0x24
    SECURITY_ACCESS = 0x27
    COMMUNICATION_CONTROL = 0x28
    READ_PERIODIC_DATA_BY_IDENTIFIER = 0x2A
    DYNAMICALLY_DEFINE_DATA_IDENTIFIER = 0x2C
    WRITE_DATA_BY_IDENTIFIER = 0x2E
    INPUT_CONTROL_BY_IDENTIFIER = 0x2F
    ROUTINE_CONTROL = 0x31
    REQUEST_DOWNLOAD = 0x34
    REQUEST_UPLOAD = 0x35
    TRANSFER_DATA = 0x36
    REQUEST_TRANSFER_EXIT = 0x37
    REQUEST_FILE_TRANSFER = 0x38
    WRITE_MEMORY_BY_ADDRESS = 0x3D
    TESTER_PRESENT = 0x3E
    ACCESS_TIMING_PARAMETER = 0x83
    SECURED_DATA_TRANSMISSION = 0x84
    CONTROL_DTC_SETTING = 0x85
    RESPONSE_ON_EVENT = 0x86


class NRC(enum.IntEnum):
    """Response codes; POSITIVE_RESPONSE means success."""

    POSITIVE_RESPONSE = 0x00
    GENERAL_REJECT = 0x10
    SERVICE_NOT_SUPPORTED = 0x11
    SUB_FUNCTION_NOT_SUPPORTED = 0x12
    INCORRECT_MESSAGE_LENGTH_OR_INVALID_FORMAT = 0x13
    RESPONSE_TOO_LONG = 0x14
    BUSY_REPEAT_REQUEST = 0x21
    CONDITIONS_NOT_CORRECT = 0x22
    REQUEST_SEQUENCE_ERROR = 0x24
    NO_RESPONSE_FROM_SUBNET_COMPONENT = 0x25
    FAILURE_PREVENTS_EXECUTION_OF_REQUESTED_ACTION = 0x26
    REQUEST_OUT_OF_RANGE = 0x31
    SECURITY_ACCESS_DENIED = 0x33
    INVALID_KEY = 0x35
    EXCEED_NUMBER_OF_ATTEMPTS = 0x36
    REQUIRED_TIME_DELAY_NOT_EXPIRED = 0x37
    UPLOAD_DOWNLOAD_NOT_ACCEPTED = 0x70
    TRANSFER_DATA_SUSPENDED = 0x71
    GENERAL_PROGRAMMING_FAILURE = 0x72
    WRONG_BLOCK_SEQUENCE_COUNTER = 0x73
    REQUEST_CORRECTLY_RECEIVED_RESPONSE_PENDING = 0x78
    SUB_FUNCTION_NOT_SUPPORTED_IN_ACTIVE_SESSION = 0x7E
    SERVICE_NOT_SUPPORTED_IN_ACTIVE_SESSION = 0x7F
    RPM_TOO_HIGH = 0x81
    RPM_TOO_LOW = 0x82
    ENGINE_IS_RUNNING = 0x83
    ENGINE_IS_NOT_RUNNING = 0x84
    ENGINE_RUN_TIME_TOO_LOW = 0x85
    TEMPERATURE_TOO_HIGH = 0x86
    TEMPERATURE_TOO_LOW = 0x87
    VEHICLE_SPEED_TOO_HIGH = 0x88
    VEHICLE_SPEED_TOO_LOW = 0x89
    THROTTLE_PEDAL_TOO_HIGH = 0x8A
    THROTTLE_PEDAL_TOO_LOW = 0x8B
    TRANSMISSION_RANGE_NOT_IN_NEUTRAL = 0x8C
    TRANSMISSION_RANGE_NOT_IN_GEAR = 0x8D
    BRAKE_SWITCH_NOT_CLOSED = 0x8F
    SHIFTER_LEVER_NOT_IN_PARK = 0x90
    TORQUE_CONVERTER_CLUTCH_LOCKED = 0x91
    VOLTAGE_TOO_HIGH = 0x92
    VOLTAGE_TOO_LOW = 0x93


class DiagnosticSessionType(enum.IntEnum):
    """Diagnostic session types (service 0x10)."""

    DEFAULT = 0x01
    PROGRAMMING = 0x02
    EXTENDED_DIAGNOSTIC = 0x03
    SAFETY_SYSTEM_DIAGNOSTIC = 0x04


class ECUResetType(enum.IntEnum):
    """Reset types (service 0x11)."""

    HARD_RESET = 0x01
    KEY_OFF_ON_RESET = 0x02
    SOFT_RESET = 0x03
    ENABLE_RAPID_POWER_SHUTDOWN = 0x04
    DISABLE_RAPID_POWER_SHUTDOWN = 0x05


class RoutineControlType(enum.IntEnum):
    """Routine control types (service 0x31)."""

    START_ROUTINE = 0x01
    STOP_ROUTINE = 0x02
    REQUEST_ROUTINE_RESULTS = 0x03


class ServerEvent(enum.IntEnum):
    """Events a server hands to its application handler."""

    ERR = 0
    DIAG_SESS_CTRL = enum.auto()
    ECU_RESET = enum.auto()
    READ_DATA_BY_IDENT = enum.auto()
    READ_MEM_BY_ADDR = enum.auto()
    COMM_CTRL = enum.auto()
    SEC_ACCESS_REQUEST_SEED = enum.auto()
    SEC_ACCESS_VALIDATE_KEY = enum.auto()
    WRITE_DATA_BY_IDENT = enum.auto()
    ROUTINE_CTRL = enum.auto()
    REQUEST_DOWNLOAD = enum.auto()
    REQUEST_UPLOAD = enum.auto()
    TRANSFER_DATA = enum.auto()
    REQUEST_TRANSFER_EXIT = enum.auto()
    SESSION_TIMEOUT = enum.auto()
    DO_SCHEDULED_RESET = enum.auto()


def millis() -> int:
    """Milliseconds from a monotonic clock, wrapped to 32 bits."""
    return int(time.monotonic() * 1000) & _U32


def time_after(a: int, b: int) -> bool:
    """True if 32-bit timestamp ``a`` is later than ``b``, allowing for wraparound."""
    diff = (b - a) & _U32
    return diff >= 0x80000000


def response_sid_of(sid: int) -> int:
    """Positive response SID for a request SID."""
    return (sid + 0x40) & 0xFF


def request_sid_of(sid: int) -> int:
    """Request SID for a positive response SID."""
    return (sid - 0x40) & 0xFF


def security_access_level_is_reserved(level: int) -> bool:
    """True if a SecurityAccess sub-function names a reserved level."""
    masked = level & 0x3F
    return masked in (0x00, 0x3F)