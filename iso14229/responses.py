"""Decoding of positive responses received by a client."""

from __future__ import annotations

from dataclasses import dataclass

from .constants import (
    RESP_0X22_BASE_LEN,
    RESP_0X27_BASE_LEN,
    RESP_0X31_MIN_LEN,
    RESP_0X34_BASE_LEN,
    SID,
    Err,
    UDSError,
    response_sid_of,
)

# Widest maxNumberOfBlockLength a response may carry, in bytes.
_MAX_BLOCK_LENGTH_BYTES = 8


@dataclass(frozen=True)
class SecurityAccessResponse:
    """Positive response to SecurityAccess (0x27)."""

    security_access_type: int
    security_seed: bytes


@dataclass(frozen=True)
class RoutineControlResponse:
    """Positive response to RoutineControl (0x31)."""

    routine_control_type: int
    routine_identifier: int
    routine_status_record: bytes


@dataclass(frozen=True)
class RequestDownloadResponse:
    """Positive response to RequestDownload (0x34)."""

    max_number_of_block_length: int


def _check_sid(response: bytes, sid: int) -> None:
    if not response:
        raise UDSError(Err.RESP_TOO_SHORT)
    if response[0] != response_sid_of(sid):
        raise UDSError(Err.SID_MISMATCH)


def unpack_security_access_response(response: bytes) -> SecurityAccessResponse:
    """Decode a SecurityAccess positive response."""
    response = bytes(response)
    _check_sid(response, SID.SECURITY_ACCESS)
    if len(response) < RESP_0X27_BASE_LEN:
        raise UDSError(Err.RESP_TOO_SHORT)
    return SecurityAccessResponse(
        security_access_type=response[1],
        security_seed=response[RESP_0X27_BASE_LEN:],
    )


def unpack_routine_control_response(response: bytes) -> RoutineControlResponse:
    """Decode a RoutineControl positive response."""
    response = bytes(response)
    _check_sid(response, SID.ROUTINE_CONTROL)
    if len(response) < RESP_0X31_MIN_LEN:
        raise UDSError(Err.RESP_TOO_SHORT)
    return RoutineControlResponse(
        routine_control_type=response[1],
        routine_identifier=int.from_bytes(response[2:4], "big"),
        routine_status_record=response[RESP_0X31_MIN_LEN:],
    )


def unpack_request_download_response(response: bytes) -> RequestDownloadResponse:
    """Decode a RequestDownload positive response."""
    response = bytes(response)
    _check_sid(response, SID.REQUEST_DOWNLOAD)
    if len(response) < RESP_0X34_BASE_LEN:
        raise UDSError(Err.RESP_TOO_SHORT)
    size = (response[1] & 0xF0) >> 4
    if size > _MAX_BLOCK_LENGTH_BYTES:
        raise UDSError(Err.ERR, "maxNumberOfBlockLength is too wide")
    field = response[RESP_0X34_BASE_LEN:RESP_0X34_BASE_LEN + size]
    if len(field) < size:
        raise UDSError(Err.RESP_TOO_SHORT)
    return RequestDownloadResponse(max_number_of_block_length=int.from_bytes(field, "big"))


def unpack_rdbi_response(buf: bytes, did: int, size: int, offset: int = 0) -> tuple[bytes, int]:
    """Read the record for ``did`` from a ReadDataByIdentifier response.

    ``offset`` is where the record starts; 0 means the first record. Returns
    the ``size`` data bytes and the offset of the next record.
    """
    buf = bytes(buf)
    if offset == 0:
        offset = RESP_0X22_BASE_LEN
    if offset + 2 > len(buf):
        raise UDSError(Err.RESP_TOO_SHORT)
    their_did = int.from_bytes(buf[offset:offset + 2], "big")
    if their_did != did:
        raise UDSError(Err.DID_MISMATCH)
    start = offset + 2
    end = start + size
    if end > len(buf):
        raise UDSError(Err.RESP_TOO_SHORT)
    return buf[start:end], end