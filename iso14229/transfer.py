"""Server handlers for the data transfer services (0x34, 0x35, 0x36, 0x37).

Each handler takes the server and the request, writes the response into the
request and returns the response code (``NRC.POSITIVE_RESPONSE`` on success).
"""

from __future__ import annotations

import logging
from typing import Any

from .constants import (
    REQ_0X34_BASE_LEN,
    REQ_0X35_BASE_LEN,
    REQ_0X36_BASE_LEN,
    REQ_0X37_BASE_LEN,
    RESP_0X36_BASE_LEN,
    TP_MTU,
    NRC,
    SID,
    ServerEvent,
    response_sid_of,
)
from .events import Request, RequestDownloadArgs, RequestTransferExitArgs, RequestUploadArgs, TransferDataArgs
from .services import decode_address_and_length

log = logging.getLogger(__name__)

# The block length travels as a 16-bit field.
_BLOCK_LENGTH_BYTES = 2
_LENGTH_FORMAT_IDENTIFIER = _BLOCK_LENGTH_BYTES << 4
_MIN_BLOCK_LENGTH = 3


def reset_transfer(srv: Any) -> None:
    """Forget any transfer in progress."""
    srv.xfer_block_sequence_counter = 1
    srv.xfer_byte_counter = 0
    srv.xfer_total_bytes = 0
    srv.xfer_is_active = False


def _start_transfer(
    srv: Any,
    req: Request,
    sid: int,
    base_len: int,
    event: ServerEvent,
    args_type: type,
    clamp_to_mtu: bool,
) -> int:
    if srv.xfer_is_active:
        return req.negative_response(NRC.CONDITIONS_NOT_CORRECT)
    if len(req.recv) < base_len:
        return req.negative_response(NRC.INCORRECT_MESSAGE_LENGTH_OR_INVALID_FORMAT)

    err, address, size = decode_address_and_length(req, 2)
    if err != NRC.POSITIVE_RESPONSE:
        return req.negative_response(err)

    args = args_type(addr=address, size=size, data_format_identifier=req.recv[1])
    err = srv.emit(event, args)

    if args.max_number_of_block_length < _MIN_BLOCK_LENGTH:
        log.debug("maxNumberOfBlockLength too short")
        return req.negative_response(NRC.GENERAL_PROGRAMMING_FAILURE)
    if err != NRC.POSITIVE_RESPONSE:
        return req.negative_response(err)

    reset_transfer(srv)
    srv.xfer_is_active = True
    srv.xfer_total_bytes = size
    srv.xfer_block_length = args.max_number_of_block_length

    block_length = args.max_number_of_block_length
    if clamp_to_mtu:
        # The block length counts the whole TransferData request, SID included.
        block_length = min(block_length, TP_MTU)

    req.send[:] = bytes((response_sid_of(sid), _LENGTH_FORMAT_IDENTIFIER)) + (
        block_length & 0xFFFF
    ).to_bytes(_BLOCK_LENGTH_BYTES, "big")
    return NRC.POSITIVE_RESPONSE


def request_download(srv: Any, req: Request) -> int:
    """RequestDownload (0x34)."""
    return _start_transfer(
        srv, req, SID.REQUEST_DOWNLOAD, REQ_0X34_BASE_LEN,
        ServerEvent.REQUEST_DOWNLOAD, RequestDownloadArgs, clamp_to_mtu=True,
    )


def request_upload(srv: Any, req: Request) -> int:
    """RequestUpload (0x35)."""
    return _start_transfer(
        srv, req, SID.REQUEST_UPLOAD, REQ_0X35_BASE_LEN,
        ServerEvent.REQUEST_UPLOAD, RequestUploadArgs, clamp_to_mtu=False,
    )


def _fail(srv: Any, req: Request, code: int) -> int:
    reset_transfer(srv)
    return req.negative_response(code)


def transfer_data(srv: Any, req: Request) -> int:
    """TransferData (0x36)."""
    if not srv.xfer_is_active:
        return req.negative_response(NRC.UPLOAD_DOWNLOAD_NOT_ACCEPTED)
    recv = req.recv
    if len(recv) < REQ_0X36_BASE_LEN:
        return _fail(srv, req, NRC.INCORRECT_MESSAGE_LENGTH_OR_INVALID_FORMAT)

    data = bytes(recv[REQ_0X36_BASE_LEN:])
    block_sequence_counter = recv[1]

    if not srv.rcrrp:
        if block_sequence_counter != srv.xfer_block_sequence_counter:
            return _fail(srv, req, NRC.REQUEST_SEQUENCE_ERROR)
        srv.xfer_block_sequence_counter = (srv.xfer_block_sequence_counter + 1) & 0xFF

    if srv.xfer_byte_counter + len(data) > srv.xfer_total_bytes:
        return _fail(srv, req, NRC.TRANSFER_DATA_SUSPENDED)

    args = TransferDataArgs(
        data=data,
        max_resp_len=srv.xfer_block_length - RESP_0X36_BASE_LEN,
        copy_response=req.copy,
    )
    req.send[:] = bytes((response_sid_of(SID.TRANSFER_DATA), block_sequence_counter))

    err = srv.emit(ServerEvent.TRANSFER_DATA, args)
    if err == NRC.POSITIVE_RESPONSE:
        srv.xfer_byte_counter += len(data)
        return NRC.POSITIVE_RESPONSE
    if err == NRC.REQUEST_CORRECTLY_RECEIVED_RESPONSE_PENDING:
        return req.negative_response(NRC.REQUEST_CORRECTLY_RECEIVED_RESPONSE_PENDING)
    return _fail(srv, req, err)


def request_transfer_exit(srv: Any, req: Request) -> int:
    """RequestTransferExit (0x37)."""
    if not srv.xfer_is_active:
        return req.negative_response(NRC.UPLOAD_DOWNLOAD_NOT_ACCEPTED)

    req.send[:] = bytes((response_sid_of(SID.REQUEST_TRANSFER_EXIT),))
    args = RequestTransferExitArgs(
        data=bytes(req.recv[REQ_0X37_BASE_LEN:]), copy_response=req.copy
    )
    err = srv.emit(ServerEvent.REQUEST_TRANSFER_EXIT, args)
    if err == NRC.POSITIVE_RESPONSE:
        reset_transfer(srv)
        return NRC.POSITIVE_RESPONSE
    if err == NRC.REQUEST_CORRECTLY_RECEIVED_RESPONSE_PENDING:
        return req.negative_response(NRC.REQUEST_CORRECTLY_RECEIVED_RESPONSE_PENDING)
    return _fail(srv, req, err)