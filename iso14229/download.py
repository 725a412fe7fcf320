"""Client sequence that downloads a stream to a server."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import BinaryIO

from .client import Client
from .constants import REQ_0X36_BASE_LEN, Err, RequestState, SeqState, UDSError
from .responses import unpack_request_download_response

log = logging.getLogger(__name__)


@dataclass
class DownloadSequence:
    """State shared by the steps of a download."""

    data_format: int
    address_and_length_format: int
    memory_address: int
    memory_size: int
    stream: BinaryIO
    block_sequence_counter: int = 1
    block_length: int = 0
    eof: bool = False


def _request_download(client: Client) -> SeqState:
    seq: DownloadSequence = client.sequence_data
    try:
        client.send_request_download(
            seq.data_format, seq.address_and_length_format, seq.memory_address, seq.memory_size
        )
    except UDSError as exc:
        client.err = exc.code
        return SeqState.DONE
    return SeqState.GOTO_NEXT


def _check_request_download_response(client: Client) -> SeqState:
    seq: DownloadSequence = client.sequence_data
    try:
        resp = unpack_request_download_response(client.response)
    except UDSError as exc:
        client.err = exc.code
        return SeqState.DONE
    seq.block_length = resp.max_number_of_block_length
    if seq.block_length == 0:
        client.err = Err.ERR
        return SeqState.DONE
    return SeqState.GOTO_NEXT


def _prepare_to_transfer(client: Client) -> SeqState:
    client.sequence_data.block_sequence_counter = 1
    return SeqState.GOTO_NEXT


def _transfer_data(client: Client) -> SeqState:
    seq: DownloadSequence = client.sequence_data
    if client.state != RequestState.IDLE:
        return SeqState.RUNNING
    if seq.eof:
        return SeqState.GOTO_NEXT
    counter = seq.block_sequence_counter
    seq.block_sequence_counter = (counter + 1) & 0xFF
    try:
        count = client.send_transfer_data_stream(counter, seq.block_length, seq.stream)
    except OSError as exc:
        log.debug("read failed: %s", exc)
        seq.stream.close()
        client.err = Err.FILE_IO
        return SeqState.DONE
    except UDSError as exc:
        client.err = exc.code
        return SeqState.DONE
    if count < seq.block_length - REQ_0X36_BASE_LEN:
        seq.eof = True
    return SeqState.RUNNING


def _request_transfer_exit(client: Client) -> SeqState:
    try:
        client.send_request_transfer_exit()
    except UDSError as exc:
        client.err = exc.code
        return SeqState.DONE
    return SeqState.GOTO_NEXT


_STEPS = (
    _request_download,
    Client.await_idle,
    _check_request_download_response,
    _prepare_to_transfer,
    _transfer_data,
    _request_transfer_exit,
    Client.await_idle,
)


def configure_download(
    client: Client,
    data_format: int,
    address_and_length_format: int,
    memory_address: int,
    memory_size: int,
    stream: BinaryIO,
) -> DownloadSequence:
    """Install a download sequence on ``client``; drive it by polling the client."""
    seq = DownloadSequence(
        data_format=data_format,
        address_and_length_format=address_and_length_format,
        memory_address=memory_address,
        memory_size=memory_size,
        stream=stream,
    )
    client.run_sequence(_STEPS, seq)
    return seq