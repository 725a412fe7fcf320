# iso14229

Unified Diagnostic Services (ISO 14229) for Python: a diagnostic client
(tester) and a diagnostic server (ECU side), each a polled state machine
running on top of a transport you supply. There are no third-party
dependencies.

## What is not included

The package contains no concrete transport: no ISO-TP implementation, no
CAN driver and no socket binding. You write a `Transport` subclass for
your bus (or an in-memory one for tests). It also has no command-line
program; client and server are used from your own code, which is
responsible for calling `poll()` in a loop.

## Transport

`iso14229.transport.Transport` is an abstract base class. A subclass
provides:

- `send_buffer_size()` – the largest message it can send
- `send(data, info)` – start sending `data`; return the number of bytes
  accepted, or 0 while sending is still pending. `info` is an `SDU`
  (message type and `TargetAddressType.PHYSICAL` or `FUNCTIONAL`), or
  `None` for physical addressing
- `poll()` – advance the transport and return `TpStatus` flags
  (`SEND_IN_PROGRESS`, `RECV_COMPLETE`)
- `peek()` – return `(data, sdu)` for the received message, or empty bytes
  if there is none; the result stays the same until `ack_recv()`
- `ack_recv()` – discard the received message

Failures are reported by raising `iso14229.constants.UDSError`.
`recv_data()` and `recv_len()` are helpers built on `peek()`.

## Client

```python
from iso14229.client import Client

client = Client(tp)
client.send_tester_present()
while client.poll():
    pass  # poll until the request is finished

if client.err:
    print("request failed:", client.err.name)
else:
    print("response:", client.response.hex())
```

`Client` has one method per service: `send_diag_sess_ctrl`,
`send_ecu_reset`, `send_comm_ctrl`, `send_tester_present`, `send_rdbi`,
`send_wdbi`, `send_routine_ctrl`, `send_security_access`,
`send_request_download`, `send_request_upload`, `send_transfer_data`,
`send_transfer_data_stream` (reads one block from a binary stream and
returns how many bytes it read), `send_request_transfer_exit`,
`ctrl_dtc_setting`, and `send_bytes` for a raw request.

These methods raise `UDSError` when a request cannot be started: the
client is busy (`Err.BUSY`), there is no transport or it fails
(`Err.TPORT`), the request does not fit (`Err.BUFSIZ`), or an argument is
invalid (`Err.INVALID_ARG`). Problems that arise while a request is in
flight – timeouts, SID or sub-function mismatches, short responses,
transport errors – are stored in `client.err` and end the request.

Request options are `ClientOptions` flags set on `client.options` before
sending (`client.default_options` is restored whenever the client is
idle):

- `SUPPRESS_POS_RESP` – set the suppress-positive-response bit and do not
  wait for a reply
- `FUNCTIONAL` – send with functional addressing
- `NEG_RESP_IS_ERR` – record a negative response as `Err.NEG_RESP`
- `IGNORE_SRV_TIMINGS` – keep P2/P2* instead of adopting the values in a
  DiagnosticSessionControl response

A "response pending" (0x78) reply extends the wait by P2*.

### Decoding responses

`iso14229.responses` turns `client.response` into data classes:
`unpack_security_access_response`, `unpack_routine_control_response` and
`unpack_request_download_response`. `unpack_rdbi_response(buf, did, size,
offset)` returns a record's bytes and the offset of the next record, so
several data identifiers can be read in turn. All of them raise
`UDSError` on a wrong SID, DID or length.

### Downloads and sequences

```python
from iso14229.download import configure_download

with open("image.bin", "rb") as stream:
    configure_download(client, 0x00, 0x44, 0x08000000, size, stream)
    while client.poll():
        pass
```

This runs RequestDownload, then TransferData blocks of the length the
server allows until the stream is exhausted, then RequestTransferExit.
Any failure ends the sequence with the reason in `client.err`
(`Err.FILE_IO` if reading the stream fails).

Other multi-step exchanges can be run the same way with
`client.run_sequence(steps, data)`: each step is called with the client
when it is idle and returns a `SeqState` (`RUNNING`, `GOTO_NEXT` or
`DONE`). `Client.await_idle` is a ready-made step that waits for the
current request to finish; `data` is available as
`client.sequence_data`.

## Server

```python
from iso14229.constants import NRC, ServerEvent
from iso14229.server import Server

def handler(srv, event, args):
    if event == ServerEvent.READ_DATA_BY_IDENT and args.data_id == 0xF190:
        return args.copy(b"EXAMPLE-0000000001")
    if event == ServerEvent.DIAG_SESS_CTRL:
        return NRC.POSITIVE_RESPONSE
    return NRC.REQUEST_OUT_OF_RANGE

srv = Server(tp, handler)
while True:
    srv.poll()
```

The handler is called as `handler(server, event, args)` with a
`ServerEvent` and the matching argument object from `iso14229.events`,
and returns an `NRC` code: `NRC.POSITIVE_RESPONSE` to accept, anything
else to send that negative response. Argument objects that carry a
`copy`, `copy_seed`, `copy_status_record` or `copy_response` callable let
the handler append data to the response; it returns
`NRC.RESPONSE_TOO_LONG` instead of appending when the data would not fit.
Handlers for DiagnosticSessionControl, ECUReset, RequestDownload and
RequestUpload may change fields of `args` (timings, power-down time,
block length) to shape the response.

Supported services: DiagnosticSessionControl, ECUReset,
ReadDataByIdentifier, ReadMemoryByAddress, SecurityAccess,
CommunicationControl, WriteDataByIdentifier, RoutineControl,
RequestDownload, RequestUpload, TransferData, RequestTransferExit,
TesterPresent and ControlDTCSetting. Any other SID, or a server without a
handler, gets `SERVICE_NOT_SUPPORTED`.

The server also:

- emits `SESSION_TIMEOUT` when a non-default session passes its S3 timeout
  (TesterPresent restarts it)
- emits `DO_SCHEDULED_RESET` once the power-down time after an accepted
  ECUReset has passed, and stops accepting requests meanwhile
- delays SecurityAccess after start-up and after a rejected key, and
  answers a seed request for an already unlocked level with a zero seed
- checks TransferData block counters and total length
- suppresses positive responses when the request asks for it, and stays
  silent on "not supported" and "out of range" negative responses to
  functionally addressed requests
- repeats "response pending" (0x78), at least 0.3 × P2* apart, while a
  handler keeps returning it
- emits `ERR` when the transport fails

The service handlers themselves are plain functions in
`iso14229.services` and `iso14229.transfer`; `service_for_sid` and
`evaluate_service_response` in `iso14229.server` dispatch to them.