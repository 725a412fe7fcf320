import io

import pytest

from iso14229.client import Client
from iso14229.constants import (
    CLIENT_DEFAULT_P2_MS,
    CLIENT_DEFAULT_P2_STAR_MS,
    ClientOptions,
    Err,
    RequestState,
    SeqState,
    UDSError,
    millis,
)
from iso14229.transport import SDU, TargetAddressType, Transport, TpStatus


class FakeTransport(Transport):
    def __init__(self, size=4095, fail_send=False):
        self.size = size
        self.fail_send = fail_send
        self.sent = []
        self.pending = b""
        self.pending_info = SDU()
        self.acks = 0

    def send_buffer_size(self):
        return self.size

    def send(self, data, info=None):
        if self.fail_send:
            raise UDSError(Err.TPORT)
        self.sent.append((bytes(data), info))
        return len(data)

    def poll(self):
        return TpStatus.IDLE

    def peek(self):
        return self.pending, self.pending_info

    def ack_recv(self):
        self.pending = b""
        self.pending_info = SDU()
        self.acks += 1

    def reply(self, data, functional=False):
        self.pending = bytes(data)
        self.pending_info = SDU(
            target_address_type=TargetAddressType.FUNCTIONAL if functional else TargetAddressType.PHYSICAL
        )


@pytest.fixture
def tp():
    return FakeTransport()


@pytest.fixture
def client(tp):
    return Client(tp)


def run_until_idle(client, limit=20):
    for _ in range(limit):
        if not client.poll():
            return
    raise AssertionError("client did not become idle")


def test_defaults(client):
    assert client.p2_ms == CLIENT_DEFAULT_P2_MS
    assert client.p2_star_ms == CLIENT_DEFAULT_P2_STAR_MS
    assert client.state == RequestState.IDLE
    assert client.poll() is False


def test_ecu_reset_round_trip(client, tp):
    client.send_ecu_reset(0x01)
    assert tp.sent[0][0] == b"\x11\x01"
    assert client.state == RequestState.AWAIT_SEND_COMPLETE
    assert client.poll() is True
    assert client.state == RequestState.AWAIT_RESPONSE
    tp.reply(b"\x51\x01")
    run_until_idle(client)
    assert client.err == Err.OK
    assert client.response == b"\x51\x01"
    assert tp.acks == 1


def test_ecu_reset_subfunction_mismatch(client, tp):
    client.send_ecu_reset(0x01)
    client.poll()
    tp.reply(b"\x51\x02")
    run_until_idle(client)
    assert client.err == Err.SUBFUNCTION_MISMATCH


def test_sid_mismatch(client, tp):
    client.send_tester_present()
    client.poll()
    tp.reply(b"\x51\x01")
    run_until_idle(client)
    assert client.err == Err.SID_MISMATCH
    assert client.state == RequestState.IDLE


def test_negative_response_is_error_when_requested(client, tp):
    client.options = ClientOptions.NEG_RESP_IS_ERR
    client.send_ecu_reset(0x01)
    client.poll()
    tp.reply(b"\x7f\x11\x22")
    run_until_idle(client)
    assert client.err == Err.NEG_RESP


def test_negative_response_not_error_by_default(client, tp):
    client.send_ecu_reset(0x01)
    client.poll()
    tp.reply(b"\x7f\x11\x22")
    run_until_idle(client)
    assert client.err == Err.OK
    assert client.response == b"\x7f\x11\x22"


def test_response_pending_keeps_waiting(client, tp):
    client.send_ecu_reset(0x01)
    client.poll()
    tp.reply(b"\x7f\x11\x78")
    client.poll()
    client.poll()
    assert client.state == RequestState.AWAIT_RESPONSE
    assert client.err == Err.OK
    assert tp.acks == 1
    tp.reply(b"\x51\x01")
    run_until_idle(client)
    assert client.err == Err.OK


def test_suppress_positive_response(client, tp):
    client.options = ClientOptions.SUPPRESS_POS_RESP
    client.send_tester_present()
    assert tp.sent[0][0] == b"\x3e\x80"
    assert client.poll() is False
    assert client.state == RequestState.IDLE


def test_options_reset_to_default_when_idle(client):
    client.options = ClientOptions.SUPPRESS_POS_RESP
    client.default_options = ClientOptions.NEG_RESP_IS_ERR
    client.poll()
    assert client.options == ClientOptions.NEG_RESP_IS_ERR


def test_functional_flag_sets_target_type(client, tp):
    client.options = ClientOptions.FUNCTIONAL
    client.send_tester_present()
    assert client.err == Err.OK
    assert client.state == RequestState.AWAIT_SEND_COMPLETE
    assert tp.sent[0][1].target_address_type == TargetAddressType.FUNCTIONAL


def test_busy(client):
    client.send_tester_present()
    with pytest.raises(UDSError) as exc:
        client.send_tester_present()
    assert exc.value.code == Err.BUSY


def test_no_transport():
    with pytest.raises(UDSError) as exc:
        Client().send_tester_present()
    assert exc.value.code == Err.TPORT


def test_transport_send_failure():
    tp = FakeTransport(fail_send=True)
    client = Client(tp)
    client.send_tester_present()
    assert client.err == Err.TPORT
    assert client.poll() is False


def test_timeout(client, tp):
    client.send_tester_present()
    client.poll()
    client.p2_timer = (millis() - 10) & 0xFFFFFFFF
    client.poll()
    assert client.err == Err.TIMEOUT
    assert client.state == RequestState.IDLE


def test_functional_response_discarded(client, tp):
    client.send_tester_present()
    client.poll()
    tp.reply(b"\x7e\x00", functional=True)
    client.poll()
    assert client.state == RequestState.AWAIT_RESPONSE
    assert tp.acks == 1


def test_diag_session_updates_timings(client, tp):
    client.send_diag_sess_ctrl(0x03)
    assert tp.sent[0][0] == b"\x10\x03"
    client.poll()
    tp.reply(b"\x50\x03\x00\x32\x01\xf4")
    run_until_idle(client)
    assert client.err == Err.OK
    assert client.p2_ms == 50
    assert client.p2_star_ms == 5000


def test_diag_session_ignore_timings(client, tp):
    client.options = ClientOptions.IGNORE_SRV_TIMINGS
    client.send_diag_sess_ctrl(0x03)
    client.poll()
    tp.reply(b"\x50\x03\x00\x32\x01\xf4")
    run_until_idle(client)
    assert client.p2_ms == CLIENT_DEFAULT_P2_MS
    assert client.p2_star_ms == CLIENT_DEFAULT_P2_STAR_MS


def test_diag_session_short_response(client, tp):
    client.send_diag_sess_ctrl(0x03)
    client.poll()
    tp.reply(b"\x50\x03")
    run_until_idle(client)
    assert client.err == Err.RESP_TOO_SHORT


def test_comm_ctrl_bytes(client, tp):
    client.send_comm_ctrl(0x01, 0x03)
    assert client.err == Err.OK
    assert client.state == RequestState.AWAIT_SEND_COMPLETE
    assert tp.sent[0][0] == b"\x28\x01\x03"


def test_rdbi_bytes(client, tp):
    client.send_rdbi([0xF190, 0x0001])
    assert client.err == Err.OK
    assert client.state == RequestState.AWAIT_SEND_COMPLETE
    assert tp.sent[0][0] == b"\x22\xf1\x90\x00\x01"


def test_rdbi_errors():
    client = Client(FakeTransport(size=4))
    with pytest.raises(UDSError) as exc:
        client.send_rdbi([0x0001, 0x0002])
    assert exc.value.code == Err.INVALID_ARG
    with pytest.raises(UDSError) as exc:
        client.send_rdbi([])
    assert exc.value.code == Err.INVALID_ARG


def test_wdbi_bytes_and_bufsiz(tp, client):
    client.send_wdbi(0xF190, b"\xaa\xbb")
    assert tp.sent[0][0] == b"\x2e\xf1\x90\xaa\xbb"
    small = Client(FakeTransport(size=4))
    with pytest.raises(UDSError) as exc:
        small.send_wdbi(0x0001, b"\x01\x02")
    assert exc.value.code == Err.BUFSIZ


def test_routine_ctrl_bytes(client, tp):
    client.send_routine_ctrl(0x01, 0x1234, b"\x09")
    assert client.err == Err.OK
    assert client.state == RequestState.AWAIT_SEND_COMPLETE
    assert tp.sent[0][0] == b"\x31\x01\x12\x34\x09"


def test_request_download_bytes(client, tp):
    client.send_request_download(0x00, 0x24, 0x12345678, 0x1000)
    assert client.err == Err.OK
    assert client.state == RequestState.AWAIT_SEND_COMPLETE
    assert tp.sent[0][0] == b"\x34\x00\x24\x12\x34\x56\x78\x10\x00"


def test_request_upload_bytes(client, tp):
    client.send_request_upload(0x00, 0x11, 0x20, 0x40)
    assert client.err == Err.OK
    assert client.state == RequestState.AWAIT_SEND_COMPLETE
    assert tp.sent[0][0] == b"\x35\x00\x11\x20\x40"


def test_transfer_data(client, tp):
    client.send_transfer_data(1, 8, b"\x01\x02\x03")
    assert client.err == Err.OK
    assert client.state == RequestState.AWAIT_SEND_COMPLETE
    assert tp.sent[0][0] == b"\x36\x01\x01\x02\x03"


def test_transfer_data_too_long(client):
    with pytest.raises(UDSError) as exc:
        client.send_transfer_data(1, 4, b"\x01\x02\x03")
    assert exc.value.code == Err.INVALID_ARG


def test_transfer_data_stream(client, tp):
    stream = io.BytesIO(b"abcdefgh")
    count = client.send_transfer_data_stream(1, 5, stream)
    assert count == 3
    assert tp.sent[0][0] == b"\x36\x01abc"
    assert stream.read() == b"defgh"


def test_transfer_exit(client, tp):
    client.send_request_transfer_exit()
    assert client.err == Err.OK
    assert client.state == RequestState.AWAIT_SEND_COMPLETE
    assert tp.sent[0][0] == b"\x37"


def test_ctrl_dtc_setting(client, tp):
    client.ctrl_dtc_setting(0x02)
    assert tp.sent[0][0] == b"\x85\x02"
    fresh = Client(FakeTransport())
    with pytest.raises(UDSError) as exc:
        fresh.ctrl_dtc_setting(0x00)
    assert exc.value.code == Err.INVALID_ARG


def test_security_access(client, tp):
    client.send_security_access(0x01)
    assert tp.sent[0][0] == b"\x27\x01"
    fresh = Client(FakeTransport())
    with pytest.raises(UDSError) as exc:
        fresh.send_security_access(0x00)
    assert exc.value.code == Err.INVALID_ARG


def test_send_bytes_too_large():
    client = Client(FakeTransport(size=2))
    with pytest.raises(UDSError) as exc:
        client.send_bytes(b"\x01\x02\x03")
    assert exc.value.code == Err.BUFSIZ


def test_run_sequence(client):
    calls = []

    def first(c):
        calls.append("first")
        return SeqState.GOTO_NEXT

    def second(c):
        calls.append(c.sequence_data)
        return SeqState.GOTO_NEXT

    client.run_sequence([first, second], "data")
    run_until_idle(client)
    assert calls == ["first", "data"]
    assert client.step_index == 2


def test_sequence_done_stops(client):
    client.run_sequence([lambda c: SeqState.DONE, lambda c: SeqState.GOTO_NEXT])
    assert client.poll() is False
    assert client.step_index == 0


def test_await_idle(client):
    assert client.await_idle() == SeqState.GOTO_NEXT
    client.send_tester_present()
    assert client.await_idle() == SeqState.RUNNING
    client.err = Err.TIMEOUT
    assert client.await_idle() == SeqState.DONE