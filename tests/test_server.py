import pytest

from iso14229 import services, transfer
from iso14229.constants import (
    NEGATIVE_RESPONSE_SID,
    NRC,
    SID,
    DiagnosticSessionType,
    Err,
    ServerEvent,
    UDSError,
    millis,
    response_sid_of,
)
from iso14229.events import Request
from iso14229.server import Server, evaluate_service_response, service_for_sid
from iso14229.transport import SDU, TargetAddressType, TpStatus, Transport


class FakeTransport(Transport):
    def __init__(self):
        self.inbox = []
        self.sent = []
        self.info = SDU()
        self.fail_send = False

    def send_buffer_size(self):
        return 4095

    def send(self, data, info=None):
        if self.fail_send:
            raise UDSError(Err.TPORT)
        self.sent.append(bytes(data))
        return len(data)

    def poll(self):
        return TpStatus.IDLE

    def peek(self):
        if self.inbox:
            return self.inbox[0], self.info
        return b"", SDU()

    def ack_recv(self):
        if self.inbox:
            self.inbox.pop(0)


class Recorder:
    def __init__(self, results=None):
        self.events = []
        self.results = list(results or [])

    def __call__(self, srv, event, args):
        self.events.append((event, args))
        if self.results:
            return self.results.pop(0)
        return NRC.POSITIVE_RESPONSE


def expire_p2(srv):
    srv.p2_timer = (millis() - 1) & 0xFFFFFFFF


def exchange(srv, tp, request):
    tp.inbox.append(request)
    srv.poll()
    expire_p2(srv)
    srv.poll()
    return tp.sent[-1]


def neg(sid, code):
    return bytes((NEGATIVE_RESPONSE_SID, sid, code))


def test_service_for_sid():
    assert service_for_sid(SID.TESTER_PRESENT) is services.tester_present
    assert service_for_sid(SID.TRANSFER_DATA) is transfer.transfer_data
    assert service_for_sid(SID.CLEAR_DIAGNOSTIC_INFORMATION) is None
    assert service_for_sid(0x01) is None


def test_emit_without_handler_rejects():
    srv = Server(FakeTransport())
    assert srv.emit(ServerEvent.ECU_RESET, None) == NRC.GENERAL_REJECT


def test_evaluate_unknown_service():
    srv = Server(None, Recorder())
    req = Request(recv=bytes((SID.READ_DTC_INFORMATION, 0x01)))
    assert evaluate_service_response(srv, req) == NRC.SERVICE_NOT_SUPPORTED
    assert bytes(req.send) == neg(SID.READ_DTC_INFORMATION, NRC.SERVICE_NOT_SUPPORTED)


def test_evaluate_without_handler():
    srv = Server(None, None)
    req = Request(recv=bytes((SID.TESTER_PRESENT, 0x00)))
    assert evaluate_service_response(srv, req) == NRC.SERVICE_NOT_SUPPORTED
    assert bytes(req.send) == neg(SID.TESTER_PRESENT, NRC.SERVICE_NOT_SUPPORTED)


def test_evaluate_suppresses_positive_response():
    srv = Server(None, Recorder())
    req = Request(recv=bytes((SID.TESTER_PRESENT, 0x80)))
    assert evaluate_service_response(srv, req) == NRC.POSITIVE_RESPONSE
    assert bytes(req.send) == b""


def test_evaluate_does_not_suppress_negative_response():
    srv = Server(None, Recorder([NRC.CONDITIONS_NOT_CORRECT]))
    req = Request(recv=bytes((SID.DIAGNOSTIC_SESSION_CONTROL, 0x81)))
    assert evaluate_service_response(srv, req) == NRC.CONDITIONS_NOT_CORRECT
    assert bytes(req.send) == neg(SID.DIAGNOSTIC_SESSION_CONTROL, NRC.CONDITIONS_NOT_CORRECT)


@pytest.mark.parametrize(
    "addressing, expected",
    [
        (TargetAddressType.FUNCTIONAL, b""),
        (
            TargetAddressType.PHYSICAL,
            bytes((NEGATIVE_RESPONSE_SID, SID.ROUTINE_CONTROL, NRC.REQUEST_OUT_OF_RANGE)),
        ),
    ],
)
def test_evaluate_functional_out_of_range_is_silent(addressing, expected):
    srv = Server(None, Recorder())
    req = Request(
        recv=bytes((SID.ROUTINE_CONTROL, 0x05, 0x12, 0x34)),
        info=SDU(target_address_type=addressing),
    )
    assert evaluate_service_response(srv, req) == NRC.REQUEST_OUT_OF_RANGE
    assert bytes(req.send) == expected


def test_poll_answers_tester_present():
    tp = FakeTransport()
    srv = Server(tp, Recorder())
    response = exchange(srv, tp, bytes((SID.TESTER_PRESENT, 0x00)))
    assert response == bytes((response_sid_of(SID.TESTER_PRESENT), 0x00))
    assert tp.inbox == []
    assert not srv.request_in_progress


def test_poll_waits_for_p2_before_answering():
    tp = FakeTransport()
    srv = Server(tp, Recorder())
    tp.inbox.append(bytes((SID.TESTER_PRESENT, 0x00)))
    srv.p2_timer = (millis() + 60_000) & 0xFFFFFFFF
    srv.poll()
    srv.poll()
    assert tp.sent == []
    assert srv.request_in_progress


def test_poll_write_data_by_identifier():
    tp = FakeTransport()
    handler = Recorder()
    srv = Server(tp, handler)
    response = exchange(srv, tp, bytes((SID.WRITE_DATA_BY_IDENTIFIER, 0x00, 0x01, 0x07)))
    assert response == bytes((response_sid_of(SID.WRITE_DATA_BY_IDENTIFIER), 0x00, 0x01))
    event, args = handler.events[0]
    assert event == ServerEvent.WRITE_DATA_BY_IDENT
    assert (args.data_id, args.data) == (1, b"\x07")


def test_poll_send_failure_emits_error():
    tp = FakeTransport()
    tp.fail_send = True
    handler = Recorder()
    srv = Server(tp, handler)
    tp.inbox.append(bytes((SID.TESTER_PRESENT, 0x00)))
    srv.poll()
    expire_p2(srv)
    srv.poll()
    assert (ServerEvent.ERR, Err.TPORT) in handler.events
    assert not srv.request_in_progress


def test_poll_session_timeout():
    tp = FakeTransport()
    handler = Recorder()
    srv = Server(tp, handler)
    srv.session_type = DiagnosticSessionType.EXTENDED_DIAGNOSTIC
    srv.s3_session_timeout_timer = (millis() - 1) & 0xFFFFFFFF
    srv.poll()
    assert handler.events == [(ServerEvent.SESSION_TIMEOUT, None)]


def test_poll_no_timeout_in_default_session():
    tp = FakeTransport()
    handler = Recorder()
    srv = Server(tp, handler)
    srv.s3_session_timeout_timer = (millis() - 1) & 0xFFFFFFFF
    srv.poll()
    assert handler.events == []


def test_ecu_reset_blocks_requests_and_schedules_reset():
    tp = FakeTransport()
    handler = Recorder()
    srv = Server(tp, handler)
    response = exchange(srv, tp, bytes((SID.ECU_RESET, 0x01)))
    assert response == bytes((response_sid_of(SID.ECU_RESET), 0x01))
    assert srv.not_ready_to_receive

    tp.inbox.append(bytes((SID.TESTER_PRESENT, 0x00)))
    sent_before = len(tp.sent)
    srv.ecu_reset_timer = (millis() + 60_000) & 0xFFFFFFFF
    srv.poll()
    assert len(tp.sent) == sent_before
    assert len(tp.inbox) == 1

    srv.ecu_reset_timer = (millis() - 1) & 0xFFFFFFFF
    srv.poll()
    assert handler.events[-1] == (ServerEvent.DO_SCHEDULED_RESET, 1)


def test_response_pending_then_final_response():
    tp = FakeTransport()
    pending = NRC.REQUEST_CORRECTLY_RECEIVED_RESPONSE_PENDING
    srv = Server(tp, Recorder([pending, pending, NRC.POSITIVE_RESPONSE]))
    tp.inbox.append(bytes((SID.ROUTINE_CONTROL, 0x01, 0x12, 0x34)))

    srv.poll()
    assert srv.rcrrp
    expire_p2(srv)
    srv.poll()
    assert tp.sent == [neg(SID.ROUTINE_CONTROL, pending)]
    assert srv.request_in_progress

    expire_p2(srv)
    srv.poll()
    assert not srv.rcrrp
    expire_p2(srv)
    srv.poll()
    assert tp.sent[-1] == bytes((response_sid_of(SID.ROUTINE_CONTROL), 0x01, 0x12, 0x34))
    assert not srv.request_in_progress
    assert tp.inbox == []


def test_poll_without_transport_raises():
    srv = Server(None, Recorder())
    with pytest.raises(UDSError) as info:
        srv.poll()
    assert info.value.code == Err.TPORT