import pytest

from receipty.printing.client import (
    CONTROL_ERROR_STATUS,
    CUT_DISABLED,
    USB_CONTROL_UNAVAILABLE,
    PrinterClient,
    RetryPolicy,
)
from receipty.printing.errors import (
    ClosedError,
    ConnectError,
    ImageDecodeError,
    ReadError,
    TransportTimeoutError,
    WriteError,
)
from receipty.printing.payload import CUT_FULL, CUT_PARTIAL
from receipty.printing.status import STATUS_REQUEST


def _client(transport, **kwargs):
    sleeps = []
    kwargs.setdefault("feed_lines", 2)
    kwargs.setdefault("rng", lambda: 0.5)
    client = PrinterClient(transport, sleep=sleeps.append, **kwargs)
    return client, sleeps


def test_retry_delay_formula():
    policy = RetryPolicy()
    assert policy.delay(0, lambda: 0.0) == pytest.approx(0.15)
    assert policy.delay(0, lambda: 0.5) == pytest.approx(0.25)
    assert policy.delay(1, lambda: 0.5) == pytest.approx(0.40)
    assert policy.delay(1, lambda: 0.999) == pytest.approx(0.499)


def test_print_retries_transient_failures(transport_factory):
    t = transport_factory(open_errors=[ConnectError("refused"), TransportTimeoutError("slow")])
    client, sleeps = _client(t)
    result = client.print("Hello")
    assert result.attempts == 3
    assert result.bytes_written == len(b"Hello\n\n\n" + CUT_PARTIAL)
    assert t.writes == [b"Hello\n\n\n" + CUT_PARTIAL]
    assert sleeps == [pytest.approx(0.25), pytest.approx(0.40)]


def test_print_raises_last_error_when_retries_exhausted(transport_factory):
    t = transport_factory(
        write_errors=[WriteError("first"), WriteError("second"), WriteError("third")],
    )
    client, sleeps = _client(t)
    with pytest.raises(WriteError, match="third"):
        client.print("Hello")
    assert t.opens == 3
    assert t.closes == 3
    assert len(sleeps) == 2


def test_usb_print_is_not_retried(transport_factory):
    t = transport_factory("usb", supports_confirmation=False, retry_transient=False,
                          write_errors=[WriteError("pipe")])
    client, sleeps = _client(t)
    with pytest.raises(WriteError):
        client.print("Hello")
    assert t.opens == 1
    assert sleeps == []


def test_print_always_closes_handle(transport_factory):
    t = transport_factory(write_errors=[WriteError("x")])
    client, _ = _client(t, retry=RetryPolicy(retries=0))
    with pytest.raises(WriteError):
        client.print("Hello")
    assert t.calls[-1] == ("close",)
    assert t.active == 0


def test_print_rejects_bad_image_before_io(transport_factory):
    t = transport_factory()
    client, _ = _client(t)
    with pytest.raises(ImageDecodeError):
        client.print("x", b"not-an-image")
    assert t.opens == 0


def test_status_reports_connected(transport_factory):
    client, _ = _client(transport_factory())
    status = client.status()
    assert status.connected is True
    assert status.to_dict() == {"connected": True, "details": {"mode": "ethernet"}}


def test_status_never_raises(transport_factory):
    client, _ = _client(transport_factory(probe_error=ConnectError("no route")))
    status = client.status()
    assert status.connected is False
    assert status.details["error"] == "no route"


def test_control_unavailable_on_usb(transport_factory):
    t = transport_factory("usb", supports_confirmation=False, retry_transient=False)
    client, _ = _client(t)
    for command in ("feed", "cut", "status"):
        result = client.control(command)
        assert result.confirmed is False
        assert result.error == USB_CONTROL_UNAVAILABLE
    assert t.calls == []


def test_cut_disabled_sends_nothing(transport_factory):
    t = transport_factory()
    client, _ = _client(t, cut_mode="none")
    result = client.control("cut")
    assert result.confirmed is False
    assert result.error == CUT_DISABLED
    assert t.calls == []


def test_feed_writes_lines_then_status_request(transport_factory):
    t = transport_factory(response=b"\x12\x12\x12\x12")
    client, _ = _client(t, feed_lines=3)
    result = client.control("feed")
    assert result.confirmed is True
    assert result.status.ok is True
    assert t.writes == [b"\n\n\n", STATUS_REQUEST]
    assert ("read", 4) in t.calls
    assert t.closes == 1


def test_cut_uses_configured_mode(transport_factory):
    t = transport_factory()
    client, _ = _client(t, feed_lines=1, cut_mode="full")
    assert client.control("cut").confirmed is True
    assert t.writes[0] == b"\n" + CUT_FULL


def test_control_error_status_is_not_confirmed(transport_factory):
    t = transport_factory(response=b"\x08\x00\x00\x00")
    client, _ = _client(t)
    result = client.control("feed")
    assert result.confirmed is False
    assert result.error == CONTROL_ERROR_STATUS
    assert result.status is not None and result.status.ok is False
    assert result.to_dict()["status"]["ok"] is False


def test_status_query_confirmed_even_with_errors(transport_factory):
    t = transport_factory(response=b"\x08\x00\x00\x00")
    client, _ = _client(t)
    result = client.control("status")
    assert result.confirmed is True
    assert result.status.ok is False
    assert t.writes == [STATUS_REQUEST]


def test_control_read_failure(transport_factory):
    t = transport_factory(read_error=ClosedError("socket closed before status response (0/4 bytes)"))
    client, _ = _client(t)
    result = client.control("status")
    assert result.confirmed is False
    assert "socket closed" in result.error
    assert t.closes == 1


def test_control_is_not_retried(transport_factory):
    t = transport_factory(open_errors=[ConnectError("refused")])
    client, sleeps = _client(t)
    result = client.control("feed")
    assert result.confirmed is False
    assert t.opens == 1
    assert sleeps == []


def test_unknown_control_command(transport_factory):
    t = transport_factory()
    client, _ = _client(t)
    result = client.control("dance")
    assert result.confirmed is False
    assert "dance" in result.error
    assert t.calls == []


def test_unexpected_control_error_is_reported(transport_factory):
    t = transport_factory(read_error=RuntimeError("driver bug"))
    client, _ = _client(t)
    result = client.control("status")
    assert result.to_dict() == {"confirmed": False, "error": "driver bug"}


def test_from_settings(make_settings, transport_factory):
    settings = make_settings(feed_lines=4, cut_mode="full", retry_count=5, connect_timeout_ms=1500)
    client = PrinterClient.from_settings(settings, transport=transport_factory())
    assert client.feed_lines == 4
    assert client.cut_mode == "full"
    assert client.retry.retries == 5
    assert client.connect_timeout == pytest.approx(1.5)
    assert client.mode == "ethernet"


def test_read_error_type_hierarchy():
    assert issubclass(ClosedError, ReadError)
