"""Test classes TransportConfig and TcpTransport against a raw loopback peer."""
import socket
import threading
import time

from pydantic import ValidationError
import pytest

from cnet.client.transport import TcpTransport, TransportConfig
from cnet.common.errors import NotConnectedError
from cnet.common.framing import frame

from conftest import recv_message


REQUEST_TEXT = "OPERATION:ADD\nOPERAND1:3\nOPERAND2:4"
RESPONSE_TEXT = "RESULT:7\nSTATUS:OK\nMESSAGE:done"


def _connect(listener: socket.socket, **kwargs):
    """Open a transport on the listener's port and accept the peer side."""
    config = TransportConfig(port=listener.getsockname()[1])
    transport = TcpTransport(config, **kwargs)
    transport.open()
    peer, _ = listener.accept()
    return transport, peer


def _free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


def test_config_defaults() -> None:
    """Default target is the local server on port 9000."""
    config = TransportConfig()
    assert str(config.host) == "127.0.0.1"
    assert config.port == 9000
    assert config.close_signal == ""
    assert config.address == "127.0.0.1:9000"


def test_config_invalid_port() -> None:
    """Ports outside the valid range raise a ValidationError."""
    with pytest.raises(ValidationError):
        TransportConfig(port=0)


def test_config_from_uri() -> None:
    """A tcp:// URI sets host and port."""
    config = TransportConfig.from_uri("tcp://10.0.0.5:8080", close_signal="BYE")
    assert str(config.host) == "10.0.0.5"
    assert config.port == 8080
    assert config.close_signal == "BYE"


@pytest.mark.parametrize("uri", ["ws://127.0.0.1:8080", "127.0.0.1:9000", "tcp://:9000"])
def test_config_from_uri_invalid(uri) -> None:
    """Only tcp:// URIs with a host are accepted."""
    with pytest.raises(ValueError):
        TransportConfig.from_uri(uri)


def test_send_before_open() -> None:
    """Sending before the transport is ready fails fast."""
    transport = TcpTransport()
    assert not transport.is_ready
    with pytest.raises(NotConnectedError):
        transport.send(REQUEST_TEXT)


def test_open_unreachable() -> None:
    """A refused connection is reported as NotConnectedError."""
    transport = TcpTransport(TransportConfig(port=_free_port(), connect_timeout=1))
    with pytest.raises(NotConnectedError):
        transport.open()
    assert not transport.is_ready


def test_send_delivers_exact_text(listener) -> None:
    """The peer receives exactly the sent string as one message."""
    transport, peer = _connect(listener)
    with peer:
        assert transport.is_ready
        transport.send(REQUEST_TEXT)
        assert recv_message(peer) == REQUEST_TEXT
        transport.close()


def test_handler_called_once_per_message(listener) -> None:
    """One inbound message invokes the registered handler once with the unmodified text."""
    received = []
    arrived = threading.Event()

    def handler(text: str) -> None:
        received.append(text)
        arrived.set()

    transport, peer = _connect(listener)
    with peer:
        transport.on_receive(handler)
        peer.sendall(frame(RESPONSE_TEXT))
        assert arrived.wait(5)
        transport.close()

    assert received == [RESPONSE_TEXT]


def test_handler_replacement(listener) -> None:
    """Registering a handler returns the one it replaces, None switches back to the queue."""
    first, second = [], []
    transport, peer = _connect(listener)
    with peer:
        assert transport.on_receive(first.append) is None
        assert transport.on_receive(second.append) == first.append
        assert transport.on_receive(None) == second.append

        peer.sendall(frame("A:1") + frame("B:2"))
        assert transport.receive(timeout=5) == "A:1"
        assert transport.receive(timeout=5) == "B:2"
        assert transport.receive(timeout=0.05) is None
        transport.close()

    assert first == [] and second == []


def test_close_sends_close_signal(listener) -> None:
    """Closing sends the empty close message, then ends the stream."""
    transport, peer = _connect(listener)
    with peer:
        transport.close()
        peer.settimeout(5)
        data = b""
        while True:
            chunk = peer.recv(4096)
            if not chunk:
                break
            data += chunk
    assert data == b"0\n"
    assert not transport.is_ready


def test_close_is_idempotent(listener) -> None:
    """Closing twice, or closing a never-opened transport, does not raise."""
    TcpTransport().close()

    transport, peer = _connect(listener)
    with peer:
        transport.close()
        transport.close()
    with pytest.raises(NotConnectedError):
        transport.send(REQUEST_TEXT)


def test_peer_disconnect_clears_ready(listener) -> None:
    """When the peer ends the stream, further sends fail."""
    transport, peer = _connect(listener)
    peer.close()

    deadline = time.monotonic() + 5
    while transport.is_ready and time.monotonic() < deadline:
        time.sleep(0.01)

    assert not transport.is_ready
    with pytest.raises(NotConnectedError):
        transport.send(REQUEST_TEXT)
    transport.close()


def test_observer_receives_events(listener) -> None:
    """The injected observer sees open, send, receive and close events."""
    events = []
    transport, peer = _connect(listener, observer=lambda event, text: events.append((event, text)))
    with peer:
        transport.send(REQUEST_TEXT)
        recv_message(peer)
        peer.sendall(frame("RESULT:7"))
        assert transport.receive(timeout=5) == "RESULT:7"
        transport.close()

    address = transport.config.address
    assert events == [
        ("open", address),
        ("send", REQUEST_TEXT),
        ("receive", "RESULT:7"),
        ("close", address),
    ]


def test_failing_handler_keeps_reader_alive(listener) -> None:
    """An exception in the handler is reported as an error event and later messages are still delivered."""
    received = []
    events = []
    arrived = threading.Event()

    def handler(text: str) -> None:
        if text == "bad":
            raise RuntimeError("boom")
        received.append(text)
        arrived.set()

    transport, peer = _connect(listener, observer=lambda event, text: events.append((event, text)))
    with peer:
        transport.on_receive(handler)
        peer.sendall(frame("bad") + frame("good"))
        assert arrived.wait(5)
        transport.close()

    assert received == ["good"]
    errors = [text for event, text in events if event == "error"]
    assert len(errors) == 1
    assert "'bad'" in errors[0] and "boom" in errors[0]


def test_context_manager(listener) -> None:
    """The transport opens on enter and closes on exit."""
    config = TransportConfig(port=listener.getsockname()[1])
    with TcpTransport(config) as transport:
        peer, _ = listener.accept()
        assert transport.is_ready
    with peer:
        assert recv_message(peer) == ""
    assert not transport.is_ready


def test_blank_lines_stay_in_one_message(listener) -> None:
    """Texts holding blank lines or ending with a newline travel as one message in both directions."""
    texts = ["MESSAGE:line1\n\nline2", "RESULT:1\n", "\n\n"]
    transport, peer = _connect(listener)
    with peer:
        for text in texts:
            transport.send(text)
            assert recv_message(peer) == text

        peer.sendall(b"".join(frame(text) for text in texts))
        assert [transport.receive(timeout=5) for _ in texts] == texts
        assert transport.receive(timeout=0.05) is None
        transport.close()


def test_non_ascii_text_unchanged(listener) -> None:
    """Non-ASCII text is delivered byte for byte, even when split across TCP segments."""
    text = "MESSAGE:résultat ✓ 計算"
    data = frame(text)
    transport, peer = _connect(listener)
    with peer:
        peer.sendall(data[:12])
        time.sleep(0.05)
        peer.sendall(data[12:])
        assert transport.receive(timeout=5) == text
        transport.close()


@pytest.mark.parametrize(
    "data",
    [
        b"abc\nRESULT:7",
        b"2\n\xff\xfe",
        b"RESULT:7 without any length header",
    ],
)
def test_malformed_frame_ends_connection(listener, data) -> None:
    """An unreadable inbound frame is reported as an error event and the transport stops being ready."""
    events = []
    transport, peer = _connect(listener, observer=lambda event, text: events.append((event, text)))
    with peer:
        peer.sendall(data)

        deadline = time.monotonic() + 5
        while transport.is_ready and time.monotonic() < deadline:
            time.sleep(0.01)

        assert not transport.is_ready
        assert transport.receive(timeout=0.05) is None
        with pytest.raises(NotConnectedError):
            transport.send(REQUEST_TEXT)
        transport.close()

    errors = [text for event, text in events if event == "error"]
    assert len(errors) == 1
    assert errors[0].startswith("Dropping connection")


def test_inbox_is_bounded(listener) -> None:
    """Unread messages beyond the inbox size wait on the socket and are delivered later, in order."""
    config = TransportConfig(port=listener.getsockname()[1], inbox_size=1)
    transport = TcpTransport(config)
    transport.open()
    peer, _ = listener.accept()
    with peer:
        peer.sendall(frame("A:1") + frame("A:2") + frame("A:3"))

        deadline = time.monotonic() + 5
        while not transport._inbox.full() and time.monotonic() < deadline:
            time.sleep(0.01)
        time.sleep(0.1)
        assert transport._inbox.qsize() == 1

        assert [transport.receive(timeout=5) for _ in range(3)] == ["A:1", "A:2", "A:3"]
        transport.close()


def test_config_invalid_inbox_size() -> None:
    """The inbox holds at least one message."""
    with pytest.raises(ValidationError):
        TransportConfig(inbox_size=0)
