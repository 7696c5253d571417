"""Shared fixtures: loopback sockets and a CNET server running in a thread."""
import socket
import threading
from typing import Iterator

import pytest

from cnet.common.framing import read_frame
from cnet.server.server import CNETServer


@pytest.fixture
def listener() -> Iterator[socket.socket]:
    """Listening loopback socket on an ephemeral port."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        s.listen()
        s.settimeout(5)
        yield s


@pytest.fixture
def server_port(listener: socket.socket) -> Iterator[int]:
    """Port of a CNETServer serving one client session in a background thread."""
    server = CNETServer()
    thread = threading.Thread(target=server.serve, args=(listener,), daemon=True)
    thread.start()
    yield listener.getsockname()[1]
    thread.join(timeout=5)


def recv_message(conn: socket.socket) -> str:
    """Read one length-prefixed message from a raw socket."""
    conn.settimeout(5)
    data = b""
    while True:
        text, _ = read_frame(data)
        if text is not None:
            return text
        chunk = conn.recv(4096)
        if not chunk:
            raise ConnectionError(f"Stream ended inside a message: {data!r}")
        data += chunk
