"""
TCP transport moving raw CNET text over one persistent connection.

The transport knows nothing about the protocol: it sends the strings it is given and hands
inbound strings, unmodified, to a subscriber.
"""
import queue
import socket
import threading
from typing import Callable, Optional
from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict, Field, IPvAnyAddress

from cnet.common.errors import FramingError, NotConnectedError
from cnet.common.framing import frame, read_frame
from cnet.common.logger import logger


# Receives (event, text) for the "open", "send", "receive", "error" and "close" events
Observer = Callable[[str, str], None]
Handler = Callable[[str], None]


def logging_observer(event: str, text: str) -> None:
    """Default observer, reports transport events through the package logger."""
    if event == "open":
        logger.info(f"🔌 Connected to {text}")
    elif event == "close":
        logger.info(f"🔌 Connection to {text} closed")
    elif event == "error":
        logger.error(f"📨❌ {text}")
    else:
        logger.debug("%s:\n%s", event, text)


class TransportConfig(BaseModel):
    """Connection target and wire settings of a transport."""

    # Make the Pydantic instance immutable (read-only), the target cannot change under an open connection
    model_config = ConfigDict(frozen=True)

    host: IPvAnyAddress = Field(default="127.0.0.1", description="Server host address")
    port: int = Field(default=9000, ge=1, le=65535, description="Server TCP port")
    connect_timeout: float = Field(default=5.0, gt=0, description="Seconds allowed to establish the connection")
    close_signal: str = Field(default="", description="Message body announcing the end of the session")
    encoding: str = Field(default="utf-8", description="Text encoding on the wire")
    inbox_size: int = Field(default=1024, ge=1, description="Unread inbound messages kept while no handler is registered")

    @classmethod
    def from_uri(cls, uri: str, **kwargs) -> "TransportConfig":
        """
        Build a configuration from a ``tcp://host:port`` URI.

        :param str uri: Endpoint URI
        :param kwargs: Other configuration fields

        :return: Transport configuration
        :rtype: TransportConfig
        :raises ValueError: If the scheme is not ``tcp`` or the host is missing
        """
        parts = urlsplit(uri)
        if parts.scheme != "tcp" or not parts.hostname:
            raise ValueError(f"Unsupported transport URI: {uri!r}")
        if parts.port is not None:
            kwargs.setdefault("port", parts.port)
        return cls(host=parts.hostname, **kwargs)

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"


class TcpTransport:
    """
    Own one TCP connection and move raw strings across it.

    Lifecycle:
        - ``open()`` connects and starts a reader thread; the transport is ready once it returns
        - ``send()`` before ``open()`` (or after ``close()``) fails fast with NotConnectedError
        - inbound messages go to the handler registered with ``on_receive()``, or are queued for
          ``receive()`` while no handler is registered
        - ``close()`` sends the close signal and releases the socket; calling it twice is harmless

    Failures on the reader thread (a handler raising, a malformed frame) cannot propagate to the
    caller; they are reported to the observer as ``error`` events. A malformed frame also ends the
    connection, since the stream can no longer be split into messages.

    At most one send is assumed in flight; callers needing overlapping sends must serialize them.
    """

    def __init__(self, config: Optional[TransportConfig] = None, observer: Optional[Observer] = None):
        self.config = config or TransportConfig()
        self.observer = observer or logging_observer

        self._socket: Optional[socket.socket] = None
        self._reader: Optional[threading.Thread] = None
        self._ready = threading.Event()
        self._handler: Optional[Handler] = None
        self._handler_lock = threading.Lock()
        self._inbox: "queue.Queue[str]" = queue.Queue(maxsize=self.config.inbox_size)

    @property
    def is_ready(self) -> bool:
        return self._ready.is_set()

    def open(self) -> None:
        """
        Connect to the configured endpoint and start delivering inbound messages.

        :raises NotConnectedError: If the connection cannot be established
        """
        if self.is_ready:
            return

        try:
            sock = socket.create_connection(
                (str(self.config.host), self.config.port), timeout=self.config.connect_timeout
            )
        except OSError as exc:
            raise NotConnectedError(f"Cannot connect to {self.config.address}: {exc}") from exc

        # Blocking reads from here on, the reader waits for the peer indefinitely
        sock.settimeout(None)
        self._socket = sock
        self._ready.set()

        self._reader = threading.Thread(target=self._read_loop, args=(sock,), daemon=True)
        self._reader.start()
        self.observer("open", self.config.address)

    def send(self, text: str) -> None:
        """
        Transmit ``text`` as exactly one message, whatever characters it contains.

        :param str text: Message body, typically the wire text of a request

        :raises NotConnectedError: If the transport is not open
        """
        sock = self._socket
        if sock is None or not self.is_ready:
            raise NotConnectedError("Transport is not connected, call open() first")

        try:
            sock.sendall(frame(text, self.config.encoding))
        except OSError as exc:
            self._ready.clear()
            raise NotConnectedError(f"Connection to {self.config.address} lost: {exc}") from exc
        self.observer("send", text)

    def on_receive(self, handler: Optional[Handler]) -> Optional[Handler]:
        """
        Register the single callback invoked once per inbound message.

        Registering a handler replaces the previous one. ``None`` unsubscribes, inbound
        messages are then queued for ``receive()`` again.

        The handler runs on the reader thread. If it raises, the exception is reported to the
        observer as an ``error`` event (logged by the default observer) and the next message is
        still delivered.

        :param handler: Callable taking the raw message text, or None

        :return: The handler that was replaced, if any
        """
        with self._handler_lock:
            previous, self._handler = self._handler, handler
        if previous is not None and handler is not None:
            logger.debug("Replacing receive handler %r with %r", previous, handler)
        return previous

    def receive(self, timeout: Optional[float] = None) -> Optional[str]:
        """
        Return the next queued inbound message.

        Only messages that arrived while no handler was registered are queued. The queue holds
        ``config.inbox_size`` messages; once full, the reader stops reading from the socket until
        ``receive()`` makes room, so the peer is slowed down by TCP flow control and nothing is lost.

        :param timeout: Seconds to wait, None waits forever

        :return: Raw message text, or None if nothing arrived in time
        """
        try:
            return self._inbox.get(timeout=timeout)
        except queue.Empty:
            return None

    def close(self) -> None:
        """Send the close signal and release the connection."""
        sock, self._socket = self._socket, None
        if sock is None:
            return

        if self.is_ready:
            self._ready.clear()
            try:
                sock.sendall(frame(self.config.close_signal, self.config.encoding))
                sock.shutdown(socket.SHUT_RDWR)
            except OSError as exc:
                logger.debug("Peer already gone while closing: %s", exc)
        sock.close()

        reader = self._reader
        if reader is not None and reader is not threading.current_thread():
            reader.join(timeout=1.0)
        self.observer("close", self.config.address)

    def __enter__(self) -> "TcpTransport":
        self.open()
        return self

    def __exit__(self, *args) -> None:
        self.close()

    def _enqueue(self, text: str) -> None:
        """Queue a message for ``receive()``, waiting for room while the connection is open."""
        while True:
            try:
                self._inbox.put(text, timeout=0.1)
                return
            except queue.Full:
                if not self.is_ready:
                    self.observer("error", f"Inbox full at close, unread message dropped: {text!r}")
                    return

    def _deliver(self, text: str) -> None:
        """Hand one inbound message to the handler, or queue it."""
        self.observer("receive", text)
        with self._handler_lock:
            handler = self._handler
        if handler is None:
            self._enqueue(text)
            return

        try:
            handler(text)
        except Exception as exc:
            self.observer("error", f"Receive handler failed on message {text!r}: {exc!r}")

    def _read_loop(self, sock: socket.socket) -> None:
        """Split the inbound stream into messages until the peer or ``close()`` ends it."""
        buffer = b""
        try:
            while True:
                # Note: chunks are small pieces of data read from a TCP stream, as data may arrive in multiple packets
                chunk: bytes = sock.recv(4096)
                if not chunk:
                    break
                buffer += chunk
                while True:
                    text: Optional[str]
                    text, buffer = read_frame(buffer, self.config.encoding)
                    if text is None:
                        break
                    self._deliver(text)
        except FramingError as exc:
            self.observer("error", f"Dropping connection to {self.config.address}: {exc}")
        except OSError as exc:
            # close() shuts the socket down under the reader
            if self.is_ready:
                self.observer("error", f"Connection to {self.config.address} failed: {exc}")
        finally:
            self._ready.clear()
