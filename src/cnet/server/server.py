"""TCP server answering CNET arithmetic requests."""
import math
import socket
from typing import Iterator, Optional

from pydantic import BaseModel, ConfigDict, Field, IPvAnyAddress

from cnet.common.errors import FramingError, MalformedMessageError, ValidationError
from cnet.common.framing import frame, read_frame
from cnet.common.logger import logger
from cnet.common.messages import Request, Response
from cnet.common.parser import evaluate, format_number


class CNETServer(BaseModel):
    """
    TCP socket server evaluating CNET requests from a single client.

    Features:
        - Answers every inbound message with exactly one Response, in arrival order.
        - Malformed or invalid requests and divisions by zero get an ERROR response.
        - An empty message (the client's close signal), end of stream or a malformed frame ends the session.
    """

    model_config = ConfigDict(frozen=True)

    host: IPvAnyAddress = Field(default="127.0.0.1", description="Server host address")
    port: int = Field(default=9000, ge=1, le=65535, description="Server TCP port")
    close_signal: str = Field(default="", description="Message body announcing the end of the session")

    def _receive_messages(self, conn: socket.socket) -> Iterator[str]:
        """
        Yield the messages received on the client connection until the peer stops sending.

        :param socket.socket conn: Connected client socket

        :return: Iterator over message bodies
        :rtype: Iterator[str]
        :raises FramingError: If the stream stops holding well-formed frames
        """
        buffer = b""
        while True:
            chunk: bytes = conn.recv(4096)
            if not chunk:
                return
            buffer += chunk
            while True:
                text: Optional[str]
                text, buffer = read_frame(buffer)
                if text is None:
                    break
                yield text

    def handle(self, text: str) -> Response:
        """
        Evaluate one request message.

        :param str text: Request wire text

        :return: Response to send back
        :rtype: Response
        """
        try:
            request = Request.decode(text)
        except (MalformedMessageError, ValidationError) as exc:
            logger.error(f"📨❌ Rejected request: {exc}")
            # Response fields are single-line
            return Response.error(" ".join(str(exc).split()))

        try:
            result: float = evaluate(request)
        except ZeroDivisionError:
            return Response.error("Division by zero")
        if not math.isfinite(result):
            return Response.error("Result is not a finite number")

        return Response.ok(format_number(result))

    def serve(self, listener: socket.socket) -> None:
        """
        Accept a single client on a listening socket and answer its requests until it closes.

        :param socket.socket listener: Bound and listening socket
        """
        conn, peer = listener.accept()
        logger.info(f"🖥️ Client connected from {peer[0]}:{peer[1]}")
        with conn:
            try:
                for text in self._receive_messages(conn):
                    if text == self.close_signal:
                        logger.info("🖥️ Client closed the session")
                        break
                    conn.sendall(frame(self.handle(text).encode()))
            except FramingError as exc:
                logger.error(f"📨❌ Ending session on unreadable stream: {exc}")
            except OSError as exc:
                logger.error(f"🔌❌ Client disconnected before receiving a response: {exc}")

    def start(self) -> None:
        """
        Start the TCP server and serve one client session.

        Steps:
            1. Bind and listen on the specified host and port.
            2. Accept a single client connection.
            3. Answer each request with a response until the client closes.

        :return: None
        """
        logger.info(f"🖥️ Starting server on {self.host}:{self.port}")

        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
            s.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            s.bind((str(self.host), self.port))
            s.listen()
            logger.info("🖥️ Server listening")
            self.serve(s)
