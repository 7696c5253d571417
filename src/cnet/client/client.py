"""CNET client."""
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, FilePath, IPvAnyAddress

from cnet.client.batch import load_batch
from cnet.client.transport import Observer, TcpTransport, TransportConfig
from cnet.common.errors import MalformedMessageError, ResponseTimeoutError, ValidationError
from cnet.common.logger import logger
from cnet.common.messages import Request, Response
from cnet.common.parser import RequestParser


class CNETClient(BaseModel):
    """
    Client issuing arithmetic requests to a CNET server and reading its responses.

    The client:
    - builds validated requests, from arguments or from the lines of a batch file or archive
    - sends their wire text over a TcpTransport
    - waits for one response per request and decodes it

    The wire format carries no request identifier, so requests are strictly sequential: a request
    is only sent once the response to the previous one has been read.
    """

    # Make the Pydantic instance immutable (read-only), to prevent errors
    # that could be caused by changes to the network configuration during execution.
    model_config = ConfigDict(frozen=True)

    host: IPvAnyAddress = Field(default="127.0.0.1", description="Server host address")
    port: int = Field(default=9000, ge=1, le=65535, description="Server TCP port")
    reply_timeout: float = Field(default=5.0, gt=0, description="Seconds to wait for each response")

    def transport(self, observer: Optional[Observer] = None) -> TcpTransport:
        """
        Build an unopened transport targeting this client's server.

        :param observer: Optional transport event observer

        :return: Transport to open before use
        :rtype: TcpTransport
        """
        return TcpTransport(TransportConfig(host=self.host, port=self.port), observer=observer)

    def exchange(self, transport: TcpTransport, request: Request) -> Response:
        """
        Send one request over an open transport and decode the response.

        :param TcpTransport transport: Open transport with no receive handler registered
        :param Request request: Request to send

        :return: Decoded response
        :rtype: Response
        :raises NotConnectedError: If the transport is not open
        :raises ResponseTimeoutError: If no response arrives within ``reply_timeout``
        :raises MalformedMessageError: If the response lacks a required key
        :raises ValidationError: If the response fields are invalid
        """
        transport.send(request.encode())
        text: Optional[str] = transport.receive(timeout=self.reply_timeout)
        if text is None:
            raise ResponseTimeoutError(f"No response within {self.reply_timeout:.1f} s to:\n{request}")
        return Response.decode(text)

    def calculate(self, operation: str, operand1: str, operand2: str) -> Response:
        """
        Open a connection, run a single operation and close the connection.

        :param str operation: ADD, SUB, MUL or DIV
        :param str operand1: First operand
        :param str operand2: Second operand

        :return: Server response
        :rtype: Response
        :raises ValidationError: If the request is invalid, nothing is sent in that case
        """
        request = Request(operation, operand1, operand2)
        with self.transport() as transport:
            return self.exchange(transport, request)

    def send_file(self,
        input_file: FilePath,
        output_file: Path,
    ) -> None:
        """
        Send every operation of an input file to the server and write the results to an output file.

        Each operation line (blank lines and ``#`` comments are skipped) produces one output line:
        - ``<line> = <result>`` on success
        - ``<line> -> ERROR: <message>`` when the line is invalid or the server reports an error

        :param FilePath input_file: Path to the input file or archive
        :param Path output_file: Path where results will be written

        :return: None
        :raises ValueError: If the batch format is unsupported or an archive holds no .txt file
        """
        lines: List[str] = load_batch(input_file)

        with self.transport() as transport, output_file.open("w", encoding="utf-8") as f_out:
            for line in lines:
                f_out.write(self._run_line(transport, line) + "\n")
                # Flushing forces the data to be written to disk immediately, ensuring progress is not lost
                # if the process is interrupted (e.g. KeyboardInterrupt or crash)
                f_out.flush()

        logger.info(f"📄✅ {len(lines)} operations written to {output_file}")

    def _run_line(self, transport: TcpTransport, line: str) -> str:
        """
        Run one batch line and format its outcome.

        :param TcpTransport transport: Open transport
        :param str line: Batch line, e.g. ``ADD 3 4`` or ``3 + 4``

        :return: Output line without newline
        :rtype: str
        """
        try:
            request = RequestParser.parse_line(line)
        except ValidationError as exc:
            logger.error(f"📄❌ Skipping invalid line {line!r}: {exc}")
            return f"{line} -> ERROR: {exc}"

        try:
            response = self.exchange(transport, request)
        except (MalformedMessageError, ValidationError) as exc:
            logger.error(f"📨❌ Unusable response to {line!r}: {exc}")
            return f"{line} -> ERROR: {exc}"

        if response.succeeded:
            return f"{line} = {response.result}"
        return f"{line} -> ERROR: {response.message}"

