"""
Command line entry point.

Subcommands:
- serve: run a CNET server for one client session
- calc: send a single operation and print the response
- run: start a local server process, send an operations file through the client and write the results
"""

import argparse
from multiprocessing import Process
from pathlib import Path
import sys
import time
from typing import List, Optional

from pydantic import BaseModel, Field, FilePath, IPvAnyAddress, ValidationError

from cnet.client.client import CNETClient
from cnet.common.errors import CNETError
from cnet.common.logger import configure_logging, logger
from cnet.server.server import CNETServer


class CliArgs(BaseModel):
    """
    Pydantic model used to validate CLI arguments.

    Attributes
    ----------
    command : str
        Selected subcommand.
    host : IPvAnyAddress
        Server host address.
    port : int
        Server TCP port.
    file_path : FilePath, optional
        Path to the file containing arithmetic operations (``run`` only).
    operation : List[str]
        OPERATION OPERAND1 OPERAND2 (``calc`` only).
    """

    command: str
    host: IPvAnyAddress = "127.0.0.1"
    port: int = Field(default=9000, ge=1, le=65535)
    file_path: Optional[FilePath] = None
    operation: List[str] = []


def run_server(host: str, port: int) -> None:
    """
    Start the CNET server.

    The server runs in its own process when launched by ``run``.
    """
    configure_logging()
    server = CNETServer(host=host, port=port)
    server.start()


def parse_args(argv: Optional[List[str]] = None) -> CliArgs:
    """
    Parse and validate command-line arguments.

    :param argv: Arguments, defaults to ``sys.argv[1:]``

    :return: Validated CLI arguments
    :rtype: CliArgs
    """
    parser = argparse.ArgumentParser(description="CNET arithmetic client/server")
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--host", default="127.0.0.1", help="Server host address")
    common.add_argument("--port", type=int, default=9000, help="Server TCP port")

    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("serve", parents=[common], help="Run the server")

    calc = subparsers.add_parser("calc", parents=[common], help="Send a single operation")
    calc.add_argument("operation", nargs=3, metavar="FIELD", help="OPERATION OPERAND1 OPERAND2")

    run = subparsers.add_parser("run", parents=[common], help="Run an operations file end to end")
    run.add_argument("file_path", help="Path to the file containing arithmetic operations")

    args = parser.parse_args(argv)

    try:
        return CliArgs(**vars(args))
    except ValidationError as exc:
        parser.error(str(exc))


def build_output_path(input_path: Path) -> Path:
    """
    Construct a safe output file path based on the input file.

    - Preserves the original folder
    - Replaces dots in extensions with underscores
    - Appends '_results.txt' at the end

    Examples
    --------
    input: resources/operations_short.7z
    output: resources/operations_short_7z_results.txt

    :param input_path: Path to the input file
    :return: Path to the output file
    """
    suffix_safe = "".join(input_path.suffixes).replace(".", "_")
    stem = input_path.name[: len(input_path.name) - len("".join(input_path.suffixes))]
    return input_path.with_name(f"{stem}{suffix_safe}_results.txt")


def run_file(cli_args: CliArgs) -> None:
    """Start a local server process and send the operations file through the client."""
    input_path: Path = Path(cli_args.file_path)
    output_path: Path = build_output_path(input_path)

    server_process = Process(target=run_server, args=(str(cli_args.host), cli_args.port))
    server_process.start()

    # Give the server time to start listening
    time.sleep(1)

    try:
        client = CNETClient(host=cli_args.host, port=cli_args.port)
        client.send_file(input_path, output_path)
    finally:
        # Ensure the server is always stopped
        server_process.terminate()
        server_process.join()


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main function, returns the process exit status.
    """
    cli_args = parse_args(argv)
    configure_logging()

    try:
        if cli_args.command == "serve":
            run_server(str(cli_args.host), cli_args.port)
        elif cli_args.command == "calc":
            client = CNETClient(host=cli_args.host, port=cli_args.port)
            response = client.calculate(*cli_args.operation)
            print(response.encode())
            return 0 if response.succeeded else 1
        else:
            run_file(cli_args)
    except CNETError as exc:
        logger.error(f"❌ {exc}")
        return 2
    return 0


if __name__ == "__main__":
    sys.exit(main())
