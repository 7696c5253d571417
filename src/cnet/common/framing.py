"""
Message boundaries on a TCP byte stream.

Each message travels as a decimal byte count, a newline, then the encoded body::

    35\\nOPERATION:ADD\\nOPERAND1:3\\nOPERAND2:4

The body is opaque: it may contain blank lines or end with a newline, and the empty close
signal travels as ``0\\n``.
"""
from typing import Optional, Tuple

from cnet.common.errors import FramingError


HEADER_TERMINATOR = b"\n"
MAX_HEADER_LENGTH = 10
MAX_MESSAGE_SIZE = 1024 * 1024


def frame(text: str, encoding: str = "utf-8") -> bytes:
    """
    Encode one message body for the wire.

    :param str text: Message body
    :param str encoding: Text encoding

    :return: Length header followed by the encoded body
    :rtype: bytes
    """
    body: bytes = text.encode(encoding)
    return str(len(body)).encode("ascii") + HEADER_TERMINATOR + body


def read_frame(buffer: bytes, encoding: str = "utf-8") -> Tuple[Optional[str], bytes]:
    """
    Take the first complete message off a receive buffer.

    :param bytes buffer: Bytes received so far
    :param str encoding: Text encoding

    :return: Tuple of (message body or None if incomplete, remaining bytes)
    :rtype: Tuple[Optional[str], bytes]
    :raises FramingError: On a bad length header, an oversized frame or a body that does not decode
    """
    header_end: int = buffer.find(HEADER_TERMINATOR)
    if header_end < 0:
        if len(buffer) > MAX_HEADER_LENGTH:
            raise FramingError(f"No length header in {buffer[:MAX_HEADER_LENGTH]!r}...")
        return None, buffer

    header: bytes = buffer[:header_end]
    if not header.isdigit() or header_end > MAX_HEADER_LENGTH:
        raise FramingError(f"Invalid length header: {header[:MAX_HEADER_LENGTH]!r}")
    size = int(header)
    if size > MAX_MESSAGE_SIZE:
        raise FramingError(f"Frame of {size} bytes exceeds the {MAX_MESSAGE_SIZE} bytes limit")

    start: int = header_end + 1
    if len(buffer) < start + size:
        return None, buffer

    try:
        text = buffer[start : start + size].decode(encoding)
    except UnicodeDecodeError as exc:
        raise FramingError(f"Message body is not valid {encoding}: {exc}") from exc
    return text, buffer[start + size :]

