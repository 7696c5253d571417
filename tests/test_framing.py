"""Test message framing on a byte stream."""
import pytest

from cnet.common.errors import FramingError
from cnet.common.framing import MAX_MESSAGE_SIZE, frame, read_frame


def _read_all(buffer: bytes):
    messages = []
    text, buffer = read_frame(buffer)
    while text is not None:
        messages.append(text)
        text, buffer = read_frame(buffer)
    return messages, buffer


def test_frame_prefixes_byte_count() -> None:
    """A framed message starts with its encoded length in bytes."""
    assert frame("OPERATION:ADD\nOPERAND1:1\nOPERAND2:2") == b"35\nOPERATION:ADD\nOPERAND1:1\nOPERAND2:2"
    assert frame("") == b"0\n"
    assert frame("é") == b"2\n\xc3\xa9"


def test_read_frame_keeps_rest() -> None:
    """One message is taken off the buffer, the following bytes are returned untouched."""
    text, rest = read_frame(frame("A:1\nB:2") + frame("C:3") + b"5\nD:")
    assert text == "A:1\nB:2"
    assert rest == frame("C:3") + b"5\nD:"


@pytest.mark.parametrize("data", [b"", b"12", b"5\nD:"])
def test_read_frame_incomplete(data) -> None:
    """A partial header or body waits for the next read."""
    assert read_frame(data) == (None, data)


def test_empty_message() -> None:
    """The empty close signal is a message of its own."""
    assert _read_all(frame("A:1") + frame("")) == (["A:1", ""], b"")


@pytest.mark.parametrize("text", [
    "MESSAGE:line1\n\nline2",
    "RESULT:7\n",
    "\n\n",
    "MESSAGE:a:b:c ✓",
])
def test_body_is_opaque(text) -> None:
    """Blank lines, trailing newlines and non-ASCII text stay inside one message."""
    assert _read_all(frame(text) + frame("NEXT:1")) == ([text, "NEXT:1"], b"")


def test_read_frame_multibyte_across_chunks() -> None:
    """A character cut between two reads is decoded once complete."""
    data = frame("MESSAGE:résultat")
    text, rest = read_frame(data[:13])
    assert text is None
    text, rest = read_frame(rest + data[13:])
    assert text == "MESSAGE:résultat"
    assert rest == b""


@pytest.mark.parametrize("data", [
    b"2\n\xff\xfe",
    b"abc\nRESULT:7",
    b"-1\n",
    b"\nRESULT:7",
    b"RESULT:7 with no header at all",
    b"12345678901\n",
    str(MAX_MESSAGE_SIZE + 1).encode() + b"\n",
])
def test_read_frame_rejects_malformed(data) -> None:
    """Invalid UTF-8, bad length headers and oversized frames raise FramingError."""
    with pytest.raises(FramingError):
        read_frame(data)
