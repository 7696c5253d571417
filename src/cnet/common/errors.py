"""Exceptions raised by the CNET message model, transport and client."""


class CNETError(Exception):
    """Base class for all CNET errors."""


class ValidationError(CNETError):
    """Message fields are present but semantically invalid."""


class MalformedMessageError(CNETError):
    """Wire text is missing a required key or cannot be split into lines."""


class NotConnectedError(CNETError):
    """The transport is not connected (not opened yet, or already closed)."""


class ResponseTimeoutError(CNETError):
    """No response arrived before the client gave up waiting."""


class FramingError(CNETError):
    """The byte stream does not hold a well-formed message frame."""
