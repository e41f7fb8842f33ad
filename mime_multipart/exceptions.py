from __future__ import annotations

import binascii


class MultipartError(ValueError):
    """Base error class for the multipart codec."""

    pass


class ParseError(MultipartError):
    """This exception (or a subclass) is raised when there is an error while
    parsing a multipart body.
    """

    #: This is the offset in the overall input stream at which the parse
    #: error occured.  It will be -1 if not specified.
    offset = -1


class MalformedHeader(ParseError):
    """Raised for a header line without a ``:`` separator, an empty or
    invalid header name, or a continuation line with nothing to continue.
    """

    pass


class HeaderTooLarge(MalformedHeader):
    """A header line or header block exceeded the configured limits."""

    pass


class UnexpectedEof(ParseError):
    """The stream ended inside a header block."""

    pass


class UnterminatedMultipart(ParseError):
    """The stream ended before the closing ``--boundary--`` line."""

    pass


class MissingBoundaryParameter(ParseError):
    """A ``multipart/*`` Content-Type has no ``boundary`` parameter."""

    pass


class NestingTooDeep(ParseError):
    """Nested multipart bodies went deeper than the configured maximum."""

    pass


class MessageTooLarge(ParseError):
    """More bytes were written to the parser than ``MAX_BODY_SIZE``."""

    pass


class NotMultipart(ParseError):
    """The top-level Content-Type of a message is missing or not
    ``multipart/*``.
    """

    pass


class DecodeError(ParseError):
    """This exception is raised when there is a decoding error - for example
    with the Base64Decoder or QuotedPrintableDecoder.
    """

    pass


class InvalidBoundary(MultipartError):
    """A boundary is empty, too long or uses characters outside the allowed
    set.
    """

    pass


class BoundaryCollision(MultipartError):
    """The boundary chosen for writing appears at the start of a line in the
    content it is supposed to delimit.
    """

    pass


class IoFailure(MultipartError, OSError):
    """Exception class for I/O problems with the byte source, the byte sink
    or backing storage.
    """

    pass


# Error raised by the base64 module on invalid input.
Base64Error = binascii.Error
