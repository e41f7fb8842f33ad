from __future__ import annotations

import logging
from enum import IntEnum
from typing import NamedTuple

from .exceptions import InvalidBoundary

# Constants for ASCII characters.
CR = b"\r"[0]
LF = b"\n"[0]
SPACE = b" "[0]
HTAB = b"\t"[0]
HYPHEN = b"-"[0]

CRLF = b"\r\n"

#: RFC 2046 allows at most 70 characters in a boundary.
MAX_BOUNDARY_LENGTH = 70

#: Transport padding after ``--boundary`` longer than this disqualifies the
#: candidate, so a hostile stream cannot make the scanner hold on to an
#: unbounded amount of whitespace.
MAX_TRANSPORT_PADDING = 1024

# fmt: off
# RFC 2046 5.1.1: bcharsnospace := DIGIT / ALPHA / "'" / "(" / ")" / "+" /
# "_" / "," / "-" / "." / "/" / ":" / "=" / "?"
BCHARS_NOSPACE = frozenset(
    b"ABCDEFGHIJKLMNOPQRSTUVWXYZ"
    b"abcdefghijklmnopqrstuvwxyz"
    b"0123456789"
    b"'()+_,-./:=?")
# fmt: on
BCHARS = BCHARS_NOSPACE | {SPACE}


class ScanStatus(IntEnum):
    """What :meth:`BoundaryScanner.scan` found in the buffer."""

    NEED_MORE = 0
    SEPARATOR = 1
    TERMINATOR = 2


class ScanResult(NamedTuple):
    """For a delimiter, ``start`` is the offset of the CRLF that precedes it
    (or of the ``--`` when it sits at a line start without one) and ``end``
    the offset just past it.  For ``NEED_MORE``, everything before ``start``
    is content and everything from ``start`` on has to be kept until more
    input arrives.
    """

    kind: ScanStatus
    start: int
    end: int


def validate_boundary(boundary: str | bytes, strict: bool = True) -> bytes:
    """Check a boundary and return it as bytes.

    Strict validation applies the RFC 2046 character set and is used when
    writing.  Parsers only insist on a length of 1 to 70 bytes and the
    absence of line breaks, since real-world senders are not always careful.
    """
    if isinstance(boundary, str):
        try:
            boundary = boundary.encode("ascii" if strict else "latin-1")
        except UnicodeEncodeError:
            raise InvalidBoundary("Boundary %r is not ASCII" % boundary)

    if not 1 <= len(boundary) <= MAX_BOUNDARY_LENGTH:
        raise InvalidBoundary(
            "The boundary length should be between 1 and %d bytes, not %d" % (MAX_BOUNDARY_LENGTH, len(boundary))
        )
    if CR in boundary or LF in boundary:
        raise InvalidBoundary("Boundary %r contains a line break" % boundary)

    if strict:
        for c in boundary:
            if c not in BCHARS:
                raise InvalidBoundary("Found invalid character %r in boundary %r" % (chr(c), boundary))
        if boundary[-1] == SPACE:
            raise InvalidBoundary("Boundary %r ends with a space" % boundary)

    return boundary


class BoundaryScanner:
    """Finds multipart delimiter lines in a buffer that grows as input
    arrives.

    Two line forms are recognized, both anchored at the start of a line:

    * ``--boundary`` followed by optional spaces or tabs and CRLF separates
      two parts;
    * ``--boundary--`` closes the multipart body.  Whatever follows it is the
      epilogue.

    The CRLF in front of a delimiter belongs to the delimiter, not to the
    preceding content.  ``--boundary`` followed by anything else (for
    example ``--boundaryxyz``) is ordinary content.

    :meth:`scan` never blocks and never modifies the buffer, so scanning the
    same bytes twice gives the same answer.
    """

    def __init__(self, boundary: str | bytes, strict: bool = False) -> None:
        self.logger = logging.getLogger(__name__)
        self.boundary = validate_boundary(boundary, strict=strict)
        self.dash_boundary = b"--" + self.boundary
        self.delimiter = CRLF + self.dash_boundary

    def scan(self, data: bytes | bytearray, start: int = 0, line_start: bool = False, final: bool = False) -> ScanResult:
        """Look for the first delimiter in ``data[start:]``.

        :param line_start: ``data[start]`` is the first byte of a line (the
            start of the stream or of a part body), so a delimiter may begin
            there without a CRLF in front of it.
        :param final: no more input will follow; incomplete candidates at the
            end of the buffer are then content.
        """
        length = len(data)

        if line_start:
            dash_boundary = self.dash_boundary
            available = data[start : start + len(dash_boundary)]
            if available == dash_boundary:
                kind, end = self._classify(data, start + len(dash_boundary), final)
                if kind != ScanStatus.NEED_MORE:
                    return ScanResult(kind, start, end)
                if end < 0:
                    return ScanResult(ScanStatus.NEED_MORE, start, length)
            elif not final and dash_boundary.startswith(available):
                return ScanResult(ScanStatus.NEED_MORE, start, length)

        delimiter = self.delimiter
        i = start
        while True:
            i = data.find(delimiter, i)
            if i == -1:
                return ScanResult(ScanStatus.NEED_MORE, self._safe_end(data, start, final), length)

            kind, end = self._classify(data, i + len(delimiter), final)
            if kind != ScanStatus.NEED_MORE:
                return ScanResult(kind, i, end)
            if end < 0:
                # Could still become a delimiter once more data arrives.
                return ScanResult(ScanStatus.NEED_MORE, i, length)
            i += 1

    def _classify(self, data: bytes | bytearray, i: int, final: bool) -> tuple[ScanStatus, int]:
        """Decide what follows a ``--boundary`` that ends right before ``i``.

        Returns the delimiter kind and its end offset, ``(NEED_MORE, -1)``
        when the answer depends on bytes not received yet, and
        ``(NEED_MORE, i)`` when the candidate is plain content.
        """
        length = len(data)

        if i < length and data[i] == HYPHEN:
            if i + 1 < length:
                if data[i + 1] == HYPHEN:
                    return ScanStatus.TERMINATOR, i + 2
                return ScanStatus.NEED_MORE, i
            return ScanStatus.NEED_MORE, (i if final else -1)

        j = i
        while j < length and (data[j] == SPACE or data[j] == HTAB):
            j += 1
            if j - i > MAX_TRANSPORT_PADDING:
                self.logger.debug("Transport padding after boundary at %d is too long", i)
                return ScanStatus.NEED_MORE, i

        if j == length:
            return ScanStatus.NEED_MORE, (i if final else -1)
        if data[j] != CR:
            return ScanStatus.NEED_MORE, i
        if j + 1 == length:
            return ScanStatus.NEED_MORE, (i if final else -1)
        if data[j + 1] != LF:
            return ScanStatus.NEED_MORE, i
        return ScanStatus.SEPARATOR, j + 2

    def _safe_end(self, data: bytes | bytearray, start: int, final: bool) -> int:
        """Offset of the earliest trailing byte that could begin a delimiter."""
        length = len(data)
        if final:
            return length

        delimiter = self.delimiter
        i = max(start, length - len(delimiter) + 1)
        while True:
            i = data.find(CRLF[:1], i)
            if i == -1:
                return length
            if delimiter.startswith(data[i:]):
                return i
            i += 1

    def find_line_start(self, data: bytes | bytearray, start: int = 0, line_start: bool = False) -> int:
        """Return the offset of ``--boundary`` at the start of a line in
        ``data[start:]``, or -1.

        Unlike :meth:`scan` this does not look at what follows the boundary:
        any line beginning with ``--boundary`` counts.  The returned offset
        points at the ``--``.
        """
        if line_start and data.startswith(self.dash_boundary, start):
            return start
        i = data.find(self.delimiter, start)
        if i == -1:
            return -1
        return i + len(CRLF)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(boundary={self.boundary!r})"
