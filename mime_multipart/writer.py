from __future__ import annotations

import logging
import secrets
from typing import TYPE_CHECKING

from .exceptions import BoundaryCollision, IoFailure, MultipartError
from .headers import DEFAULT_CHARSET
from .nodes import InlinePart, MultipartContainer, StoredPart
from .scanner import CRLF, BoundaryScanner, validate_boundary
from .storage import READ_CHUNK_SIZE

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import Iterable, Iterator
    from typing import Protocol

    from .headers import Headers
    from .nodes import Node

    class SupportsWrite(Protocol):
        def write(self, __b: bytes) -> object: ...


#: Random bytes in a generated boundary.
BOUNDARY_ENTROPY_BYTES = 30


def generate_boundary() -> str:
    """Return a fresh random boundary.

    Generated boundaries are not checked against the content.  The ``=_``
    prefix cannot start a line of base64 or quoted-printable encoded text,
    and any other body would have to contain 240 random bits drawn after it
    was built.
    """
    return "=_" + secrets.token_urlsafe(BOUNDARY_ENTROPY_BYTES)


def _contains_boundary(scanner: BoundaryScanner, chunks: Iterable[bytes]) -> bool:
    """Whether ``--boundary`` starts any line of a body delivered in chunks."""
    keep = len(scanner.delimiter) - 1
    tail = b""
    dropped = 0
    for chunk in chunks:
        if not chunk:
            continue
        data = tail + chunk
        if scanner.find_line_start(data, 0, line_start=dropped == 0) != -1:
            return True
        tail = data[-keep:]
        dropped += len(data) - len(tail)
    return False


class MultipartWriter:
    """Serializes a :class:`MultipartContainer` into a multipart body.

    Every container in the tree gets a boundary: the one passed in (for the
    root), the one already in its Content-Type, or a generated one.  The
    boundary actually used is written back into the container's
    Content-Type, so the headers emitted always match the body.

    With ``check_collisions`` (the default) each supplied boundary is
    checked against the serialized bodies of the container's children before
    anything is written, and one that starts a line in a child body raises
    `BoundaryCollision`.  Callers who validate their boundaries themselves
    can turn the check off, which also avoids reading stored bodies twice.
    Generated boundaries are never checked; see :func:`generate_boundary`.
    """

    def __init__(
        self,
        root: MultipartContainer,
        boundary: str | bytes | None = None,
        check_collisions: bool = True,
        chunk_size: int = READ_CHUNK_SIZE,
        header_charset: str = DEFAULT_CHARSET,
    ) -> None:
        if not isinstance(root, MultipartContainer):
            raise TypeError("Only multipart containers can be written, not %r" % (root,))
        self.logger = logging.getLogger(__name__)
        self.root = root
        if isinstance(boundary, bytes):
            boundary = validate_boundary(boundary, strict=True).decode("ascii")
        self.boundary = boundary
        self.check_collisions = check_collisions
        self.chunk_size = chunk_size
        self.header_charset = header_charset

    def _assign_boundaries(self, container: MultipartContainer, supplied: str | None) -> None:
        # Inner boundaries first: the outer check scans the serialized
        # children, inner delimiters included.
        for child in container.children:
            if isinstance(child, MultipartContainer):
                self._assign_boundaries(child, None)

        content_type = container.headers.get("Content-Type")
        if content_type is not None and not container.mime_type.startswith("multipart/"):
            raise MultipartError("Container has a non-multipart Content-Type %r" % content_type)

        if supplied is None:
            supplied = container.boundary

        if supplied is not None:
            validate_boundary(supplied, strict=True)
            if self.check_collisions and self._collides(container, supplied):
                msg = "Boundary %r appears in the content of a part" % supplied
                self.logger.warning(msg)
                raise BoundaryCollision(msg)
            boundary = supplied
        else:
            boundary = generate_boundary()
            self.logger.debug("Generated boundary %r for %s", boundary, container.mime_type)

        if container.boundary != boundary:
            container.boundary = boundary

    def _collides(self, container: MultipartContainer, boundary: str) -> bool:
        scanner = BoundaryScanner(boundary)
        for child in container.children:
            if _contains_boundary(scanner, self._iter_body(child)):
                return True
        return False

    def _header_bytes(self, headers: Headers) -> bytes:
        charset = self.header_charset
        return b"".join(f"{name}: {value}\r\n".encode(charset, "surrogateescape") for name, value in headers)

    def _iter_body(self, node: Node) -> Iterator[bytes]:
        if isinstance(node, InlinePart):
            if node.body:
                yield node.body
        elif isinstance(node, StoredPart):
            yield from node.iter_bytes(self.chunk_size)
        elif isinstance(node, MultipartContainer):
            yield from self._iter_container(node)
        else:
            raise TypeError("Unknown node type %r" % (node,))

    def _iter_container(self, container: MultipartContainer) -> Iterator[bytes]:
        boundary = container.boundary
        assert boundary is not None
        dash_boundary = b"--" + boundary.encode("ascii")

        for child in container.children:
            yield dash_boundary + CRLF
            yield self._header_bytes(child.headers) + CRLF
            yield from self._iter_body(child)
            yield CRLF
        yield dash_boundary + b"--" + CRLF

    def iter_chunks(self, include_headers: bool = False) -> Iterator[bytes]:
        """Yield the serialized body in chunks.  With ``include_headers`` the
        root container's own header block comes first.
        """
        self._assign_boundaries(self.root, self.boundary)
        self.logger.debug("Writing multipart body with boundary %r", self.root.boundary)

        if include_headers:
            yield self._header_bytes(self.root.headers) + CRLF
        yield from self._iter_container(self.root)

    def write(self, sink: SupportsWrite, include_headers: bool = False) -> int:
        """Write the body to ``sink`` and return the number of bytes written."""
        count = 0
        for chunk in self.iter_chunks(include_headers):
            try:
                sink.write(chunk)
            except OSError as exc:
                raise IoFailure("Error writing to the byte sink") from exc
            count += len(chunk)
        return count

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(root={self.root!r}, boundary={self.boundary!r})"


def write(
    tree: MultipartContainer,
    sink: SupportsWrite,
    boundary: str | bytes | None = None,
    include_headers: bool = False,
    check_collisions: bool = True,
) -> int:
    """Serialize ``tree`` into ``sink``.  Returns the number of bytes written.

    Top-level headers are only written with ``include_headers``; an HTTP
    client usually sends them separately.
    """
    writer = MultipartWriter(tree, boundary=boundary, check_collisions=check_collisions)
    return writer.write(sink, include_headers=include_headers)


def dumps(
    tree: MultipartContainer,
    boundary: str | bytes | None = None,
    include_headers: bool = False,
    check_collisions: bool = True,
) -> bytes:
    """Serialize ``tree`` and return the bytes."""
    writer = MultipartWriter(tree, boundary=boundary, check_collisions=check_collisions)
    return b"".join(writer.iter_chunks(include_headers=include_headers))
