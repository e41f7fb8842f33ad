from __future__ import annotations

from email.message import Message
from typing import TYPE_CHECKING

from .headers import Headers
from .storage import READ_CHUNK_SIZE, FileStorage, iter_storage

if TYPE_CHECKING:  # pragma: no cover
    import os
    from collections.abc import Iterable, Iterator
    from types import TracebackType
    from typing import BinaryIO

    from .headers import HeaderItems
    from .storage import Storage


class Node:
    """Common base of the three part kinds: :class:`InlinePart`,
    :class:`StoredPart` and :class:`MultipartContainer`.  The set is closed;
    the parser and the writer only know about these three.
    """

    __slots__ = ("headers", "default_type")

    def __init__(self, headers: HeaderItems | None = None, default_type: str = "text/plain") -> None:
        self.headers = Headers(headers)
        self.default_type = default_type

    @property
    def content_type(self) -> tuple[str, dict[str, str]]:
        return self.headers.content_type(self.default_type)

    @property
    def mime_type(self) -> str:
        return self.content_type[0]

    @property
    def content_disposition(self) -> tuple[str, dict[str, str]]:
        return self.headers.content_disposition()

    @property
    def filename(self) -> str | None:
        return self.headers.filename()

    @property
    def transfer_encoding(self) -> str:
        """The recorded Content-Transfer-Encoding.  The body is never decoded
        by the parser; see :mod:`mime_multipart.decoders`.
        """
        return self.headers.transfer_encoding()

    def close(self) -> None:
        pass

    def __enter__(self) -> Node:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        self.close()


class InlinePart(Node):
    """A leaf part whose body is held in memory."""

    __slots__ = ("body",)

    def __init__(self, headers: HeaderItems | None = None, body: bytes = b"", default_type: str = "text/plain") -> None:
        super().__init__(headers, default_type)
        self.body = bytes(body)

    @classmethod
    def from_value(cls, body: bytes, content_type: str | None = None, headers: HeaderItems | None = None) -> InlinePart:
        h = Headers(headers)
        if content_type is not None:
            h.set("Content-Type", content_type)
        return cls(h, body)

    @property
    def size(self) -> int:
        return len(self.body)

    def read(self) -> bytes:
        return self.body

    def iter_bytes(self, chunk_size: int = READ_CHUNK_SIZE) -> Iterator[bytes]:
        body = self.body
        for i in range(0, len(body), chunk_size):
            yield body[i : i + chunk_size]

    def __eq__(self, other: object) -> bool:
        if isinstance(other, InlinePart):
            return self.headers == other.headers and self.body == other.body
        return NotImplemented

    def __repr__(self) -> str:
        if len(self.body) > 97:
            v = repr(self.body[:97])[:-1] + "...'"
        else:
            v = repr(self.body)
        return f"{self.__class__.__name__}(content_type={self.mime_type!r}, body={v})"


class StoredPart(Node):
    """A leaf part whose body lives in backing storage.

    A part produced by parsing owns its storage: :meth:`close` releases it.
    Call :meth:`detach` first to keep the backing file.
    """

    __slots__ = ("storage", "_closed")

    def __init__(self, headers: HeaderItems | None, storage: Storage, default_type: str = "text/plain") -> None:
        super().__init__(headers, default_type)
        self.storage = storage
        self._closed = False

    @classmethod
    def from_path(cls, headers: HeaderItems | None, path: str | os.PathLike[str]) -> StoredPart:
        """Reference a file the caller owns, for writing it into a multipart
        body.  Closing the part leaves the file alone.
        """
        return cls(headers, FileStorage(path))

    @property
    def size(self) -> int:
        return self.storage.size

    @property
    def path(self) -> str | None:
        return self.storage.path

    @property
    def closed(self) -> bool:
        return self._closed

    def open(self) -> BinaryIO:
        return self.storage.open()

    def read(self) -> bytes:
        return b"".join(self.iter_bytes())

    def iter_bytes(self, chunk_size: int = READ_CHUNK_SIZE) -> Iterator[bytes]:
        return iter_storage(self.storage, chunk_size)

    def detach(self) -> str | None:
        """Hand the backing file over to the caller and return its path."""
        self.storage.detach()
        return self.storage.path

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.storage.close()

    def __eq__(self, other: object) -> bool:
        if isinstance(other, StoredPart):
            return self.headers == other.headers and self.size == other.size and self.read() == other.read()
        return NotImplemented

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(content_type={self.mime_type!r}, path={self.path!r}, size={self.size!r})"


class MultipartContainer(Node):
    """A ``multipart/*`` part: its own headers plus an ordered list of child
    nodes.  The root of a parsed tree is a container too.
    """

    __slots__ = ("children",)

    def __init__(
        self, headers: HeaderItems | None = None, children: Iterable[Node] | None = None, default_type: str = "text/plain"
    ) -> None:
        super().__init__(headers, default_type)
        self.children: list[Node] = list(children) if children is not None else []

    @classmethod
    def create(
        cls,
        subtype: str = "mixed",
        boundary: str | None = None,
        headers: HeaderItems | None = None,
        children: Iterable[Node] | None = None,
    ) -> MultipartContainer:
        h = Headers(headers)
        if "Content-Type" not in h:
            h.add("Content-Type", "multipart/" + subtype)
        container = cls(h, children)
        if boundary is not None:
            container.boundary = boundary
        return container

    @property
    def boundary(self) -> str | None:
        return self.content_type[1].get("boundary")

    @boundary.setter
    def boundary(self, value: str) -> None:
        message = Message()
        message["content-type"] = self.headers.get("Content-Type") or "multipart/mixed"
        message.set_param("boundary", value, header="content-type")
        self.headers.set("Content-Type", message["content-type"])

    @property
    def child_default_type(self) -> str:
        # RFC 2046 5.1.5: parts of a digest default to message/rfc822.
        if self.mime_type == "multipart/digest":
            return "message/rfc822"
        return "text/plain"

    def append(self, node: Node) -> None:
        if not isinstance(node, (InlinePart, StoredPart, MultipartContainer)):
            raise TypeError("Expected a part node, got %r" % (node,))
        self.children.append(node)

    def walk(self) -> Iterator[Node]:
        """Yield this container and every node below it, depth-first."""
        yield self
        for child in self.children:
            if isinstance(child, MultipartContainer):
                yield from child.walk()
            else:
                yield child

    def close(self) -> None:
        for child in self.children:
            child.close()

    def __iter__(self) -> Iterator[Node]:
        return iter(self.children)

    def __len__(self) -> int:
        return len(self.children)

    def __getitem__(self, index: int) -> Node:
        return self.children[index]

    def __eq__(self, other: object) -> bool:
        if isinstance(other, MultipartContainer):
            return self.headers == other.headers and self.children == other.children
        return NotImplemented

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(content_type={self.mime_type!r}, children={self.children!r})"
