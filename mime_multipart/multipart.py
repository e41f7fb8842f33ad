from __future__ import annotations

import logging
from enum import IntEnum
from numbers import Number
from typing import TYPE_CHECKING, cast

from .exceptions import (
    HeaderTooLarge,
    IoFailure,
    MessageTooLarge,
    MissingBoundaryParameter,
    NestingTooDeep,
    NotMultipart,
    ParseError,
    UnexpectedEof,
    UnterminatedMultipart,
)
from .headers import DEFAULT_CHARSET, HeaderParser, Headers
from .nodes import MultipartContainer
from .scanner import BoundaryScanner, ScanStatus
from .storage import SpooledBody

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import Callable, Iterable, Iterator
    from typing import Any, Literal, Protocol, TypeAlias, TypedDict, Union

    from .headers import HeaderItems
    from .nodes import Node
    from .storage import StorageFactory

    class SupportsRead(Protocol):
        def read(self, __n: int) -> bytes: ...

    ByteSource = Union[bytes, bytearray, memoryview, SupportsRead, Iterable[bytes]]

    class MultipartCallbacks(TypedDict, total=False):
        on_part_begin: Callable[[], None]
        on_headers_finished: Callable[[Headers], None]
        on_part_data: Callable[[bytes, int, int], None]
        on_part_end: Callable[[], None]
        on_end: Callable[[], None]

    class ParserConfig(TypedDict, total=False):
        MAX_INLINE_BYTES: int
        STORAGE_FACTORY: StorageFactory | None
        MAX_NESTING_DEPTH: int
        MAX_HEADER_LINE_SIZE: int | None
        MAX_HEADER_COUNT: int | None
        MAX_HEADER_VALUE_SIZE: int | None
        MAX_BODY_SIZE: float
        ALWAYS_STORE: bool
        STORE_FILE_PARTS: bool
        UPLOAD_DIR: str | bytes | None
        UPLOAD_KEEP_EXTENSIONS: bool
        HEADER_CHARSET: str

    CallbackName: TypeAlias = Literal["part_begin", "headers_finished", "part_data", "part_end", "end"]


class MultipartState(IntEnum):
    """States of the :class:`MultipartParser`.

    PREAMBLE -> HEADERS -> BODY -> HEADERS -> ... -> BODY -> END
    """

    PREAMBLE = 0
    HEADERS = 1
    BODY = 2
    END = 3


#: Default number of bytes read from a source at a time.
DEFAULT_CHUNK_SIZE = 1024 * 1024

LF = b"\n"


class BaseParser:
    """This class is the base class for all parsers.  It contains the logic for
    calling and adding callbacks.

    A callback can be one of two different forms.  "Notification callbacks" are
    callbacks that are called when something happens - for example, when a new
    part of a multipart message is encountered by the parser.  "Data callbacks"
    are called when we get some sort of data - for example, part of the body of
    a multipart chunk.  Notification callbacks are called with no parameters
    (or with the parsed header block, for ``on_headers_finished``), whereas
    data callbacks are called with three, as follows::

        data_callback(data, start, end)

    The "data" parameter is a bytestring.  "start" and "end" are integer
    indexes into the "data" string that represent the data of interest.
    Thus, in a data callback, the slice `data[start:end]` represents the data that the callback is "interested in".
    The callback is not passed a copy of the data, since copying severely hurts
    performance.
    """

    def __init__(self) -> None:
        self.logger = logging.getLogger(__name__)
        self.callbacks: MultipartCallbacks = {}

    def callback(self, name: CallbackName, *args: Any) -> None:
        """This function calls a provided callback with some data.  If the
        callback is not set, will do nothing.
        """
        on_name = "on_" + name
        func = self.callbacks.get(on_name)
        if func is None:
            return
        func = cast("Callable[..., Any]", func)
        self.logger.debug("Calling %s", on_name)
        func(*args)

    def data_callback(self, name: CallbackName, data: bytes | bytearray, start: int, end: int) -> None:
        # Empty slices are never reported.
        if start == end:
            return
        self.callback(name, data, start, end)

    def set_callback(self, name: CallbackName, new_func: Callable[..., Any] | None) -> None:
        """Update the function for a callback.  Removes from the callbacks dict
        if new_func is None.
        """
        if new_func is None:
            self.callbacks.pop("on_" + name, None)  # type: ignore[misc]
        else:
            self.callbacks["on_" + name] = new_func  # type: ignore[literal-required]

    def close(self) -> None:
        pass  # pragma: no cover

    def finalize(self) -> None:
        pass  # pragma: no cover

    def __repr__(self) -> str:
        return "%s()" % self.__class__.__name__


class MultipartParser(BaseParser):
    """This class is a streaming multipart parser.  Data is fed to it with
    :meth:`write` in chunks of any size, and it reports what it finds through
    the following callbacks:

    | Callback Name       | Parameters      | Description                        |
    |---------------------|-----------------|------------------------------------|
    | on_part_begin       | None            | Called when a new part starts.     |
    | on_headers_finished | headers         | Called with the part's `Headers`.  |
    | on_part_data        | data, start, end| Called for each chunk of body data.|
    | on_part_end         | None            | Called when a part ends.           |
    | on_end              | None            | Called when the closing delimiter  |
    |                     |                 | has been seen.                     |

    The preamble before the first delimiter and the epilogue after the closing
    one are dropped.  Body data is reported as soon as it is known not to be
    part of a delimiter, so a body never has to fit in memory.

    Args:
        boundary: The multipart boundary.  This is required, and must match
            what is given in the HTTP request - usually in the Content-Type
            header.
        callbacks: A dictionary of callbacks.  See the documentation for
            [`BaseParser`][mime_multipart.multipart.BaseParser].
        max_size: The maximum number of bytes this parser accepts.  Writing
            more raises `MessageTooLarge`.
        max_header_line_size: Longest header line accepted, in bytes.
        max_header_count: Most header fields accepted in one part.
        max_header_value_size: Longest header value accepted, in bytes,
            counting every line it is folded over.
        header_charset: Charset used to decode header bytes.
    """

    def __init__(
        self,
        boundary: bytes | str,
        callbacks: MultipartCallbacks = {},
        max_size: float = float("inf"),
        max_header_line_size: int | None = None,
        max_header_count: int | None = None,
        header_charset: str = DEFAULT_CHARSET,
        max_header_value_size: int | None = None,
    ) -> None:
        # Initialize parser state.
        super().__init__()
        self.state = MultipartState.PREAMBLE

        self.callbacks = callbacks

        # Max-size stuff
        if not isinstance(max_size, Number) or max_size < 1:
            raise ValueError("max_size must be a positive number, not %r" % max_size)
        self.max_size = max_size
        self._current_size = 0

        self.max_header_line_size = max_header_line_size
        self.max_header_count = max_header_count
        self.max_header_value_size = max_header_value_size
        self.header_charset = header_charset

        self.scanner = BoundaryScanner(boundary)
        self.boundary = self.scanner.boundary

        # Bytes not consumed yet, and the stream offset of their first byte.
        self._buffer = bytearray()
        self._offset = 0
        # Whether the first byte of the buffer starts a line.
        self._line_start = True
        self._header_parser: HeaderParser | None = None

    def write(self, data: bytes) -> int:
        """Write some data to the parser, which will perform size verification,
        parse into either headers or body data, send it to the appropriate
        callbacks, and then return the number of bytes processed.

        Args:
            data: The data to write to the parser.

        Returns:
            The number of bytes written.
        """
        data_len = len(data)
        if (self._current_size + data_len) > self.max_size:
            msg = "Current size is %d (max %d), refusing %d more bytes" % (
                self._current_size,
                self.max_size,
                data_len,
            )
            self.logger.warning(msg)
            e = MessageTooLarge(msg)
            e.offset = self._current_size
            raise e
        self._current_size += data_len

        if self.state == MultipartState.END:
            self._skip_epilogue(data)
            return data_len

        self._buffer += data
        self._run(final=False)
        return data_len

    def finalize(self) -> None:
        """Signal the end of the input.

        Raises `UnexpectedEof` if the input stopped inside a header block, and
        `UnterminatedMultipart` if the closing delimiter was never seen.
        """
        self._run(final=True)

        if self.state == MultipartState.HEADERS:
            msg = "Stream ended inside the headers of a part"
            self.logger.warning(msg)
            e: ParseError = UnexpectedEof(msg)
            e.offset = self._offset + len(self._buffer)
            raise e

        if self.state != MultipartState.END:
            msg = "Stream ended before the closing boundary %r" % (b"--" + self.boundary + b"--",)
            self.logger.warning(msg)
            e = UnterminatedMultipart(msg)
            e.offset = self._offset + len(self._buffer)
            raise e

    def _run(self, final: bool) -> None:
        try:
            self._process(final)
        except ParseError as e:
            if e.offset == -1:
                e.offset = self._offset
            raise

    def _consume(self, length: int) -> None:
        del self._buffer[:length]
        self._offset += length

    def _begin_part(self) -> None:
        self.callback("part_begin")
        self._header_parser = HeaderParser(
            max_line_size=self.max_header_line_size,
            max_count=self.max_header_count,
            charset=self.header_charset,
            max_value_size=self.max_header_value_size,
        )
        self.state = MultipartState.HEADERS

    def _process(self, final: bool) -> None:
        scanner = self.scanner
        buf = self._buffer

        while True:
            state = self.state

            if state == MultipartState.PREAMBLE:
                result = scanner.scan(buf, 0, self._line_start, final)
                if result.kind == ScanStatus.NEED_MORE:
                    # Everything before a possible delimiter is preamble.
                    if result.start > 0:
                        self._consume(result.start)
                        self._line_start = False
                    return

                self.logger.debug("Found first delimiter at %d", self._offset + result.start)
                self._consume(result.end)
                if result.kind == ScanStatus.SEPARATOR:
                    self._begin_part()
                else:
                    self.logger.debug("Multipart body without parts")
                    self.callback("end")
                    self.state = MultipartState.END

            elif state == MultipartState.HEADERS:
                nl = buf.find(LF)
                if nl == -1:
                    if self.max_header_line_size is not None and len(buf) > self.max_header_line_size:
                        msg = "Header line exceeds %d bytes" % self.max_header_line_size
                        self.logger.warning(msg)
                        raise HeaderTooLarge(msg)
                    return

                line = bytes(buf[: nl + 1])
                assert self._header_parser is not None
                try:
                    done = self._header_parser.feed_line(line)
                except ParseError as e:
                    self.logger.warning(str(e))
                    e.offset = self._offset
                    raise
                self._consume(nl + 1)

                if done:
                    headers = self._header_parser.headers
                    self._header_parser = None
                    self.callback("headers_finished", headers)
                    self.state = MultipartState.BODY
                    self._line_start = True

            elif state == MultipartState.BODY:
                result = scanner.scan(buf, 0, self._line_start, final)
                if result.kind == ScanStatus.NEED_MORE:
                    if result.start > 0:
                        self.data_callback("part_data", buf, 0, result.start)
                        self._consume(result.start)
                        self._line_start = False
                    return

                self.data_callback("part_data", buf, 0, result.start)
                self.callback("part_end")
                self._consume(result.end)
                if result.kind == ScanStatus.SEPARATOR:
                    self._begin_part()
                else:
                    self.callback("end")
                    self.state = MultipartState.END

            elif state == MultipartState.END:
                epilogue = bytes(buf)
                self._consume(len(buf))
                self._skip_epilogue(epilogue)
                return

            else:  # pragma: no cover (error case)
                msg = "Reached an unknown state %d at %d" % (state, self._offset)
                self.logger.warning(msg)
                e = ParseError(msg)
                e.offset = self._offset
                raise e

    def _skip_epilogue(self, data: bytes) -> None:
        if data.strip():
            self.logger.warning("Skipping data after last boundary")

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(boundary={self.boundary!r})"


class _ContainerBuilder:
    """Turns the events of one :class:`MultipartParser` into the children of
    one :class:`MultipartContainer`.  A nested ``multipart/*`` part gets its
    own builder, which is fed the part's body bytes.
    """

    def __init__(self, container: MultipartContainer, boundary: bytes | str, depth: int, config: ParserConfig) -> None:
        self.logger = logging.getLogger(__name__)
        self.container = container
        self.depth = depth
        self.config = config
        self._child_default = container.child_default_type
        self._body: SpooledBody | _ContainerBuilder | None = None

        self.parser = MultipartParser(
            boundary,
            callbacks={
                "on_headers_finished": self._on_headers_finished,
                "on_part_data": self._on_part_data,
                "on_part_end": self._on_part_end,
            },
            max_size=config["MAX_BODY_SIZE"] if depth == 0 else float("inf"),
            max_header_line_size=config["MAX_HEADER_LINE_SIZE"],
            max_header_count=config["MAX_HEADER_COUNT"],
            header_charset=config["HEADER_CHARSET"],
            max_header_value_size=config["MAX_HEADER_VALUE_SIZE"],
        )

    def _on_headers_finished(self, headers: Headers) -> None:
        ctype, params = headers.content_type(self._child_default)

        if ctype.startswith("multipart/"):
            boundary = params.get("boundary")
            if not boundary:
                msg = "No boundary given for nested %s part" % ctype
                self.logger.warning(msg)
                raise MissingBoundaryParameter(msg)

            max_depth = self.config["MAX_NESTING_DEPTH"]
            if self.depth + 1 > max_depth:
                msg = "Multipart nesting deeper than %d levels" % max_depth
                self.logger.warning(msg)
                raise NestingTooDeep(msg)

            self.logger.debug("Entering nested %s at depth %d", ctype, self.depth + 1)
            container = MultipartContainer(headers, default_type=self._child_default)
            self._body = _ContainerBuilder(container, boundary, self.depth + 1, self.config)
        else:
            self._body = SpooledBody(headers, self.config, self._child_default)

    def _on_part_data(self, data: bytes, start: int, end: int) -> None:
        assert self._body is not None
        self._body.write(data[start:end])

    def _on_part_end(self) -> None:
        assert self._body is not None
        node = self._body.finish()
        self._body = None
        self.container.children.append(node)

    def write(self, data: bytes) -> int:
        return self.parser.write(data)

    def finish(self) -> MultipartContainer:
        self.parser.finalize()
        return self.container

    def close(self) -> None:
        if self._body is not None:
            self._body.close()
            self._body = None
        self.container.close()


class TreeParser:
    """This class is the all-in-one multipart parser.  Bytes written to it are
    turned into a tree of parts: :class:`InlinePart` for small bodies,
    :class:`StoredPart` for bodies larger than ``MAX_INLINE_BYTES`` and
    :class:`MultipartContainer` for nested ``multipart/*`` bodies.

    The parser owns the tree, including any backing storage, until
    :attr:`tree` is taken.  :meth:`close` releases everything it holds and is
    what callers should do when parsing fails.

    | Config Key             | Default     | Description                      |
    |------------------------|-------------|----------------------------------|
    | MAX_INLINE_BYTES       | 1 MiB       | Largest body kept in memory.     |
    | STORAGE_FACTORY        | None        | `factory(headers) -> storage`;   |
    |                        |             | temporary files when None.       |
    | MAX_NESTING_DEPTH      | 32          | Deepest nested multipart body.   |
    | MAX_HEADER_LINE_SIZE   | 16 KiB      | Longest header line.             |
    | MAX_HEADER_COUNT       | 128         | Most header fields in one part.  |
    | MAX_HEADER_VALUE_SIZE  | 64 KiB      | Longest header value, folding    |
    |                        |             | included.                        |
    | MAX_BODY_SIZE          | inf         | Most bytes accepted in total.    |
    | ALWAYS_STORE           | False       | Put every leaf body in storage.  |
    | STORE_FILE_PARTS       | False       | Put attachments and parts with a |
    |                        |             | filename in storage.             |
    | UPLOAD_DIR             | None        | Directory for temporary files.   |
    | UPLOAD_KEEP_EXTENSIONS | False       | Keep the filename extension on   |
    |                        |             | temporary files.                 |
    | HEADER_CHARSET         | utf-8       | Charset of part headers.         |

    Args:
        boundary: The boundary of the outermost multipart body.
        headers: Headers for the root container.  When not given, a
            ``multipart/mixed`` Content-Type carrying the boundary is used.
        config: Configuration overrides, see above.
    """

    DEFAULT_CONFIG: ParserConfig = {
        "MAX_INLINE_BYTES": 1 * 1024 * 1024,
        "STORAGE_FACTORY": None,
        "MAX_NESTING_DEPTH": 32,
        "MAX_HEADER_LINE_SIZE": 16 * 1024,
        "MAX_HEADER_COUNT": 128,
        "MAX_HEADER_VALUE_SIZE": 64 * 1024,
        "MAX_BODY_SIZE": float("inf"),
        "ALWAYS_STORE": False,
        "STORE_FILE_PARTS": False,
        "UPLOAD_DIR": None,
        "UPLOAD_KEEP_EXTENSIONS": False,
        "HEADER_CHARSET": DEFAULT_CHARSET,
    }

    def __init__(self, boundary: bytes | str, headers: HeaderItems | None = None, config: ParserConfig = {}) -> None:
        self.logger = logging.getLogger(__name__)
        self.bytes_received = 0

        self.config: ParserConfig = self.DEFAULT_CONFIG.copy()
        self.config.update(config)

        if self.config["MAX_NESTING_DEPTH"] < 0:
            raise ValueError("MAX_NESTING_DEPTH must not be negative")

        if headers is None:
            if isinstance(boundary, bytes):
                boundary_str = boundary.decode("latin-1")
            else:
                boundary_str = boundary
            root = MultipartContainer.create("mixed", boundary=boundary_str)
        else:
            root = MultipartContainer(headers)

        self._builder: _ContainerBuilder | None = _ContainerBuilder(root, boundary, 0, self.config)
        self._tree: MultipartContainer | None = None

    @property
    def tree(self) -> MultipartContainer:
        """The parsed tree; available once :meth:`finalize` has returned."""
        if self._tree is None:
            raise ValueError("The multipart body has not been completely parsed")
        return self._tree

    def write(self, data: bytes) -> int:
        """Write some data.  The parser will forward this to the appropriate
        underlying parser.

        Args:
            data: The data to write.

        Returns:
            The number of bytes processed.
        """
        if self._builder is None:
            raise ValueError("Cannot write to a finished or closed parser")
        self.bytes_received += len(data)
        return self._builder.write(data)

    def finalize(self) -> MultipartContainer:
        """Finalize the parser and return the tree."""
        if self._builder is None:
            raise ValueError("Cannot finalize a finished or closed parser")
        self._tree = self._builder.finish()
        self._builder = None
        return self._tree

    def close(self) -> None:
        """Release all backing storage, of a partial tree or a finished one."""
        if self._builder is not None:
            self._builder.close()
            self._builder = None
        if self._tree is not None:
            self._tree.close()
            self._tree = None

    def __repr__(self) -> str:
        parser = self._builder.parser if self._builder is not None else None
        return f"{self.__class__.__name__}(parser={parser!r})"


def create_tree_parser(headers: HeaderItems, config: ParserConfig = {}) -> TreeParser:
    """This function is a helper function to aid in creating a TreeParser
    instance.  Given the top-level headers of a message (a `Headers` instance
    or a dict-like object), it extracts the boundary from the Content-Type.

    Raises `NotMultipart` when the Content-Type is missing or not
    ``multipart/*`` and `MissingBoundaryParameter` when there is no boundary.
    """
    headers = headers if isinstance(headers, Headers) else Headers(headers)

    content_type, params = headers.content_type(default="")
    if not content_type.startswith("multipart/"):
        logging.getLogger(__name__).warning("Not a multipart Content-Type: %r", content_type)
        raise NotMultipart("Expected a multipart Content-Type, got %r" % content_type)

    boundary = params.get("boundary")
    if not boundary:
        logging.getLogger(__name__).warning("No boundary given")
        raise MissingBoundaryParameter("No boundary given in %r" % headers.get("Content-Type"))

    return TreeParser(boundary, headers=headers, config=config)


def _iter_source(source: ByteSource, chunk_size: int) -> Iterator[bytes]:
    if isinstance(source, (bytes, bytearray, memoryview)):
        yield bytes(source)
        return

    read = getattr(source, "read", None)
    if read is not None:
        while True:
            try:
                chunk = read(chunk_size)
            except OSError as exc:
                raise IoFailure("Error reading from the byte source") from exc
            if not chunk:
                return
            yield chunk

    iterator = iter(cast("Iterable[bytes]", source))
    while True:
        try:
            chunk = next(iterator)
        except StopIteration:
            return
        except OSError as exc:
            raise IoFailure("Error reading from the byte source") from exc
        yield chunk


def _drive(parser: TreeParser, chunks: Iterable[bytes]) -> MultipartContainer:
    try:
        for chunk in chunks:
            parser.write(chunk)
        return parser.finalize()
    except BaseException:
        parser.close()
        raise


def parse(
    source: ByteSource,
    boundary: bytes | str,
    config: ParserConfig | None = None,
    headers: HeaderItems | None = None,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> MultipartContainer:
    """Parse a multipart body into a tree of parts.

    The source may be a bytes object, a binary file-like object with a
    ``read()`` method, or any iterable of byte chunks.  If parsing fails for
    any reason, every temporary file created so far is removed before the
    error propagates.

    ```python
    tree = parse(request.stream, boundary)
    try:
        for part in tree.walk():
            ...
    finally:
        tree.close()
    ```

    Args:
        source: Where the body bytes come from.
        boundary: The boundary from the message's Content-Type.
        config: Configuration overrides; see `TreeParser`.
        headers: Headers to give the root container.
        chunk_size: The maximum size to read from a file-like source at a time.
    """
    parser = TreeParser(boundary, headers=headers, config=config or {})
    return _drive(parser, _iter_source(source, chunk_size))


def parse_message(
    source: ByteSource, config: ParserConfig | None = None, chunk_size: int = DEFAULT_CHUNK_SIZE
) -> MultipartContainer:
    """Parse a complete message: the top-level header block followed by a
    multipart body.  The boundary comes from the message's Content-Type and
    the returned container carries the message headers.
    """
    merged: ParserConfig = TreeParser.DEFAULT_CONFIG.copy()
    merged.update(config or {})

    header_parser = HeaderParser(
        max_line_size=merged["MAX_HEADER_LINE_SIZE"],
        max_count=merged["MAX_HEADER_COUNT"],
        charset=merged["HEADER_CHARSET"],
        max_value_size=merged["MAX_HEADER_VALUE_SIZE"],
    )
    logger = logging.getLogger(__name__)
    max_line_size = merged["MAX_HEADER_LINE_SIZE"]
    chunks = _iter_source(source, chunk_size)
    buf = bytearray()
    offset = 0

    for chunk in chunks:
        buf += chunk
        while not header_parser.done:
            nl = buf.find(LF)
            if nl == -1:
                if max_line_size is not None and len(buf) > max_line_size:
                    msg = "Header line exceeds %d bytes" % max_line_size
                    logger.warning(msg)
                    e: ParseError = HeaderTooLarge(msg)
                    e.offset = offset
                    raise e
                break
            try:
                header_parser.feed_line(bytes(buf[: nl + 1]))
            except ParseError as e:
                logger.warning(str(e))
                e.offset = offset
                raise
            del buf[: nl + 1]
            offset += nl + 1
        if header_parser.done:
            break

    if not header_parser.done:
        msg = "Stream ended inside the message headers"
        logger.warning(msg)
        e = UnexpectedEof(msg)
        e.offset = offset + len(buf)
        raise e

    parser = create_tree_parser(header_parser.headers, config=merged)

    def remaining() -> Iterator[bytes]:
        if buf:
            yield bytes(buf)
        yield from chunks

    return _drive(parser, remaining())


def iter_leaves(tree: MultipartContainer) -> Iterator[Node]:
    """Yield the leaf parts of a tree in stream order."""
    for node in tree.walk():
        if not isinstance(node, MultipartContainer):
            yield node
