from __future__ import annotations

import logging
import os
import shutil
import tempfile
from enum import IntEnum
from io import BytesIO
from typing import TYPE_CHECKING, cast

from .exceptions import IoFailure

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import Callable, Iterator
    from typing import BinaryIO, Protocol, TypedDict

    from .headers import Headers
    from .nodes import InlinePart, StoredPart

    class Storage(Protocol):
        """Backing storage for one part body: written once, then read back."""

        @property
        def size(self) -> int: ...
        @property
        def path(self) -> str | None: ...
        def write(self, data: bytes) -> int: ...
        def finalize(self) -> None: ...
        def open(self) -> BinaryIO: ...
        def close(self) -> None: ...
        def detach(self) -> None: ...

    StorageFactory = Callable[[Headers], Storage]

    class StorageConfig(TypedDict, total=False):
        MAX_INLINE_BYTES: int
        STORAGE_FACTORY: StorageFactory | None
        ALWAYS_STORE: bool
        STORE_FILE_PARTS: bool
        UPLOAD_DIR: str | bytes | None
        UPLOAD_KEEP_EXTENSIONS: bool


#: Default size of the chunks read back from storage.
READ_CHUNK_SIZE = 64 * 1024


class TemporaryFileStorage:
    """Stores a part body in a named temporary file.

    The file is removed by :meth:`close` unless :meth:`detach` was called,
    in which case it belongs to whoever detached it.
    """

    def __init__(self, headers: Headers | None = None, config: StorageConfig = {}) -> None:
        self.logger = logging.getLogger(__name__)
        self._config = config
        self._size = 0
        self._delete = True
        self._closed = False

        suffix = None
        if config.get("UPLOAD_KEEP_EXTENSIONS", False) and headers is not None:
            file_name = headers.filename()
            if file_name:
                suffix = os.path.splitext(file_name)[1] or None

        file_dir = config.get("UPLOAD_DIR")
        if isinstance(file_dir, bytes):
            file_dir = os.fsdecode(file_dir)

        self.logger.info("Creating a temporary file with options: %r", {"suffix": suffix, "dir": file_dir})
        try:
            self._fileobj = cast("BinaryIO", tempfile.NamedTemporaryFile(
                prefix="mime_multipart_", suffix=suffix, dir=file_dir, delete=False
            ))
        except OSError as exc:
            self.logger.exception("Error creating named temporary file")
            raise IoFailure("Error creating named temporary file") from exc

        self._path: str = self._fileobj.name

    @property
    def size(self) -> int:
        return self._size

    @property
    def path(self) -> str:
        return self._path

    def write(self, data: bytes) -> int:
        try:
            written = self._fileobj.write(data)
        except OSError as exc:
            raise IoFailure("Error writing to temporary file %r" % self._path) from exc
        self._size += written
        return written

    def finalize(self) -> None:
        try:
            self._fileobj.close()
        except OSError as exc:
            raise IoFailure("Error closing temporary file %r" % self._path) from exc

    def open(self) -> BinaryIO:
        if self._closed:
            raise IoFailure("Storage for %r has already been released" % self._path)
        try:
            return open(self._path, "rb")
        except OSError as exc:
            raise IoFailure("Error opening temporary file %r" % self._path) from exc

    def detach(self) -> None:
        self._delete = False

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._fileobj.close()
        if self._delete:
            self.logger.debug("Removing temporary file %r", self._path)
            try:
                os.unlink(self._path)
            except FileNotFoundError:
                pass

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(path={self._path!r}, size={self._size!r})"


class FileStorage:
    """Wraps an existing file owned by the caller.  Used for parts built to
    be written rather than parsed; :meth:`close` never deletes anything.
    """

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self._path = os.fspath(path)

    @property
    def size(self) -> int:
        try:
            return os.path.getsize(self._path)
        except OSError as exc:
            raise IoFailure("Cannot stat %r" % self._path) from exc

    @property
    def path(self) -> str:
        return self._path

    def write(self, data: bytes) -> int:
        raise IoFailure("%r is read-only" % self)

    def finalize(self) -> None:
        pass

    def open(self) -> BinaryIO:
        try:
            return open(self._path, "rb")
        except OSError as exc:
            raise IoFailure("Error opening %r" % self._path) from exc

    def detach(self) -> None:
        pass

    def close(self) -> None:
        pass

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(path={self._path!r})"


def iter_storage(storage: Storage, chunk_size: int = READ_CHUNK_SIZE) -> Iterator[bytes]:
    with storage.open() as f:
        while True:
            try:
                chunk = f.read(chunk_size)
            except OSError as exc:
                raise IoFailure("Error reading %r" % storage) from exc
            if not chunk:
                return
            yield chunk


class BodyState(IntEnum):
    """States of a :class:`SpooledBody`.  Transitions only go forward."""

    COLLECTING_INLINE = 0
    SPILLING_TO_STORAGE = 1
    DONE = 2


class SpooledBody:
    """Collects the body of one leaf part.

    The body starts out in memory.  The write that takes it past
    ``MAX_INLINE_BYTES`` moves everything collected so far into storage
    obtained from ``STORAGE_FACTORY``, and later writes go straight there.
    :meth:`finish` returns an :class:`InlinePart` or a :class:`StoredPart`.
    """

    def __init__(self, headers: Headers, config: StorageConfig = {}, default_type: str = "text/plain") -> None:
        self.logger = logging.getLogger(__name__)
        self.headers = headers
        self.default_type = default_type
        self._config = config
        self._bytes_written = 0
        self._buffer: BytesIO | None = BytesIO()
        self._storage: Storage | None = None
        self.state = BodyState.COLLECTING_INLINE

        if config.get("ALWAYS_STORE", False) or (config.get("STORE_FILE_PARTS", False) and self._is_file_part()):
            self.flush_to_storage()

    def _is_file_part(self) -> bool:
        disposition, params = self.headers.content_disposition()
        return disposition == "attachment" or "filename" in params

    @property
    def size(self) -> int:
        return self._bytes_written

    @property
    def in_memory(self) -> bool:
        return self.state == BodyState.COLLECTING_INLINE

    def _new_storage(self) -> Storage:
        factory = self._config.get("STORAGE_FACTORY")
        if factory is None:
            return TemporaryFileStorage(self.headers, self._config)
        try:
            return factory(self.headers)
        except OSError as exc:
            raise IoFailure("Storage factory failed") from exc

    def flush_to_storage(self) -> None:
        if self.state != BodyState.COLLECTING_INLINE:
            self.logger.warning("Trying to flush to storage when we're not in memory")
            return

        assert self._buffer is not None
        storage = self._new_storage()
        self._storage = storage
        self.state = BodyState.SPILLING_TO_STORAGE
        self._buffer.seek(0)
        shutil.copyfileobj(self._buffer, cast("BinaryIO", storage))
        self._buffer.close()
        self._buffer = None

    def write(self, data: bytes) -> int:
        if self.state == BodyState.DONE:
            raise ValueError("Cannot write to a finished body")

        if self.state == BodyState.COLLECTING_INLINE:
            assert self._buffer is not None
            written = self._buffer.write(data)
        else:
            assert self._storage is not None
            written = self._storage.write(data)
        self._bytes_written += written

        max_inline_bytes = self._config.get("MAX_INLINE_BYTES")
        if self.in_memory and max_inline_bytes is not None and self._bytes_written > max_inline_bytes:
            self.logger.info("Body is over %d bytes, flushing to storage", max_inline_bytes)
            self.flush_to_storage()

        return written

    def finish(self) -> InlinePart | StoredPart:
        from .nodes import InlinePart, StoredPart

        if self.state == BodyState.DONE:
            raise ValueError("Body has already been finished")

        if self.state == BodyState.COLLECTING_INLINE:
            assert self._buffer is not None
            node: InlinePart | StoredPart = InlinePart(self.headers, self._buffer.getvalue(), self.default_type)
            self._buffer.close()
            self._buffer = None
        else:
            assert self._storage is not None
            self._storage.finalize()
            node = StoredPart(self.headers, self._storage, self.default_type)
            # The node owns the storage from here on.
            self._storage = None
        self.state = BodyState.DONE
        return node

    def close(self) -> None:
        """Release anything not yet handed over by :meth:`finish`."""
        if self._buffer is not None:
            self._buffer.close()
            self._buffer = None
        if self._storage is not None:
            self._storage.close()
            self._storage = None
        self.state = BodyState.DONE

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(state={self.state.name}, size={self._bytes_written!r})"
