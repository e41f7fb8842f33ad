from __future__ import annotations

import logging
from email.message import Message
from email.utils import collapse_rfc2231_value
from typing import TYPE_CHECKING

from .exceptions import HeaderTooLarge, MalformedHeader, UnexpectedEof

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import Iterable, Iterator, Mapping
    from typing import Union

    HeaderItems = Union["Headers", Mapping[str, str], Iterable[tuple[str, str]]]


# fmt: off
# Header names are HTTP tokens: RFC7230 3.2.6 lists all alphanumerics and
# these special characters.
TOKEN_CHARS_SET = frozenset(
    "ABCDEFGHIJKLMNOPQRSTUVWXYZ"
    "abcdefghijklmnopqrstuvwxyz"
    "0123456789"
    "!#$%&'*+-.^_`|~")
# fmt: on

#: Characters that may start a folded continuation line.
FOLDING_WHITESPACE = " \t"

DEFAULT_CHARSET = "utf-8"


def _to_str(value: str | bytes, charset: str = DEFAULT_CHARSET) -> str:
    if isinstance(value, bytes):
        return value.decode(charset, "surrogateescape")
    return value


def parse_options_header(value: str | bytes | None) -> tuple[str, dict[str, str]]:
    """Parses a Content-Type-like header value into a tuple of the main value
    and a dictionary of options.  Keys are lower-cased, quoted-string values
    are unquoted and RFC 2231 encoded values are decoded.
    """
    # Uses email.message.Message to parse the header as described in PEP 594.
    # Ref: https://peps.python.org/pep-0594/#cgi
    if not value:
        return ("", {})

    if isinstance(value, bytes):  # pragma: no cover
        value = value.decode("latin-1")

    assert isinstance(value, str), "Value should be a string by now"

    # If we have no options, return the string as-is.
    if ";" not in value:
        return (value.lower().strip(), {})

    message = Message()
    message["content-type"] = value
    params = message.get_params()
    # If there were no parameters, this would have already returned above
    assert params, "At least the content type value should be present"
    ctype = params.pop(0)[0].lower().strip()
    options: dict[str, str] = {}
    for param in params:
        key, param_value = param
        # If the value is a tuple, it was encoded per RFC 2231.
        if isinstance(param_value, tuple):
            param_value = collapse_rfc2231_value(param_value)
        key = key.lower()
        # If the value is a filename, we need to fix a bug on IE6 that sends
        # the full file path instead of the filename.
        if key == "filename":
            if param_value[1:3] == ":\\" or param_value[:2] == "\\\\":
                param_value = param_value.split("\\")[-1]
        options[key] = param_value
    return ctype, options


class Headers:
    """An ordered collection of ``(name, value)`` header fields.

    Lookups are case-insensitive, but the original spelling and order of every
    field is kept so that a parsed header block serializes back unchanged.
    Repeated names are allowed.

    ```python
    h = Headers([("Content-Type", "text/plain; charset=utf-8")])
    h.get("content-type")     # "text/plain; charset=utf-8"
    h.content_type()          # ("text/plain", {"charset": "utf-8"})
    ```
    """

    def __init__(self, items: HeaderItems | None = None) -> None:
        self._items: list[tuple[str, str]] = []
        if items is None:
            return
        if isinstance(items, Headers):
            self._items = list(items._items)
            return
        if hasattr(items, "items"):
            items = items.items()  # type: ignore[union-attr]
        for name, value in items:  # type: ignore[union-attr]
            self.add(name, value)

    @classmethod
    def parse(
        cls,
        lines: Iterable[str | bytes],
        max_line_size: int | None = None,
        max_count: int | None = None,
        charset: str = DEFAULT_CHARSET,
        max_value_size: int | None = None,
    ) -> Headers:
        """Parse consecutive header lines up to and including the empty line
        that terminates the block.  Lines after the empty line are not
        consumed from the iterator.
        """
        parser = HeaderParser(
            max_line_size=max_line_size, max_count=max_count, charset=charset, max_value_size=max_value_size
        )
        for line in lines:
            if parser.feed_line(line):
                return parser.headers
        raise UnexpectedEof("Header block ended before the terminating empty line")

    @staticmethod
    def validate(name: str, value: str) -> None:
        if not name:
            raise MalformedHeader("Found 0-length header name")
        for c in name:
            if c not in TOKEN_CHARS_SET:
                raise MalformedHeader("Found invalid character %r in header name %r" % (c, name))
        if "\r" in value or "\n" in value:
            raise MalformedHeader("Header %r has a line break in its value" % name)

    def add(self, name: str | bytes, value: str | bytes) -> None:
        """Append a field.  Surrounding whitespace is dropped from the value,
        as it would be when the field is parsed back.
        """
        name = _to_str(name)
        value = _to_str(value)
        self.validate(name, value)
        value = value.strip()
        self._items.append((name, value))

    def set(self, name: str, value: str) -> None:
        """Replace every field called ``name`` with a single one, keeping the
        position of the first.
        """
        self.validate(name, value)
        value = value.strip()
        lname = name.lower()
        new_items: list[tuple[str, str]] = []
        replaced = False
        for item in self._items:
            if item[0].lower() != lname:
                new_items.append(item)
            elif not replaced:
                new_items.append((item[0], value))
                replaced = True
        if not replaced:
            new_items.append((name, value))
        self._items = new_items

    def remove(self, name: str) -> int:
        lname = name.lower()
        before = len(self._items)
        self._items = [item for item in self._items if item[0].lower() != lname]
        return before - len(self._items)

    def get(self, name: str, default: str | None = None) -> str | None:
        lname = name.lower()
        for key, value in self._items:
            if key.lower() == lname:
                return value
        return default

    def get_all(self, name: str) -> list[str]:
        lname = name.lower()
        return [value for key, value in self._items if key.lower() == lname]

    def items(self) -> list[tuple[str, str]]:
        return list(self._items)

    def copy(self) -> Headers:
        return Headers(self)

    def content_type(self, default: str = "text/plain") -> tuple[str, dict[str, str]]:
        ctype, params = parse_options_header(self.get("Content-Type"))
        if not ctype:
            return parse_options_header(default)
        return ctype, params

    def content_disposition(self) -> tuple[str, dict[str, str]]:
        return parse_options_header(self.get("Content-Disposition"))

    def filename(self) -> str | None:
        _, params = self.content_disposition()
        if "filename" in params:
            return params["filename"]
        _, params = self.content_type()
        return params.get("name")

    def transfer_encoding(self) -> str:
        value = self.get("Content-Transfer-Encoding")
        if not value:
            return "7bit"
        return value.strip().lower()

    def __contains__(self, name: object) -> bool:
        if not isinstance(name, str):
            return False
        return self.get(name) is not None

    def __iter__(self) -> Iterator[tuple[str, str]]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Headers):
            return self._items == other._items
        return NotImplemented

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self._items!r})"


class HeaderParser:
    """Incremental header block parser: feed it one line at a time until
    :meth:`feed_line` returns True.

    A field is only committed once the following line shows it is not
    folded any further.
    """

    def __init__(
        self,
        max_line_size: int | None = None,
        max_count: int | None = None,
        charset: str = DEFAULT_CHARSET,
        max_value_size: int | None = None,
    ) -> None:
        self.logger = logging.getLogger(__name__)
        self.headers = Headers()
        self.done = False
        self.max_line_size = max_line_size
        self.max_count = max_count
        self.max_value_size = max_value_size
        self.charset = charset
        self._name: str | None = None
        self._value_parts: list[str] = []
        # Raw bytes of the current field, continuation lines included.
        self._value_size = 0

    def feed_line(self, line: str | bytes) -> bool:
        if self.done:
            raise ValueError("Header block is already complete")

        if self.max_line_size is not None and len(line) > self.max_line_size:
            raise HeaderTooLarge("Header line of %d bytes exceeds the limit of %d" % (len(line), self.max_line_size))

        size = len(line)
        line = _to_str(line, self.charset)
        if line.endswith("\n"):
            line = line[:-1]
        if line.endswith("\r"):
            line = line[:-1]

        # An empty line ends the block.
        if not line:
            self._commit()
            self.done = True
            return True

        if line[0] in FOLDING_WHITESPACE:
            if self._name is None:
                raise MalformedHeader("Found continuation line %r with no header to continue" % line)
            self._value_size += size
            if self.max_value_size is not None and self._value_size > self.max_value_size:
                raise HeaderTooLarge(
                    "Folded header %r exceeds the limit of %d bytes" % (self._name, self.max_value_size)
                )
            self._value_parts.append(line.strip())
            return False

        self._commit()
        name, sep, value = line.partition(":")
        if not sep:
            raise MalformedHeader("Did not find ':' in header line %r" % line)
        if not name:
            raise MalformedHeader("Found 0-length header in line %r" % line)
        for c in name:
            if c not in TOKEN_CHARS_SET:
                raise MalformedHeader("Found invalid character %r in header %r" % (c, name))
        self._name = name
        self._value_parts = [value.strip()]
        self._value_size = size
        return False

    def _commit(self) -> None:
        if self._name is None:
            return
        if self.max_count is not None and len(self.headers) >= self.max_count:
            raise HeaderTooLarge("More than %d header fields in one block" % self.max_count)
        value = " ".join(part for part in self._value_parts if part)
        self.logger.debug("Parsed header %r", self._name)
        self.headers.add(self._name, value)
        self._name = None
        self._value_parts = []
        self._value_size = 0
