from __future__ import annotations

import base64
import binascii
from io import BytesIO
from typing import TYPE_CHECKING

from .exceptions import Base64Error, DecodeError

if TYPE_CHECKING:  # pragma: no cover
    from typing import Protocol, Union

    from .nodes import InlinePart, StoredPart

    class SupportsWrite(Protocol):
        def write(self, __b: bytes) -> object: ...

    Decoder = Union["Base64Decoder", "QuotedPrintableDecoder", SupportsWrite]


#: MIME wraps base64 text in lines; these bytes are not part of the data.
BASE64_WHITESPACE = b" \t\r\n"

#: Encodings whose bytes go through unchanged.
IDENTITY_ENCODINGS = frozenset(("7bit", "8bit", "binary"))


class Base64Decoder:
    """This object provides an interface to decode a stream of Base64 data.  It
    is instantiated with an "underlying object", and whenever a write()
    operation is performed, it will decode the incoming data as Base64, and
    call write() on the underlying object.  This is primarily used for decoding
    part bodies sent with ``Content-Transfer-Encoding: base64``.  Call
    :meth:`finalize` once all data has been written.

    Args:
        underlying: the underlying object to pass writes to
    """

    def __init__(self, underlying: SupportsWrite) -> None:
        self.cache = bytearray()
        self.underlying = underlying

    def write(self, data: bytes) -> int:
        """Takes any input data provided, decodes it as base64, and passes it
        on to the underlying object.  If the data provided is invalid base64
        data, then this method will raise
        a [`DecodeError`][mime_multipart.exceptions.DecodeError]

        Args:
            data: base64 data to decode
        """
        length = len(data)
        # Line breaks are dropped first, so that the slicing below only ever
        # counts base64 characters.
        data = self.cache + bytes(data).translate(None, BASE64_WHITESPACE)

        # Slice off a string that's a multiple of 4.
        decode_len = (len(data) // 4) * 4
        val = data[:decode_len]

        # Decode and write, if we have any.
        if len(val) > 0:
            try:
                decoded = base64.b64decode(val, validate=True)
            except Base64Error:
                raise DecodeError("There was an error raised while decoding base64-encoded data.")

            self.underlying.write(decoded)

        # Get the remaining bytes and save in our cache.
        remaining_len = len(data) % 4
        if remaining_len > 0:
            self.cache[:] = data[-remaining_len:]
        else:
            self.cache[:] = b""

        # Return the length of the data to indicate no error.
        return length

    def close(self) -> None:
        """Close this decoder.  If the underlying object has a `close()`
        method, this function will call it.
        """
        if hasattr(self.underlying, "close"):
            self.underlying.close()

    def finalize(self) -> None:
        """Finalize this object.  This should be called when no more data
        should be written to the stream.  This function can raise a
        [`DecodeError`][mime_multipart.exceptions.DecodeError] if there is some
        remaining data in the cache.

        If the underlying object has a `finalize()` method, this function will
        call it.
        """
        if len(self.cache) > 0:
            raise DecodeError(
                "There are %d bytes remaining in the Base64Decoder cache when finalize() is called" % len(self.cache)
            )

        if hasattr(self.underlying, "finalize"):
            self.underlying.finalize()

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(underlying={self.underlying!r})"


class QuotedPrintableDecoder:
    """This object provides an interface to decode a stream of quoted-printable
    data.  It is instantiated with an "underlying object", in the same manner
    as the [`Base64Decoder`][mime_multipart.decoders.Base64Decoder].  This
    class behaves in exactly the same way, including maintaining a cache of
    quoted-printable chunks.

    Args:
        underlying: the underlying object to pass writes to
    """

    def __init__(self, underlying: SupportsWrite) -> None:
        self.cache = b""
        self.underlying = underlying

    def write(self, data: bytes) -> int:
        """Takes any input data provided, decodes it as quoted-printable, and
        passes it on to the underlying object.

        Args:
            data: quoted-printable data to decode
        """
        length = len(data)
        # Prepend any cache info to our data.
        if len(self.cache) > 0:
            data = self.cache + data

        # If the last 2 characters have an '=' sign in it, then we won't be
        # able to decode the encoded value and we'll need to save it for the
        # next decoding step.
        if data[-2:].find(b"=") != -1:
            enc, rest = data[:-2], data[-2:]
        else:
            enc = data
            rest = b""

        # Encode and write, if we have data.
        if len(enc) > 0:
            self.underlying.write(binascii.a2b_qp(enc))

        # Save remaining in cache.
        self.cache = bytes(rest)
        return length

    def close(self) -> None:
        """Close this decoder.  If the underlying object has a `close()`
        method, this function will call it.
        """
        if hasattr(self.underlying, "close"):
            self.underlying.close()

    def finalize(self) -> None:
        """Finalize this object.  This should be called when no more data
        should be written to the stream.  This function will not raise any
        exceptions, but it may write more data to the underlying object if
        there is data remaining in the cache.

        If the underlying object has a `finalize()` method, this function will
        call it.
        """
        # If we have a cache, write and then remove it.
        if len(self.cache) > 0:
            self.underlying.write(binascii.a2b_qp(self.cache))
            self.cache = b""

        # Finalize our underlying stream.
        if hasattr(self.underlying, "finalize"):
            self.underlying.finalize()

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(underlying={self.underlying!r})"


def get_decoder(transfer_encoding: str, underlying: SupportsWrite) -> Decoder:
    """Return an object that decodes ``transfer_encoding`` into
    ``underlying``.  Identity encodings return ``underlying`` itself.
    """
    transfer_encoding = transfer_encoding.strip().lower()
    if transfer_encoding in IDENTITY_ENCODINGS:
        return underlying
    elif transfer_encoding == "base64":
        return Base64Decoder(underlying)
    elif transfer_encoding == "quoted-printable":
        return QuotedPrintableDecoder(underlying)
    raise DecodeError(f"Unknown Content-Transfer-Encoding {transfer_encoding!r}")


def decode_payload(part: InlinePart | StoredPart) -> bytes:
    """Return the body of a leaf part with its Content-Transfer-Encoding
    undone.
    """
    out = BytesIO()
    decoder = get_decoder(part.transfer_encoding, out)
    for chunk in part.iter_bytes():
        decoder.write(chunk)
    if hasattr(decoder, "finalize"):
        decoder.finalize()
    return out.getvalue()
