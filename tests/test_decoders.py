from __future__ import annotations

import unittest
from io import BytesIO
from pathlib import Path
from unittest.mock import Mock

import pytest

from mime_multipart.decoders import Base64Decoder, QuotedPrintableDecoder, decode_payload, get_decoder
from mime_multipart.exceptions import DecodeError
from mime_multipart.nodes import InlinePart, StoredPart


class TestBase64Decoder(unittest.TestCase):
    # Note: base64('foobar') == 'Zm9vYmFy'
    def setUp(self) -> None:
        self.f = BytesIO()
        self.d = Base64Decoder(self.f)

    def assert_data(self, data: bytes, finalize: bool = True) -> None:
        if finalize:
            self.d.finalize()

        self.assertEqual(self.f.getvalue(), data)
        self.f.seek(0)
        self.f.truncate()

    def test_simple(self) -> None:
        self.d.write(b"Zm9vYmFy")
        self.assert_data(b"foobar")

    def test_bad(self) -> None:
        with self.assertRaises(DecodeError):
            self.d.write(b"Zm9v!mFy")

    def test_every_split(self) -> None:
        buff = b"Zm9vYmFy"
        for i in range(1, len(buff)):
            self.setUp()
            self.d.write(buff[:i])
            self.d.write(buff[i:])
            self.assert_data(b"foobar")

    def test_line_breaks(self) -> None:
        # MIME bodies wrap base64 text at 76 characters.
        self.d.write(b"Zm9v\r\nYm")
        self.d.write(b"Fy\r\n")
        self.assert_data(b"foobar")

    def test_close_and_finalize(self) -> None:
        parser = Mock()
        f = Base64Decoder(parser)

        f.finalize()
        parser.finalize.assert_called_once_with()

        f.close()
        parser.close.assert_called_once_with()

    def test_bad_length(self) -> None:
        self.d.write(b"Zm9vYmF")  # missing ending 'y'

        with self.assertRaises(DecodeError):
            self.d.finalize()


class TestQuotedPrintableDecoder(unittest.TestCase):
    def setUp(self) -> None:
        self.f = BytesIO()
        self.d = QuotedPrintableDecoder(self.f)

    def assert_data(self, data: bytes, finalize: bool = True) -> None:
        if finalize:
            self.d.finalize()

        self.assertEqual(self.f.getvalue(), data)
        self.f.seek(0)
        self.f.truncate()

    def test_simple(self) -> None:
        self.d.write(b"foobar")
        self.assert_data(b"foobar")

    def test_with_escape(self) -> None:
        self.d.write(b"foo=3Dbar")
        self.assert_data(b"foo=bar")

    def test_soft_line_breaks(self) -> None:
        self.d.write(b"foo=\r\nbar")
        self.assert_data(b"foobar")

        self.d.write(b"foo=\nbar")
        self.assert_data(b"foobar")

    def test_split_escapes(self) -> None:
        cases = [
            (b"foo=3", b"Dbar", b"foo=bar"),
            (b"foo=", b"3Dbar", b"foo=bar"),
            (b"=3", b"AX", b":X"),
            (b"q=3", b"AX", b"q:X"),
        ]
        for first, second, expected in cases:
            self.setUp()
            self.d.write(first)
            self.d.write(second)
            self.assert_data(expected)

    def test_split_soft_line_breaks(self) -> None:
        self.d.write(b"foo=\r")
        self.d.write(b"\nbar")
        self.assert_data(b"foobar")

        self.d.write(b"foo=")
        self.d.write(b"\r\nbar")
        self.assert_data(b"foobar")

    def test_close_and_finalize(self) -> None:
        parser = Mock()
        f = QuotedPrintableDecoder(parser)

        f.finalize()
        parser.finalize.assert_called_once_with()

        f.close()
        parser.close.assert_called_once_with()


@pytest.mark.parametrize("encoding", ["7bit", "8BIT", " binary "])
def test_identity_encodings(encoding: str) -> None:
    out = BytesIO()
    assert get_decoder(encoding, out) is out


def test_unknown_encoding() -> None:
    with pytest.raises(DecodeError):
        get_decoder("x-uuencode", BytesIO())


def test_decode_inline_payload() -> None:
    part = InlinePart([("Content-Transfer-Encoding", "base64")], b"Zm9v\r\nYmFy")
    assert decode_payload(part) == b"foobar"

    part = InlinePart([("Content-Transfer-Encoding", "quoted-printable")], b"caf=C3=A9")
    assert decode_payload(part) == "café".encode("utf-8")

    part = InlinePart(None, b"as is")
    assert decode_payload(part) == b"as is"


def test_decode_stored_payload(tmp_path: Path) -> None:
    path = tmp_path / "encoded"
    path.write_bytes(b"Zm9vYmFy\r\n" * 100)
    part = StoredPart.from_path([("Content-Transfer-Encoding", "base64")], path)
    assert decode_payload(part) == b"foobar" * 100
