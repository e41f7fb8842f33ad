from __future__ import annotations

import pytest

from mime_multipart.exceptions import InvalidBoundary
from mime_multipart.scanner import MAX_TRANSPORT_PADDING, BoundaryScanner, ScanStatus, validate_boundary


@pytest.fixture
def scanner() -> BoundaryScanner:
    return BoundaryScanner("XYZ")


def test_separator(scanner: BoundaryScanner) -> None:
    data = b"body\r\n--XYZ\r\nnext"
    assert scanner.scan(data) == (ScanStatus.SEPARATOR, 4, 13)


def test_terminator(scanner: BoundaryScanner) -> None:
    data = b"body\r\n--XYZ--\r\nepilogue"
    assert scanner.scan(data) == (ScanStatus.TERMINATOR, 4, 13)


def test_terminator_at_end_of_input(scanner: BoundaryScanner) -> None:
    assert scanner.scan(b"body\r\n--XYZ--") == (ScanStatus.TERMINATOR, 4, 13)


def test_transport_padding(scanner: BoundaryScanner) -> None:
    data = b"body\r\n--XYZ \t \r\nnext"
    assert scanner.scan(data) == (ScanStatus.SEPARATOR, 4, 16)


def test_too_much_padding_is_content(scanner: BoundaryScanner) -> None:
    data = b"body\r\n--XYZ" + b" " * (MAX_TRANSPORT_PADDING + 1) + b"\r\n--XYZ--"
    result = scanner.scan(data)
    assert result.kind == ScanStatus.TERMINATOR
    assert result.start == len(data) - 9


def test_line_start(scanner: BoundaryScanner) -> None:
    assert scanner.scan(b"--XYZ\r\nrest", line_start=True) == (ScanStatus.SEPARATOR, 0, 7)
    # Without line_start the same bytes are content.
    assert scanner.scan(b"--XYZ\r\nrest", final=True) == (ScanStatus.NEED_MORE, 11, 11)


def test_boundary_followed_by_other_bytes(scanner: BoundaryScanner) -> None:
    data = b"a\r\n--XYZnotaboundary\r\n--XYZ-x\r\n--XYZ\r\n"
    result = scanner.scan(data)
    assert result.kind == ScanStatus.SEPARATOR
    assert result.start == data.rindex(b"\r\n--XYZ\r\n")


def test_lone_lf_is_not_a_line_break(scanner: BoundaryScanner) -> None:
    data = b"a\n--XYZ\r\n"
    assert scanner.scan(data, final=True).kind == ScanStatus.NEED_MORE


@pytest.mark.parametrize(
    "tail",
    [b"\r", b"\r\n", b"\r\n-", b"\r\n--XY", b"\r\n--XYZ", b"\r\n--XYZ-", b"\r\n--XYZ  ", b"\r\n--XYZ\r"],
)
def test_need_more_holds_back_candidates(scanner: BoundaryScanner, tail: bytes) -> None:
    data = b"content" + tail
    assert scanner.scan(data) == (ScanStatus.NEED_MORE, 7, len(data))
    # At end of input the candidate is content.
    assert scanner.scan(data, final=True) == (ScanStatus.NEED_MORE, len(data), len(data))


def test_need_more_at_line_start(scanner: BoundaryScanner) -> None:
    assert scanner.scan(b"--X", line_start=True) == (ScanStatus.NEED_MORE, 0, 3)
    assert scanner.scan(b"--X", line_start=True, final=True) == (ScanStatus.NEED_MORE, 3, 3)


def test_plain_content(scanner: BoundaryScanner) -> None:
    assert scanner.scan(b"no delimiters here") == (ScanStatus.NEED_MORE, 18, 18)


def test_scan_from_offset(scanner: BoundaryScanner) -> None:
    data = b"x\r\n--XYZ\r\ny\r\n--XYZ--"
    first = scanner.scan(data)
    second = scanner.scan(data, first.end)
    assert first.kind == ScanStatus.SEPARATOR
    assert second == (ScanStatus.TERMINATOR, 11, 20)


def test_scan_is_repeatable(scanner: BoundaryScanner) -> None:
    data = bytearray(b"body\r\n--XY")
    assert scanner.scan(data) == scanner.scan(data)
    assert data == b"body\r\n--XY"


def test_find_line_start(scanner: BoundaryScanner) -> None:
    assert scanner.find_line_start(b"--XYZabc", line_start=True) == 0
    assert scanner.find_line_start(b"--XYZabc") == -1
    assert scanner.find_line_start(b"a\r\n--XYZabc") == 3
    assert scanner.find_line_start(b"a--XYZ") == -1


@pytest.mark.parametrize("boundary", ["a", "x" * 70, "simple boundary", "=_abc-123", "'()+_,-./:=?"])
def test_valid_boundaries(boundary: str) -> None:
    assert validate_boundary(boundary) == boundary.encode("ascii")


@pytest.mark.parametrize("boundary", ["", "x" * 71, "trailing ", "bad\x00", "café", "semi;colon", 'quo"te'])
def test_invalid_boundaries(boundary: str) -> None:
    with pytest.raises(InvalidBoundary):
        validate_boundary(boundary)


def test_lenient_validation() -> None:
    assert validate_boundary(b"semi;colon", strict=False) == b"semi;colon"
    assert validate_boundary("trailing ", strict=False) == b"trailing "
    with pytest.raises(InvalidBoundary):
        validate_boundary(b"line\r\nbreak", strict=False)
    with pytest.raises(InvalidBoundary):
        validate_boundary(b"", strict=False)
    with pytest.raises(InvalidBoundary):
        BoundaryScanner(b"x" * 71)
