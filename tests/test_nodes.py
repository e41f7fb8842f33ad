from pathlib import Path

import pytest

from mime_multipart.exceptions import IoFailure
from mime_multipart.headers import Headers
from mime_multipart.nodes import InlinePart, MultipartContainer, StoredPart
from mime_multipart.storage import BodyState, FileStorage, SpooledBody, TemporaryFileStorage


def test_inline_part_from_value() -> None:
    part = InlinePart.from_value(b"data", "text/csv; charset=utf-8", headers={"X-Id": "1"})
    assert part.headers.items() == [("X-Id", "1"), ("Content-Type", "text/csv; charset=utf-8")]
    assert part.mime_type == "text/csv"
    assert part.content_type[1] == {"charset": "utf-8"}
    assert part.size == 4
    assert list(part.iter_bytes(3)) == [b"dat", b"a"]


def test_default_type() -> None:
    assert InlinePart().mime_type == "text/plain"
    assert InlinePart(default_type="message/rfc822").mime_type == "message/rfc822"


def test_inline_part_repr() -> None:
    assert repr(InlinePart.from_value(b"x" * 200, "text/plain")).endswith("...')")


def test_container_boundary() -> None:
    container = MultipartContainer.create("related")
    assert container.boundary is None
    assert container.headers.get("Content-Type") == "multipart/related"

    container.boundary = "abc"
    assert container.boundary == "abc"
    assert container.headers.get("Content-Type") == 'multipart/related; boundary="abc"'

    container.boundary = "def"
    assert container.headers.get("Content-Type") == 'multipart/related; boundary="def"'
    assert len(container.headers) == 1


def test_container_boundary_keeps_other_params() -> None:
    container = MultipartContainer([("Content-Type", 'multipart/related; type="text/html"')])
    container.boundary = "b"
    assert container.content_type == ("multipart/related", {"type": "text/html", "boundary": "b"})


def test_nodes_do_not_share_headers() -> None:
    headers = Headers([("Content-Type", "multipart/mixed")])
    a = MultipartContainer(headers)
    b = MultipartContainer(headers)
    a.boundary = "abc"
    assert a.boundary == "abc"
    assert b.boundary is None
    assert headers.get("Content-Type") == "multipart/mixed"


def test_child_default_type() -> None:
    assert MultipartContainer.create("digest").child_default_type == "message/rfc822"
    assert MultipartContainer.create("mixed").child_default_type == "text/plain"


def test_container_append_and_walk() -> None:
    inner = MultipartContainer.create("alternative")
    a = InlinePart(body=b"a")
    b = InlinePart(body=b"b")
    inner.append(a)
    root = MultipartContainer.create("mixed", children=[inner])
    root.append(b)

    assert list(root.walk()) == [root, inner, a, b]
    assert root[1] is b
    assert len(root) == 2

    with pytest.raises(TypeError):
        root.append("not a node")  # type: ignore[arg-type]


def test_stored_part_from_path(tmp_path: Path) -> None:
    path = tmp_path / "file.txt"
    path.write_bytes(b"content")

    part = StoredPart.from_path({"Content-Disposition": 'attachment; filename="file.txt"'}, path)
    assert part.size == 7
    assert part.path == str(path)
    assert part.filename == "file.txt"
    with part.open() as f:
        assert f.read() == b"content"

    with part:
        pass
    assert part.closed
    assert path.exists()


def test_stored_parts_compare_by_content(tmp_path: Path) -> None:
    (tmp_path / "a").write_bytes(b"same")
    (tmp_path / "b").write_bytes(b"same")
    (tmp_path / "c").write_bytes(b"diff")
    assert StoredPart.from_path(None, tmp_path / "a") == StoredPart.from_path(None, tmp_path / "b")
    assert StoredPart.from_path(None, tmp_path / "a") != StoredPart.from_path(None, tmp_path / "c")


def test_file_storage_is_read_only(tmp_path: Path) -> None:
    storage = FileStorage(tmp_path / "missing")
    with pytest.raises(IoFailure):
        storage.write(b"x")
    with pytest.raises(IoFailure):
        storage.open()
    with pytest.raises(IoFailure):
        storage.size


def test_temporary_file_storage(tmp_path: Path) -> None:
    storage = TemporaryFileStorage(Headers(), {"UPLOAD_DIR": str(tmp_path)})
    assert storage.write(b"abc") == 3
    storage.finalize()
    assert storage.size == 3
    with storage.open() as f:
        assert f.read() == b"abc"

    storage.close()
    assert list(tmp_path.iterdir()) == []
    with pytest.raises(IoFailure):
        storage.open()
    # Closing twice is harmless.
    storage.close()


def test_temporary_file_storage_bad_dir(tmp_path: Path) -> None:
    with pytest.raises(IoFailure):
        TemporaryFileStorage(Headers(), {"UPLOAD_DIR": str(tmp_path / "does" / "not" / "exist")})


def test_spooled_body_stays_in_memory() -> None:
    body = SpooledBody(Headers(), {"MAX_INLINE_BYTES": 8})
    body.write(b"1234")
    body.write(b"5678")
    assert body.in_memory
    node = body.finish()
    assert isinstance(node, InlinePart)
    assert node.body == b"12345678"
    assert body.state == BodyState.DONE

    with pytest.raises(ValueError):
        body.write(b"more")
    with pytest.raises(ValueError):
        body.finish()


def test_spooled_body_spills(tmp_path: Path) -> None:
    body = SpooledBody(Headers(), {"MAX_INLINE_BYTES": 8, "UPLOAD_DIR": str(tmp_path)})
    body.write(b"12345")
    body.write(b"6789")
    assert body.state == BodyState.SPILLING_TO_STORAGE
    body.write(b"0")
    assert body.size == 10

    node = body.finish()
    assert isinstance(node, StoredPart)
    assert node.read() == b"1234567890"
    assert len(list(tmp_path.iterdir())) == 1

    node.close()
    assert list(tmp_path.iterdir()) == []


def test_spooled_body_close_releases_storage(tmp_path: Path) -> None:
    body = SpooledBody(Headers(), {"ALWAYS_STORE": True, "UPLOAD_DIR": str(tmp_path)})
    assert body.state == BodyState.SPILLING_TO_STORAGE
    body.write(b"partial")
    body.close()
    assert list(tmp_path.iterdir()) == []


def test_spooled_body_factory_error() -> None:
    def factory(headers: Headers) -> None:
        raise OSError("no space left")

    with pytest.raises(IoFailure):
        SpooledBody(Headers(), {"ALWAYS_STORE": True, "STORAGE_FACTORY": factory})
