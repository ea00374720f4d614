import gzip
import io
import tarfile

import pytest

from dockerbot.archive import ArchiveEntry, pack, pack_single, unpack_single
from dockerbot.errors import NotFound


def _members(data: bytes):
    with tarfile.open(fileobj=io.BytesIO(data), mode="r:gz") as tar:
        return [(m.name, m.size, m.mode) for m in tar.getmembers()]


def test_pack_is_gzip_and_strips_leading_slash():
    data = pack_single("/tmp/main.py", b"print('hi')\n")
    assert data[:2] == b"\x1f\x8b"
    assert _members(data) == [("tmp/main.py", 12, 0o644)]


def test_pack_multiple_entries_in_order():
    data = pack([ArchiveEntry("/a.txt", b"a"), ArchiveEntry("b/c.txt", b"bc")])
    assert [name for name, _, _ in _members(data)] == ["a.txt", "b/c.txt"]


def test_pack_rejects_empty_input():
    with pytest.raises(ValueError):
        pack([])
    with pytest.raises(ValueError):
        pack_single("/", b"x")


def test_unpack_single_round_trip_preserves_bytes():
    payload = bytes(range(256)) * 4
    assert unpack_single(pack_single("/data.bin", payload)) == payload


def test_unpack_single_accepts_plain_tar_and_skips_directories():
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w") as tar:
        folder = tarfile.TarInfo("out")
        folder.type = tarfile.DIRTYPE
        tar.addfile(folder)
        info = tarfile.TarInfo("out/result.txt")
        info.size = 3
        tar.addfile(info, io.BytesIO(b"abc"))
    assert unpack_single(buf.getvalue()) == b"abc"


def test_unpack_single_rejects_empty_or_corrupt_input():
    with pytest.raises(NotFound):
        unpack_single(b"")
    with pytest.raises(NotFound):
        unpack_single(b"this is not a tar stream" * 40)
    with pytest.raises(NotFound):
        unpack_single(gzip.compress(b""))


def test_unpack_single_without_file_entries():
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w") as tar:
        folder = tarfile.TarInfo("empty")
        folder.type = tarfile.DIRTYPE
        tar.addfile(folder)
    with pytest.raises(NotFound):
        unpack_single(buf.getvalue())


def test_unpack_single_rejects_corrupt_gzip_body():
    good = gzip.compress(b"x" * 600)
    broken = good[:10] + b"\x00" * 40 + good[50:]
    with pytest.raises(NotFound):
        unpack_single(broken)


def test_round_trip_edge_payloads():
    for payload in (b"", b"line one\nline two\n\n", b"\x00\xff\xfe\x80"):
        assert unpack_single(pack_single("/e", payload)) == payload
