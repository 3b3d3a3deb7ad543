# tests/conftest.py
import io
import logging
import tarfile
import zipfile
from pathlib import Path
import pytest

from archivenav import open_session


def _add_tar_file(t: tarfile.TarFile, name: str, data: bytes) -> None:
    info = tarfile.TarInfo(name)
    info.size = len(data)
    t.addfile(info, io.BytesIO(data))


@pytest.fixture
def make_sample_zip(tmp_path: Path):
    """
    Return a factory building sample.zip:

    sample/
    ├─ a.txt                 ("hello\n")
    ├─ empty/
    └─ sub/
       ├─ b.txt              ("hello sub\n")
       └─ nested/
          └─ c.bin           (bytes)
    """
    def _make() -> Path:
        zpath = tmp_path / "sample.zip"
        with zipfile.ZipFile(zpath, "w", compression=zipfile.ZIP_DEFLATED) as z:
            z.writestr("sample/a.txt", "hello\n")
            z.writestr("sample/empty/", "")
            z.writestr("sample/sub/b.txt", "hello sub\n")
            z.writestr("sample/sub/nested/c.bin", b"\x00\x01\x02\x03\xff")
        return zpath
    return _make


@pytest.fixture
def make_sample_tar(tmp_path: Path):
    """Factory for sample.tar / sample.tar.gz with the same tree as make_sample_zip (no empty/)."""
    def _make(gz: bool = False) -> Path:
        tpath = tmp_path / ("sample.tar.gz" if gz else "sample.tar")
        with tarfile.open(tpath, "w:gz" if gz else "w") as t:
            _add_tar_file(t, "sample/a.txt", b"hello\n")
            _add_tar_file(t, "sample/sub/b.txt", b"hello sub\n")
            _add_tar_file(t, "sample/sub/nested/c.bin", b"\x00\x01\x02\x03\xff")
        return tpath
    return _make


@pytest.fixture
def workdir(tmp_path: Path):
    d = tmp_path / "work"
    d.mkdir()
    return d


@pytest.fixture
def session(make_sample_zip, workdir):
    with open_session(str(make_sample_zip()), workdir=str(workdir)) as s:
        yield s


@pytest.fixture(autouse=True)
def _reset_archivenav_logger():
    yield
    logger = logging.getLogger("archivenav")
    for handler in list(logger.handlers):
        handler.close()
    logger.handlers.clear()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)
