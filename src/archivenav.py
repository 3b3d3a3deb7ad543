# -*- coding: utf-8 -*-
"""
archivenav
==========

Read-only, sandboxed navigation of a ZIP or TAR archive.

- Materializer: extracts the archive under a private extraction root
  (``buffer`` in the working directory) and opens a Session on it.
- Navigator: ls(), cd(), cd_up(), pwd(), prompt_pwd(), cat(), entries(),
  all resolved against an explicit, immutable Cursor.
- Session: context manager binding the extraction root, the current Cursor
  and the archive format; closing it removes the extraction root.

No path handed to the navigator can resolve outside
``<workdir>/buffer/<archive name>``.
"""

from __future__ import annotations
import os, io, enum, shutil, stat, logging, posixpath
import tarfile
import zipfile
from dataclasses import dataclass
from typing import BinaryIO, Iterable, List, Optional, Tuple

logger = logging.getLogger("archivenav.core")

EXTRACTION_ROOT_NAME = "buffer"
COPY_BUFFER_SIZE = 64 * 1024

# ----------------- errors -----------------

class ArchiveNavError(Exception):
    """Base class for every error raised by archivenav."""


class UnsupportedFormat(ArchiveNavError):
    """The archive kind is neither ZIP nor TAR."""


class ExtractionFailed(ArchiveNavError):
    """The archive is corrupt, unsafe or could not be written to disk."""


class InvalidArgument(ArchiveNavError, ValueError):
    """Malformed command argument, or one that would leave the sandbox."""


class NotFound(ArchiveNavError, FileNotFoundError):
    pass


class NotADirectory(ArchiveNavError, NotADirectoryError):
    pass


class IsADirectory(ArchiveNavError, IsADirectoryError):
    pass


class IOFailure(ArchiveNavError, OSError):
    """Any other storage-layer fault."""


def _storage_error(exc: OSError, shown: str) -> ArchiveNavError:
    """Map an OSError raised by the storage layer onto the error taxonomy."""
    if isinstance(exc, FileNotFoundError):
        return NotFound(f"{shown}: no such file or directory")
    if isinstance(exc, NotADirectoryError):
        return NotADirectory(f"{shown}: not a directory")
    if isinstance(exc, IsADirectoryError):
        return IsADirectory(f"{shown}: is a directory")
    return IOFailure(f"{shown}: {exc.strerror or exc}")

# ----------------- formats -----------------

class ArchiveFormat(enum.Enum):
    ZIP = "zip"
    TAR = "tar"

    @classmethod
    def from_path(cls, path: str) -> "ArchiveFormat":
        """Detect the format from the file extension (.zip, .tar, .tar.gz, .tgz)."""
        name = os.path.basename(os.fspath(path)).lower()
        if name.endswith(".zip"):
            return cls.ZIP
        if name.endswith((".tar", ".tar.gz", ".tgz")):
            return cls.TAR
        raise UnsupportedFormat(f"file extension must be .tar or .zip: {path}")

    def top_level_name(self, path: str) -> str:
        """Archive base name with the format's extension(s) stripped."""
        name = os.path.basename(os.fspath(path))
        if self is ArchiveFormat.ZIP:
            return _strip_suffix(name, ".zip")
        if name.lower().endswith(".tgz"):
            return name[:-4]
        return _strip_suffix(_strip_suffix(name, ".gz"), ".tar")


def _strip_suffix(name: str, suffix: str) -> str:
    if name.lower().endswith(suffix) and len(name) > len(suffix):
        return name[: -len(suffix)]
    return name

# ----------------- paths -----------------

def _is_safe_member(name: str) -> bool:
    """Reject absolute paths, Windows drive letters, and parent traversal."""
    if name.startswith(("/", "\\")):
        return False
    if len(name) >= 2 and name[1] == ":" and name[0].isalpha():
        return False
    norm = posixpath.normpath(name.replace("\\", "/"))
    if norm.startswith("../") or norm == "..":
        return False
    return True


def _is_safe_link(member: tarfile.TarInfo) -> bool:
    """Symlinks resolve next to the member, hardlinks from the archive root; both must stay inside."""
    if member.issym():
        target = posixpath.join(posixpath.dirname(member.name), member.linkname)
    elif member.islnk():
        target = member.linkname
    else:
        return True
    return _is_safe_member(target)


def is_separator_only(path: str) -> bool:
    """True for a non-empty argument made only of path separators ("/", "//")."""
    return bool(path) and all(ch in ("/", os.sep) for ch in path)


def split_relative(path: Optional[str]) -> List[str]:
    """
    Split a user argument into path segments relative to the cursor.

    Absolute paths, drive letters, NUL bytes and ``..`` segments raise
    InvalidArgument. Empty and ``.`` segments are dropped.
    """
    if not path:
        return []
    if "\x00" in path:
        raise InvalidArgument("path contains a NUL byte")
    if path.startswith(("/", os.sep)) or os.path.isabs(path):
        raise InvalidArgument(f"absolute paths are not allowed: {path}")
    if os.name == "nt" and len(path) >= 2 and path[1] == ":" and path[0].isalpha():
        raise InvalidArgument(f"absolute paths are not allowed: {path}")

    segments: List[str] = []
    for part in path.replace(os.sep, "/").split("/"):
        if part in ("", "."):
            continue
        if part == "..":
            raise InvalidArgument(f"'..' is not allowed inside a path: {path}")
        segments.append(part)
    return segments

# ----------------- values -----------------

@dataclass(frozen=True)
class Cursor:
    """Current directory as path components; the first two never change."""

    parts: Tuple[str, ...]

    def __post_init__(self):
        if len(self.parts) < 2:
            raise ValueError("cursor needs the extraction root and the archive folder")

    @classmethod
    def initial(cls, top_level: str, root_name: str = EXTRACTION_ROOT_NAME) -> "Cursor":
        return cls((root_name, top_level))

    @property
    def depth(self) -> int:
        """Number of components below the archive folder."""
        return len(self.parts) - 2

    def up(self) -> "Cursor":
        if len(self.parts) <= 2:
            return self
        return Cursor(self.parts[:-1])

    def into(self, segments: Iterable[str]) -> "Cursor":
        return Cursor(self.parts + tuple(segments))

    def reset(self) -> "Cursor":
        return Cursor(self.parts[:2])


@dataclass(frozen=True)
class Entry:
    name: str
    size: int
    is_dir: bool

# ----------------- navigator -----------------

class Navigator:
    """Read-only operations over an extracted archive, relative to a Cursor."""

    def __init__(self, root: str, fmt: ArchiveFormat):
        # directory that contains the extraction root sentinel
        self.root = os.fspath(root)
        self.format = fmt

    def _sandbox(self, cursor: Cursor) -> str:
        return os.path.join(self.root, *cursor.parts[:2])

    def _resolve(self, cursor: Cursor, path: Optional[str]) -> Tuple[str, List[str]]:
        """Return (absolute target, argument segments) after sandbox checks."""
        segments = split_relative(path)
        target = os.path.join(self.root, *cursor.parts, *segments)

        sandbox = os.path.realpath(self._sandbox(cursor))
        real = os.path.realpath(target)
        if real != sandbox and os.path.commonpath([sandbox, real]) != sandbox:
            logger.warning("rejected path outside the sandbox: %r -> %s", path, real)
            raise InvalidArgument(f"path leaves the archive: {path}")
        return target, segments

    def _stat(self, target: str, shown: str) -> os.stat_result:
        try:
            return os.stat(target)
        except OSError as e:
            raise _storage_error(e, shown) from e

    def _shown(self, cursor: Cursor, segments: List[str]) -> str:
        """Display form of a resolved path, relative to the archive folder."""
        rel = "/".join(list(cursor.parts[2:]) + segments)
        return rel or "."

    # ----- listing -----

    def entries(self, cursor: Cursor, path: Optional[str] = None) -> List[Entry]:
        """Entries directly under cursor/path, sorted by name."""
        target, segments = self._resolve(cursor, path)
        shown = self._shown(cursor, segments)
        st = self._stat(target, shown)
        if not stat.S_ISDIR(st.st_mode):
            raise NotADirectory(f"{shown} is not a directory; ls works only with directories")

        out: List[Entry] = []
        try:
            with os.scandir(target) as it:
                for de in it:
                    is_dir = de.is_dir()
                    try:
                        size = de.stat().st_size
                    except OSError:
                        # dangling link
                        size = 0
                    out.append(Entry(de.name, size, is_dir))
        except OSError as e:
            raise _storage_error(e, shown) from e
        return sorted(out, key=lambda x: x.name)

    def ls(self, cursor: Cursor, path: Optional[str] = None) -> List[str]:
        return [e.name for e in self.entries(cursor, path)]

    # ----- moving -----

    def cd(self, cursor: Cursor, path: str) -> Cursor:
        """Return the cursor after entering path. A separator-only path resets to the top."""
        if is_separator_only(path):
            return cursor.reset()

        target, segments = self._resolve(cursor, path)
        if not segments:
            return cursor
        shown = self._shown(cursor, segments)
        st = self._stat(target, shown)
        if not stat.S_ISDIR(st.st_mode):
            raise NotADirectory(f"{segments[-1]} is not a directory; cd works only with directories")

        logger.debug("cd %s", shown)
        return cursor.into(segments)

    def cd_up(self, cursor: Cursor) -> Cursor:
        return cursor.up()

    # ----- where am I -----

    def pwd(self, cursor: Cursor) -> str:
        return "." + os.sep + os.path.join(*cursor.parts[1:])

    def prompt_pwd(self, cursor: Cursor) -> str:
        if cursor.depth == 0:
            return "~"
        return "~" + os.sep + os.path.join(*cursor.parts[2:])

    # ----- reading -----

    def cat(self, cursor: Cursor, path: str, sink: BinaryIO) -> int:
        """Stream the file at cursor/path to sink. Return the number of bytes copied."""
        target, segments = self._resolve(cursor, path)
        if not segments:
            raise IsADirectory(f"{path or '.'} is a directory; cat works only with files")
        shown = self._shown(cursor, segments)
        st = self._stat(target, shown)
        if stat.S_ISDIR(st.st_mode):
            raise IsADirectory(f"{path} is a directory; cat works only with files")

        copied = 0
        try:
            with open(target, "rb") as f:
                while True:
                    chunk = f.read(COPY_BUFFER_SIZE)
                    if not chunk:
                        break
                    sink.write(chunk)
                    copied += len(chunk)
        except OSError as e:
            raise _storage_error(e, shown) from e
        return copied

# ----------------- session -----------------

class Session:
    """One extraction root, one cursor, one archive format."""

    def __init__(self, navigator: Navigator, cursor: Cursor, archive_path: str):
        self.navigator = navigator
        self.cursor = cursor
        self.archive_path = archive_path
        self._closed = False

    @property
    def format(self) -> ArchiveFormat:
        return self.navigator.format

    @property
    def extraction_root(self) -> str:
        return os.path.join(self.navigator.root, self.cursor.parts[0])

    @property
    def closed(self) -> bool:
        return self._closed

    def ls(self, path: Optional[str] = None) -> List[str]:
        return self.navigator.ls(self.cursor, path)

    def entries(self, path: Optional[str] = None) -> List[Entry]:
        return self.navigator.entries(self.cursor, path)

    def cd(self, path: str) -> str:
        """Change directory; returns the new pwd()."""
        self.cursor = self.navigator.cd(self.cursor, path)
        return self.pwd()

    def cd_up(self) -> str:
        self.cursor = self.navigator.cd_up(self.cursor)
        return self.pwd()

    def pwd(self) -> str:
        return self.navigator.pwd(self.cursor)

    def prompt_pwd(self) -> str:
        return self.navigator.prompt_pwd(self.cursor)

    def cat(self, path: str, sink: BinaryIO) -> int:
        return self.navigator.cat(self.cursor, path, sink)

    # ----- lifecycle -----

    def close(self) -> None:
        """Remove the extraction root. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        root = self.extraction_root
        if not os.path.isdir(root):
            return
        try:
            shutil.rmtree(root)
        except OSError as e:
            raise IOFailure(f"could not remove {root}: {e}") from e
        logger.info("removed extraction root %s", root)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

# ----------------- materializer -----------------

class Materializer:
    """Extracts an archive into ``<workdir>/buffer`` and opens a Session on it."""

    def __init__(self, workdir: str = ".", root_name: str = EXTRACTION_ROOT_NAME):
        self.workdir = os.fspath(workdir)
        self.root_name = root_name

    @property
    def extraction_root(self) -> str:
        return os.path.join(self.workdir, self.root_name)

    def materialize(self, archive_path: str, fmt: ArchiveFormat) -> Session:
        archive_path = os.fspath(archive_path)
        if not isinstance(fmt, ArchiveFormat):
            raise UnsupportedFormat(f"unsupported archive format: {fmt!r}")

        dest = self.extraction_root
        if os.path.lexists(dest):
            raise ExtractionFailed(f"extraction root already exists: {dest}")

        with open(archive_path, "rb") as f:
            buffer = io.BytesIO(f.read())
        logger.debug("read %d bytes from %s", buffer.getbuffer().nbytes, archive_path)

        # only a root this call created is ever removed
        try:
            os.makedirs(dest)
        except OSError as e:
            raise ExtractionFailed(f"cannot create extraction root {dest}: {e}") from e

        try:
            if fmt is ArchiveFormat.ZIP:
                count = self._extract_zip(buffer, dest)
            else:
                count = self._extract_tar(buffer, dest)
        except (zipfile.BadZipFile, zipfile.LargeZipFile, tarfile.TarError, OSError, ValueError) as e:
            shutil.rmtree(dest, ignore_errors=True)
            raise ExtractionFailed(f"{archive_path}: {e}") from e
        except BaseException:
            shutil.rmtree(dest, ignore_errors=True)
            raise

        top = fmt.top_level_name(archive_path)
        if not os.path.isdir(os.path.join(dest, top)):
            shutil.rmtree(dest, ignore_errors=True)
            raise ExtractionFailed(f"{archive_path}: archive has no top-level folder '{top}'")

        logger.info("extracted %d members of %s (%s) into %s", count, archive_path, fmt.value, dest)
        navigator = Navigator(self.workdir, fmt)
        return Session(navigator, Cursor.initial(top, self.root_name), archive_path)

    def _extract_zip(self, buffer: BinaryIO, dest: str) -> int:
        with zipfile.ZipFile(buffer, "r") as z:
            names = z.namelist()
            for name in names:
                if not _is_safe_member(name):
                    raise ExtractionFailed(f"unsafe archive member: {name}")
            z.extractall(dest)
        return len(names)

    def _extract_tar(self, buffer: BinaryIO, dest: str) -> int:
        with tarfile.open(fileobj=buffer, mode="r:*") as t:
            members = t.getmembers()
            for m in members:
                if not _is_safe_member(m.name):
                    raise ExtractionFailed(f"unsafe archive member: {m.name}")
                if not _is_safe_link(m):
                    raise ExtractionFailed(f"unsafe link member: {m.name} -> {m.linkname}")
            if hasattr(tarfile, "data_filter"):
                t.extractall(dest, filter="data")
            else:
                t.extractall(dest)
        return len(members)


def open_session(
    archive_path: str,
    fmt: Optional[ArchiveFormat] = None,
    workdir: str = ".",
) -> Session:
    """Detect the format (unless given), then extract the archive and open a Session."""
    archive_path = os.fspath(archive_path)
    if not os.path.isfile(archive_path):
        raise FileNotFoundError(archive_path)
    if fmt is None:
        fmt = ArchiveFormat.from_path(archive_path)
    return Materializer(workdir).materialize(archive_path, fmt)
