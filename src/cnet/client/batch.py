"""
Batch files of CNET operations.

A batch is a text file with one operation per line (``ADD 3 4`` or ``3 + 4``). Blank lines and lines
starting with ``#`` are ignored. The text may also be shipped as the first ``.txt`` member of a
``.zip``, ``.tar.xz`` or ``.7z`` archive.
"""
from pathlib import Path
import tarfile
import tempfile
from typing import Callable, Dict, Iterable, List
import zipfile

import py7zr


COMMENT_PREFIX = "#"


def _first_text_member(names: Iterable[str], kind: str) -> str:
    for name in names:
        if name.endswith(".txt"):
            return name
    raise ValueError(f"📄❌ No .txt file found in {kind} archive")


def _read_zip(path: Path) -> bytes:
    with zipfile.ZipFile(path, "r") as zf:
        return zf.read(_first_text_member(zf.namelist(), "zip"))


def _read_tar_xz(path: Path) -> bytes:
    with tarfile.open(path, "r:xz") as tf:
        members = {member.name: member for member in tf.getmembers() if member.isfile()}
        stream = tf.extractfile(members[_first_text_member(members, "tar.xz")])
        return stream.read()


def _read_7z(path: Path) -> bytes:
    # py7zr only extracts to disk
    with py7zr.SevenZipFile(path, mode="r") as archive, tempfile.TemporaryDirectory() as tmpdir:
        name = _first_text_member(archive.getnames(), "7z")
        archive.extract(path=tmpdir, targets=[name])
        return (Path(tmpdir) / name).read_bytes()


# Batch format (see batch_format) to reader returning the raw batch text
READERS: Dict[str, Callable[[Path], bytes]] = {
    ".txt": Path.read_bytes,
    ".zip": _read_zip,
    ".tar.xz": _read_tar_xz,
    ".7z": _read_7z,
}


def batch_format(path: Path) -> str:
    """Format key of a batch path: its suffix, with ``.tar.xz`` kept as one."""
    if [suffix.lower() for suffix in path.suffixes[-2:]] == [".tar", ".xz"]:
        return ".tar.xz"
    return path.suffix.lower()


def load_batch(path: Path, encoding: str = "utf-8") -> List[str]:
    """
    Read the operation lines of a batch file or archive.

    :param Path path: Batch file or archive
    :param str encoding: Text encoding of the batch

    :return: Stripped operation lines, without blanks and comments
    :rtype: List[str]
    :raises ValueError: If the format is unsupported or an archive holds no .txt file
    """
    reader = READERS.get(batch_format(path))
    if reader is None:
        raise ValueError(f"📄❌ Unsupported batch format: {path.name}")

    lines: List[str] = []
    for line in reader(path).decode(encoding).splitlines():
        line = line.strip()
        if line and not line.startswith(COMMENT_PREFIX):
            lines.append(line)
    return lines
