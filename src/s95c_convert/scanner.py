"""MKV discovery and source-to-destination path mirroring."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path, PurePath

from s95c_convert.errors import PathContainmentError

SUPPORTED_EXTENSIONS: frozenset[str] = frozenset({".mkv"})


@dataclass(frozen=True)
class MediaFile:
    """A discovered container file."""

    path: Path
    size_bytes: int


@dataclass(frozen=True)
class MirroredPath:
    """Where a source file lands under the destination root."""

    relative_path: PurePath
    destination_directory: Path
    destination_file: Path


def _normalize(path: str | os.PathLike[str]) -> Path:
    """Make a path absolute without collapsing ``..`` segments."""
    return Path(path).absolute()


def _key(path: Path) -> str:
    return os.path.normcase(str(path))


def _is_under(child: Path, parent: Path) -> bool:
    parent_key = _key(parent).rstrip("\\/")
    return _key(child).startswith(parent_key + os.sep)


def mirror_path(
    source_file: str | os.PathLike[str],
    source_root: str | os.PathLike[str],
    dest_root: str | os.PathLike[str],
) -> MirroredPath:
    """Compute the mirrored destination for a file under source_root.

    Raises:
        PathContainmentError: source_file is not strictly under source_root,
            or the relative path is empty or climbs out with ``..``.
    """
    src = _normalize(source_file)
    root = _normalize(source_root)
    dest = _normalize(dest_root)

    if _key(src) == _key(root):
        raise PathContainmentError(f"{src} is the source root itself")
    if not _is_under(src, root):
        raise PathContainmentError(f"{src} is not under source root {root}")

    prefix_len = len(str(root).rstrip("\\/")) + 1
    relative_str = str(src)[prefix_len:].lstrip("\\/")
    if not relative_str:
        raise PathContainmentError(f"Empty relative path for {src}")

    relative = PurePath(relative_str)
    if ".." in relative.parts:
        raise PathContainmentError(f"Relative path {relative} contains '..'")

    destination_directory = dest / relative.parent
    destination_file = destination_directory / relative.name
    if not _is_under(destination_file, dest):
        raise PathContainmentError(
            f"Destination {destination_file} falls outside {dest}"
        )

    return MirroredPath(
        relative_path=relative,
        destination_directory=destination_directory,
        destination_file=destination_file,
    )


def is_nested(child: str | os.PathLike[str], parent: str | os.PathLike[str]) -> bool:
    """True if child is strictly inside parent (both resolved)."""
    return _is_under(Path(child).resolve(), Path(parent).resolve())


def same_path(a: str | os.PathLike[str], b: str | os.PathLike[str]) -> bool:
    """True if both paths resolve to the same location."""
    return _key(Path(a).resolve()) == _key(Path(b).resolve())


def scan_directory(
    source_root: Path,
    recurse: bool = False,
    exclude: Path | None = None,
) -> list[MediaFile]:
    """Return the MKV files under source_root.

    Only the top level is scanned unless recurse is set. Files inside
    exclude (typically the destination root) are skipped. Results are
    sorted by path so the order is stable within a run.
    """
    pattern_iter = source_root.rglob("*") if recurse else source_root.glob("*")
    exclude_resolved = exclude.resolve() if exclude is not None else None

    files: list[MediaFile] = []
    for file_path in pattern_iter:
        if not file_path.is_file():
            continue
        if file_path.suffix.lower() not in SUPPORTED_EXTENSIONS:
            continue
        if exclude_resolved is not None and _is_under(file_path.resolve(), exclude_resolved):
            continue

        files.append(MediaFile(
            path=file_path.absolute(),
            size_bytes=file_path.stat().st_size,
        ))

    files.sort(key=lambda f: str(f.path))
    return files
