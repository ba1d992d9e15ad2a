"""
genesis/archive_exporter.py
-----------------------------------------------------------------------------
Serialise a project tree into a downloadable zip archive.

The archive is built entirely in memory and returned as ``bytes``; naming
and delivering the download is the caller's concern (see
``archive_filename`` and the ``/api/blueprint/export`` route).

Entry semantics
---------------
- A folder becomes a directory entry ``path/`` and its children are written
  beneath it.  A folder without ``children`` still gets its (empty)
  directory entry.
- A file becomes an entry holding its UTF-8 content.  A file without
  ``content`` becomes an empty entry; that is never an error.
- A name containing ``/`` is a nested path: the missing parent directory
  entries are created, exactly as if the folders had been listed.
- Sibling collisions are not resolved: a repeated file path keeps its first
  position in the archive but takes the *last* content written; a repeated
  folder path is merged (the directory entry is written once and both
  folders' children land inside it).
- Empty, ``.`` and ``..`` path segments are dropped so every entry stays
  inside the extraction root.

Entries are written in depth-first pre-order, the same order the tree is
displayed in.

Compression
-----------
The compression method is resolved lazily, once per process, by
``compression_method()``.  Any failure raised by the compression layer is
re-raised as ``ExportFailure`` with the original exception chained.
"""

from __future__ import annotations

import functools
import io
import logging
import re
import zipfile
from collections.abc import Iterable

from genesis.errors import ExportFailure
from genesis.schema import TreeNode

logger = logging.getLogger(__name__)

# Suffix appended to every download filename.
ARCHIVE_SUFFIX = "-starter.zip"

_UNSAFE_SEGMENTS = frozenset({"", ".", ".."})

# Characters collapsed to a single "-" in download filenames: whitespace
# runs plus anything that would break a Content-Disposition header or a path.
_FILENAME_SEPARATORS = re.compile(r"[\s/\\\"]+")


# -----------------------------------------------------------------------------
# Compression handle
# -----------------------------------------------------------------------------


@functools.cache
def compression_method() -> int:
    """
    Return the zip compression method, checked on first use.

    DEFLATE needs the ``zlib`` extension module, which ``zipfile`` leaves
    as ``None`` when the interpreter was built without it.  A successful
    check is cached for the lifetime of the process.

    Raises
    ------
    ExportFailure : If ``zlib`` is unavailable.
    """
    if zipfile.zlib is None:
        raise ExportFailure("Compression failed: zlib is not available.")
    logger.debug("Zip compression initialised (DEFLATE).")
    return zipfile.ZIP_DEFLATED


# -----------------------------------------------------------------------------
# Tree → entry plan
# -----------------------------------------------------------------------------


def _segments(name: str) -> list[str]:
    """Split a node name into safe path segments."""
    raw = name.replace("\\", "/").split("/")
    kept = [part for part in raw if part not in _UNSAFE_SEGMENTS]
    if ".." in raw:
        logger.warning("Dropped parent reference from archive entry name %r", name)
    return kept


def _ensure_dirs(segments: list[str], entries: dict[str, bytes | None]) -> None:
    """Add a directory entry for every prefix of ``segments``."""
    for depth in range(1, len(segments) + 1):
        dir_path = "/".join(segments[:depth]) + "/"
        entries.setdefault(dir_path, None)


def plan_entries(nodes: Iterable[TreeNode]) -> dict[str, bytes | None]:
    """
    Flatten a tree into an ordered ``{entry name: payload}`` mapping.

    Directory entries end with ``/`` and map to ``None``; file entries map
    to their encoded content.  Insertion order is archive order.
    """
    entries: dict[str, bytes | None] = {}
    # (node, parent segments); iterative pre-order.
    stack: list[tuple[TreeNode, list[str]]] = [(node, []) for node in reversed(list(nodes))]

    while stack:
        node, parent = stack.pop()
        segments = parent + _segments(node.name)

        if node.is_folder:
            _ensure_dirs(segments, entries)
            for child in reversed(node.children or ()):
                stack.append((child, segments))
            continue

        if len(segments) == len(parent):
            logger.warning("Skipped file with no usable name: %r", node.name)
            continue
        _ensure_dirs(segments[:-1], entries)
        entries["/".join(segments)] = (node.content or "").encode("utf-8")

    return entries


# -----------------------------------------------------------------------------
# Public API
# -----------------------------------------------------------------------------


def export_archive(nodes: Iterable[TreeNode]) -> bytes:
    """
    Build a zip archive from the given root nodes.

    Parameters
    ----------
    nodes : Root nodes of the project tree, in display order.

    Returns
    -------
    bytes : Raw zip file bytes (a valid, empty archive for an empty tree).

    Raises
    ------
    ExportFailure : If the compression layer fails.
    """
    entries = plan_entries(nodes)
    buffer = io.BytesIO()

    try:
        with zipfile.ZipFile(buffer, mode="w", compression=compression_method()) as zf:
            for name, payload in entries.items():
                if payload is None:
                    zf.mkdir(name)
                else:
                    zf.writestr(name, payload)
    except ExportFailure:
        raise
    except Exception as exc:
        # Anything the zip/zlib layer raises surfaces as a single error type.
        raise ExportFailure(f"Compression failed: {exc}") from exc

    logger.info("Exported archive with %d entries (%d bytes).", len(entries), buffer.tell())
    return buffer.getvalue()


export = export_archive


def archive_filename(project_name: str) -> str:
    """
    Derive the download filename from a project name.

    Lowercases the name and collapses whitespace runs to a single ``-``:
    ``"My Cool App"`` → ``"my-cool-app-starter.zip"``.  A blank name falls
    back to ``"project-starter.zip"``.
    """
    slug = _FILENAME_SEPARATORS.sub("-", project_name.strip()).lower()
    return f"{slug or 'project'}{ARCHIVE_SUFFIX}"
