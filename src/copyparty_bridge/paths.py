"""Virtual path algebra shared by every part of the library.

A virtual path is the path as the user sees it: absolute, ``/``-separated,
with ``.`` and ``..`` resolved and empty segments collapsed. ``"/"`` is root.
"""

from __future__ import annotations

ROOT = "/"


def _segments(raw: str) -> list[str]:
    """Split a raw path into resolved segments; ``..`` never climbs past root."""
    segments: list[str] = []
    for piece in raw.replace("\\", "/").split("/"):
        segment = piece.strip()
        if not segment or segment == ".":
            continue
        if segment == "..":
            if segments:
                segments.pop()
            continue
        segments.append(segment)
    return segments


def normalize(raw: str | None) -> str:
    """Normalize a raw path into a virtual path.

    Args:
        raw: Any user or backend supplied path. ``None`` is treated as root.

    Returns:
        The normalized absolute path, ``"/"`` for root.
    """
    segments = _segments(raw or "")
    return "/" + "/".join(segments) if segments else ROOT


def normalize_relative(raw: str | None) -> str:
    """Normalize a path the same way as :func:`normalize` but keep it relative.

    Returns an empty string when nothing is left after normalization.
    """
    return "/".join(_segments(raw or ""))


def join(base: str, child: str) -> str:
    """Join ``child`` onto ``base`` and normalize the result."""
    return normalize(f"{base}/{child}")


def parent(path: str) -> str | None:
    """Return the parent of ``path``, or ``None`` for root."""
    segments = _segments(path)
    if not segments:
        return None
    return "/" + "/".join(segments[:-1]) if len(segments) > 1 else ROOT


def leaf_name(path: str) -> str | None:
    """Return the last segment of ``path``, or ``None`` for root."""
    segments = _segments(path)
    return segments[-1] if segments else None


def is_root(path: str) -> bool:
    return normalize(path) == ROOT


def ancestors(path: str) -> list[str]:
    """List every non-root ancestor of ``path``, outermost first, including itself.

    Example::

        >>> ancestors("/a/b/c")
        ['/a', '/a/b', '/a/b/c']
    """
    segments = _segments(path)
    return ["/" + "/".join(segments[: i + 1]) for i in range(len(segments))]


def is_within(path: str, directory: str) -> bool:
    """Return True if ``path`` equals ``directory`` or lies beneath it."""
    path_segments = _segments(path)
    dir_segments = _segments(directory)
    return path_segments[: len(dir_segments)] == dir_segments
