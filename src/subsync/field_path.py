"""Dotted field paths over submission data trees (``a.b[0].c``)."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, List


_MISSING = object()


@dataclass
class FieldPathError(Exception):
    message: str
    segment: str
    path: str

    def __str__(self) -> str:  # pragma: no cover - simple formatting
        return f"{self.message} (segment={self.segment!r}, path={self.path!r})"


class FieldPathSyntaxError(FieldPathError):
    pass


class FieldPathTypeError(FieldPathError):
    pass


def _is_index(segment: str) -> bool:
    return segment.isdigit()


def parse_field_path(path: str) -> List[str]:
    """Split ``a.b[0].c`` into ``["a", "b", "0", "c"]``."""
    if not isinstance(path, str) or path == "":
        raise FieldPathSyntaxError("Field path must be a non-empty string", str(path), str(path))

    segments: List[str] = []
    current = ""
    idx = 0
    while idx < len(path):
        char = path[idx]
        if char == ".":
            if current:
                segments.append(current)
            current = ""
            idx += 1
            continue
        if char == "[":
            end = path.find("]", idx)
            if end == -1:
                raise FieldPathSyntaxError("Unclosed bracket", path[idx:], path)
            if current:
                segments.append(current)
                current = ""
            inner = path[idx + 1 : end].strip().strip("'\"")
            if inner == "":
                raise FieldPathSyntaxError("Empty bracket segment", path[idx : end + 1], path)
            segments.append(inner)
            idx = end + 1
            continue
        current += char
        idx += 1
    if current:
        segments.append(current)
    if not segments:
        raise FieldPathSyntaxError("Field path has no segments", path, path)
    return segments


def _segments_for(container: Any, path: str) -> List[str]:
    # A literal key wins over path splitting.
    if isinstance(container, dict) and path in container:
        return [path]
    return parse_field_path(path)


def _step(current: Any, segment: str) -> Any:
    if isinstance(current, dict):
        return current.get(segment, _MISSING)
    if isinstance(current, list) and _is_index(segment):
        pos = int(segment)
        if pos < len(current):
            return current[pos]
    return _MISSING


def _lookup(data: Any, path: str) -> Any:
    current = data
    for segment in _segments_for(data, path):
        current = _step(current, segment)
        if current is _MISSING:
            return _MISSING
    return current


def has_path(data: Any, path: str) -> bool:
    """True when ``path`` resolves to a stored value (``None`` counts as set)."""
    return _lookup(data, path) is not _MISSING


def get_path(data: Any, path: str, default: Any = None) -> Any:
    value = _lookup(data, path)
    return default if value is _MISSING else value


def _empty_for(next_segment: str) -> Any:
    return [] if _is_index(next_segment) else {}


def set_path(data: dict, path: str, value: Any) -> dict:
    """Write ``value`` at ``path``, creating intermediate containers as needed."""
    if not isinstance(data, dict):
        raise FieldPathTypeError("Root must be an object", "", path)

    segments = _segments_for(data, path)
    current: Any = data
    for pos, segment in enumerate(segments):
        last = pos == len(segments) - 1
        if isinstance(current, list):
            if not _is_index(segment):
                raise FieldPathTypeError("Invalid list index", segment, path)
            idx = int(segment)
            while len(current) <= idx:
                current.append(None)
            if last:
                current[idx] = value
                return data
            child = current[idx]
            if not isinstance(child, (dict, list)):
                child = _empty_for(segments[pos + 1])
                current[idx] = child
            current = child
            continue
        if isinstance(current, dict):
            if last:
                current[segment] = value
                return data
            child = current.get(segment)
            if not isinstance(child, (dict, list)):
                child = _empty_for(segments[pos + 1])
                current[segment] = child
            current = child
            continue
        raise FieldPathTypeError("Cannot traverse into non-container", segment, path)
    return data
