"""
Field Mapper - đọc/ghi giá trị trong cây JSON bằng path expression.

Grammar::

    path    := segment ("." segment)*
    segment := key ("[" digits "]")*

Ví dụ ``choices[0].message.content`` hoặc ``data.choices[0].content``.
Khác biệt giữa các vendor được mô tả hoàn toàn bằng dữ liệu (mapping entry),
không có nhánh code riêng cho từng vendor.
"""

import re
from functools import lru_cache
from typing import Any, Protocol

from .transforms import TransformError, UnknownTransformError, resolve_transform

__all__ = [
    "PathSyntaxError",
    "PathNotFoundError",
    "PathConflictError",
    "TransformError",
    "UnknownTransformError",
    "parse_path",
    "format_path",
    "extract",
    "inject",
    "apply_transform",
    "read_mapped",
    "write_mapped",
    "validate_entry",
]

PathSegment = str | int

_SEGMENT_RE = re.compile(r"^(?P<key>[^.\[\]\s]+)(?P<indexes>(?:\[\d+\])*)$")
_INDEX_RE = re.compile(r"\[(\d+)\]")


class MappingEntryLike(Protocol):
    path: str
    transform: str | None


class PathSyntaxError(ValueError):
    def __init__(self, expr: str, reason: str):
        self.expr = expr
        super().__init__(f"Invalid path expression {expr!r}: {reason}")


class PathNotFoundError(LookupError):
    """Path không tồn tại trong cây (khác với giá trị null hợp lệ).

    ``prefix`` là đoạn path đã đi được trước khi thất bại.
    """

    def __init__(self, expr: str, prefix: str):
        self.expr = expr
        self.prefix = prefix
        super().__init__(f"Path not found: {expr} (missing at '{prefix}')")


class PathConflictError(ValueError):
    def __init__(self, expr: str, prefix: str, found: str):
        self.expr = expr
        self.prefix = prefix
        super().__init__(
            f"Cannot write {expr}: '{prefix}' holds {found}, not a container"
        )


@lru_cache(maxsize=512)
def parse_path(expr: str) -> tuple[PathSegment, ...]:
    if not isinstance(expr, str) or not expr.strip():
        raise PathSyntaxError(str(expr), "empty expression")

    segments: list[PathSegment] = []
    for part in expr.strip().split("."):
        match = _SEGMENT_RE.match(part)
        if match is None:
            raise PathSyntaxError(expr, f"malformed segment {part!r}")
        segments.append(match.group("key"))
        segments.extend(int(index) for index in _INDEX_RE.findall(match.group("indexes")))
    return tuple(segments)


def format_path(segments: tuple[PathSegment, ...] | list[PathSegment]) -> str:
    out = ""
    for segment in segments:
        if isinstance(segment, int):
            out += f"[{segment}]"
        else:
            out += f".{segment}" if out else segment
    return out


def extract(tree: Any, expr: str) -> Any:
    """Lấy giá trị tại ``expr``, raise PathNotFoundError nếu path không tồn tại."""
    segments = parse_path(expr)
    current = tree
    for position, segment in enumerate(segments):
        if isinstance(segment, int):
            if not isinstance(current, list) or segment >= len(current):
                raise PathNotFoundError(expr, format_path(segments[: position + 1]))
        elif not isinstance(current, dict) or segment not in current:
            raise PathNotFoundError(expr, format_path(segments[: position + 1]))
        current = current[segment]
    return current


def _new_container(next_segment: PathSegment) -> dict | list:
    return [] if isinstance(next_segment, int) else {}


def _describe(value: Any) -> str:
    return "a list" if isinstance(value, list) else type(value).__name__


def inject(tree: dict, expr: str, value: Any) -> dict:
    """Ghi ``value`` vào ``expr`` (mutate và trả về chính ``tree``).

    Tự tạo dict/list trung gian; list được pad bằng None tới index cần ghi.
    """
    segments = parse_path(expr)
    if not isinstance(tree, dict):
        raise PathConflictError(expr, "", _describe(tree))

    current: Any = tree
    for position, segment in enumerate(segments):
        is_last = position == len(segments) - 1
        following = None if is_last else segments[position + 1]

        if isinstance(segment, int):
            if not isinstance(current, list):
                raise PathConflictError(
                    expr, format_path(segments[:position]), _describe(current)
                )
            while len(current) <= segment:
                current.append(None)
        elif not isinstance(current, dict):
            raise PathConflictError(
                expr, format_path(segments[:position]), _describe(current)
            )

        if is_last:
            current[segment] = value
            break

        child = current[segment] if isinstance(segment, int) else current.get(segment)
        if child is None:
            child = _new_container(following)
            current[segment] = child
        current = child

    return tree


def apply_transform(value: Any, name: str | None) -> Any:
    if not name:
        return value
    func, argument = resolve_transform(name)
    return func(value, argument)


def read_mapped(tree: Any, entry: MappingEntryLike) -> Any:
    """extract + transform. Transform ``default`` cũng áp dụng khi thiếu path."""
    try:
        raw = extract(tree, entry.path)
    except PathNotFoundError:
        if entry.transform and entry.transform.split(":", 1)[0].strip() == "default":
            return apply_transform(None, entry.transform)
        raise
    return apply_transform(raw, entry.transform)


def write_mapped(tree: dict, entry: MappingEntryLike, value: Any) -> dict:
    return inject(tree, entry.path, apply_transform(value, entry.transform))


def validate_entry(entry: MappingEntryLike) -> None:
    """Kiểm tra path và transform của một mapping entry khi cấu hình."""
    parse_path(entry.path)
    if entry.transform:
        resolve_transform(entry.transform)
