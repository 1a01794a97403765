"""
Transform registry cho Field Mapper.

Mỗi transform là một hàm thuần nhận (value, argument) và trả về giá trị mới.
Tên transform có dạng ``name`` hoặc ``name:argument``, ví dụ ``to_int`` hay
``default:0.7``. Transform mới được đăng ký bằng ``@register_transform``.
"""

import json
from collections.abc import Callable
from typing import Any

TransformFunc = Callable[[Any, str | None], Any]

_TRANSFORMS: dict[str, TransformFunc] = {}


class UnknownTransformError(ValueError):
    """Tên transform không có trong registry."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Unknown transform: {name}")


class TransformError(ValueError):
    """Transform hợp lệ nhưng không chuyển đổi được giá trị."""

    def __init__(self, name: str, reason: str):
        self.name = name
        super().__init__(f"Transform '{name}' failed: {reason}")


def register_transform(name: str) -> Callable[[TransformFunc], TransformFunc]:
    """Decorator đăng ký transform theo tên."""

    def decorator(func: TransformFunc) -> TransformFunc:
        _TRANSFORMS[name] = func
        return func

    return decorator


def split_transform(transform: str) -> tuple[str, str | None]:
    name, sep, argument = transform.partition(":")
    return name.strip(), (argument if sep else None)


def resolve_transform(transform: str) -> tuple[TransformFunc, str | None]:
    """Tìm hàm transform cho ``transform``, raise UnknownTransformError nếu không có."""
    name, argument = split_transform(transform)
    func = _TRANSFORMS.get(name)
    if func is None:
        raise UnknownTransformError(name)
    if name == "default":
        # Tham số của default phải là JSON hợp lệ, kiểm tra ngay khi cấu hình
        _parse_default(argument)
    return func, argument


def list_transforms() -> list[str]:
    return sorted(_TRANSFORMS)


@register_transform("identity")
def _identity(value: Any, argument: str | None) -> Any:
    return value


@register_transform("to_number")
def _to_number(value: Any, argument: str | None) -> Any:
    if value is None:
        return None
    if isinstance(value, bool):
        raise TransformError("to_number", "boolean is not a number")
    if isinstance(value, (int, float)):
        return value
    try:
        number = float(str(value).strip())
    except ValueError:
        raise TransformError("to_number", f"cannot convert {value!r}") from None
    return int(number) if number.is_integer() else number


@register_transform("to_int")
def _to_int(value: Any, argument: str | None) -> Any:
    if value is None:
        return None
    if isinstance(value, bool):
        raise TransformError("to_int", "boolean is not a number")
    try:
        return int(float(value)) if isinstance(value, str) else int(value)
    except (TypeError, ValueError):
        raise TransformError("to_int", f"cannot convert {value!r}") from None


@register_transform("to_string")
def _to_string(value: Any, argument: str | None) -> Any:
    if value is None:
        return None
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False)
    return str(value)


@register_transform("to_bool")
def _to_bool(value: Any, argument: str | None) -> Any:
    if value is None or isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    text = str(value).strip().lower()
    if text in ("true", "1", "yes", "on"):
        return True
    if text in ("false", "0", "no", "off", ""):
        return False
    raise TransformError("to_bool", f"cannot convert {value!r}")


@register_transform("json_dumps")
def _json_dumps(value: Any, argument: str | None) -> Any:
    try:
        return json.dumps(value, ensure_ascii=False)
    except (TypeError, ValueError) as e:
        raise TransformError("json_dumps", str(e)) from None


@register_transform("json_loads")
def _json_loads(value: Any, argument: str | None) -> Any:
    if not isinstance(value, (str, bytes)):
        return value
    try:
        return json.loads(value)
    except ValueError as e:
        raise TransformError("json_loads", str(e)) from None


@register_transform("first")
def _first(value: Any, argument: str | None) -> Any:
    """Phần tử đầu tiên của list (None nếu list rỗng)."""
    if isinstance(value, (list, tuple)):
        return value[0] if value else None
    return value


def _parse_default(argument: str | None) -> Any:
    if argument is None:
        raise TransformError("default", "missing argument, expected default:<json>")
    try:
        return json.loads(argument)
    except ValueError:
        raise TransformError("default", f"argument {argument!r} is not JSON") from None


@register_transform("default")
def _default(value: Any, argument: str | None) -> Any:
    """Default-fill: thay None bằng giá trị JSON trong argument."""
    if value is None:
        return _parse_default(argument)
    return value
