"""
Preset Loader - đọc vendor presets từ presets.yml.

Preset chỉ là template: registry chỉ dùng khi client chọn ``preset`` lúc tạo
provider, không bao giờ tự động điền mapping còn thiếu.
"""

from functools import lru_cache
from pathlib import Path

import yaml

from ...core.logger import get_logger
from ...schemas.provider import ProviderPreset

logger = get_logger(__name__)

PRESETS_PATH = Path(__file__).with_name("presets.yml")


def _read_yaml(path: Path) -> dict:
    """Đọc YAML và trả về dict rỗng nếu file trống."""
    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


@lru_cache(maxsize=1)
def load_presets() -> dict[str, ProviderPreset]:
    raw = _read_yaml(PRESETS_PATH)
    presets = {
        key.lower(): ProviderPreset.model_validate(value) for key, value in raw.items()
    }
    logger.debug(f"Loaded {len(presets)} provider presets: {sorted(presets)}")
    return presets


def get_preset(name: str) -> ProviderPreset | None:
    return load_presets().get(name.strip().lower())


def list_presets() -> dict[str, ProviderPreset]:
    return dict(load_presets())
