"""
通用工具库
功能：输出目录、文件命名
"""
# core/utils.py
from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Union

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

_UNSAFE = re.compile(r"[^A-Za-z0-9._-]+")


# ---------------------------
# paths / file helpers
# ---------------------------
def ensure_dir(p: PathLike) -> Path:
    d = Path(p)
    d.mkdir(parents=True, exist_ok=True)
    return d


def safe_filename(name: str, default: str = "untitled") -> str:
    """
    把任意标题变成安全的文件名片段（只保留字母数字 . _ -）。
    "Lo-Fi Chill!!" -> "Lo-Fi_Chill"
    """
    cleaned = _UNSAFE.sub("_", (name or "").strip()).strip("._-")
    return cleaned[:80] or default


def timestamped_filename(prefix: str, suffix: str = ".wav", *, now: Optional[datetime] = None) -> str:
    """
    统一命名：{prefix}-{UTC 时间戳}{suffix}
    例：promptloop-20260101T120000123Z.wav
    """
    ts = (now or datetime.now(timezone.utc)).astimezone(timezone.utc)
    stamp = ts.strftime("%Y%m%dT%H%M%S") + f"{ts.microsecond // 1000:03d}Z"
    return f"{safe_filename(prefix, 'capture')}-{stamp}{suffix}"


def output_path(filename: str, output_dir: Optional[PathLike] = None) -> Path:
    """outputs/ 下的目标路径（目录不存在时自动创建）。"""
    if output_dir is None:
        from core.config import get_settings

        output_dir = get_settings().output_dir
    return ensure_dir(output_dir) / filename

