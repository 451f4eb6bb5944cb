# engine/config.py
from __future__ import annotations
from dataclasses import dataclass, field, replace
from typing import Optional

from storage.files import data_path
from storage.slot_store import RECORD_SIZE
from .record import DEFAULT_TOTAL_SLOTS, WINDOW_CAPACITY, clamp_total_slots

# 旧版单文件文档的读取上限
LEGACY_READ_LIMIT = 1 << 20


@dataclass
class ChangerConfig:
    """
    运行参数：
    - data_path: 定长记录文件路径（默认 data/flipchanger.db）
    - window_capacity: 窗口常驻槽位数 W
    - default_total_slots: 没有可用持久化头部时的槽位总数
    - record_size: 每条记录字节数
    - legacy_read_limit: import_document 的有界读取上限
    - log_path: 非空时打开 window_cache 文件日志
    """
    data_path: str = field(default_factory=data_path)
    window_capacity: int = WINDOW_CAPACITY
    default_total_slots: int = DEFAULT_TOTAL_SLOTS
    record_size: int = RECORD_SIZE
    legacy_read_limit: int = LEGACY_READ_LIMIT
    log_path: Optional[str] = None

    def validated(self) -> "ChangerConfig":
        return replace(
            self,
            window_capacity=max(1, int(self.window_capacity)),
            default_total_slots=clamp_total_slots(self.default_total_slots),
        )
