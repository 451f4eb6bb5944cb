# window_cache.py
from __future__ import annotations

import os
import time
import logging
from dataclasses import dataclass, asdict
from typing import Callable, List, Optional

from codec.codec import (
    DOCUMENT_SUFFIX, decode_entry, decode_header, document_prefix,
    encode_entry, encode_header, iter_entries,
)
from storage.files import ensure_parent_dir
from storage.slot_store import RECORD_SIZE, SlotStore
from .config import LEGACY_READ_LIMIT, ChangerConfig
from .errors import CapacityExceeded, NotResident, StoreIOError
from .record import (
    DEFAULT_TOTAL_SLOTS, WINDOW_CAPACITY, Slot,
    clamp_total_slots, default_slot, normalize_slot, slot_status,
)

log = logging.getLogger("window_cache")
_log_handler: logging.Handler | None = None

# flush 时视为“写失败”的异常；都不向外抛
_WRITE_ERRORS = (StoreIOError, CapacityExceeded, OSError)


def _discard(path: str) -> None:
    """删掉失败操作留下的临时文件。"""
    try:
        os.remove(path)
    except OSError:
        pass


# --------------------------- 统计 ---------------------------

@dataclass
class WindowStats:
    """
    实例级统计：
    - hits / misses: get_slot 命中/未命中（不在窗口内）次数
    - loads / recenters: 窗口加载次数 / 其中由 ensure_window 触发的换窗次数
    - flushes / flush_failures: 成功 / 失败的写回次数
    - records_read / records_written: 读/写的定长记录条数
    - capacity: 窗口容量 W
    - start_ts: 统计起始时间
    """
    hits: int = 0
    misses: int = 0
    loads: int = 0
    recenters: int = 0
    flushes: int = 0
    flush_failures: int = 0
    records_read: int = 0
    records_written: int = 0
    capacity: int = 0
    start_ts: float = 0.0


# --------------------------- 窗口缓存主体 ---------------------------

class WindowCache:
    """
    定长窗口缓存：整个槽位集合只有连续的 W 个常驻内存。
    - get_slot / mutate_slot / count_occupied_in_window: 纯内存操作，从不碰文件
    - ensure_window: 目标不在窗口内时换窗（脏则先写回，再读入新窗口）
    - flush: 只写回头部与当前窗口对应的记录，非常驻记录原样保留
    open() 之前窗口不可用：get_slot 返回 None，mutate_slot 抛 NotResident。
    窗口与文件句柄都由本对象独占；单线程使用。
    """

    def __init__(self,
                 path: str,
                 capacity: int = WINDOW_CAPACITY,
                 default_total_slots: int = DEFAULT_TOTAL_SLOTS,
                 record_size: int = RECORD_SIZE) -> None:
        assert capacity > 0
        self.store = SlotStore(path, record_size=record_size)
        self.capacity = capacity
        self.default_total_slots = clamp_total_slots(default_total_slots)
        self.legacy_read_limit = LEGACY_READ_LIMIT

        self._total_slots = self.default_total_slots
        self.cache_start = 0
        self.window: List[Slot] = [default_slot(i + 1) for i in range(capacity)]
        self.dirty = False
        self.loaded_from_defaults = True
        self._opened = False

        self._stats = WindowStats(capacity=capacity, start_ts=time.time())

    @classmethod
    def from_config(cls, cfg: ChangerConfig) -> "WindowCache":
        cfg = cfg.validated()
        if cfg.log_path:
            cls.enable_log(cfg.log_path)
        wc = cls(cfg.data_path,
                 capacity=cfg.window_capacity,
                 default_total_slots=cfg.default_total_slots,
                 record_size=cfg.record_size)
        wc.legacy_read_limit = cfg.legacy_read_limit
        return wc

    def __enter__(self) -> "WindowCache":
        if not self._opened:
            self.open()
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # -------------------- 生命周期 --------------------

    def open(self) -> "WindowCache":
        """
        加载：头部取自 record 0，取不到就用默认 total_slots；窗口从 0 开始。
        已打开且窗口为脏时先写回；写回失败则保留当前窗口不动。
        """
        if self.dirty and not self.flush():
            log.warning("reopen aborted: dirty window at %d not flushed", self.cache_start)
            return self
        total = self._read_header()
        self.loaded_from_defaults = total is None
        self._total_slots = self.default_total_slots if total is None else total
        if self.loaded_from_defaults:
            log.info("loaded from defaults: total_slots=%d", self._total_slots)
        self._load(0)
        return self

    def close(self) -> bool:
        """关闭前写回；返回写回结果（失败时 dirty 仍为 True）。"""
        return self.flush()

    # -------------------- 访问器（纯内存） --------------------

    def total_slots(self) -> int:
        return self._total_slots

    def get_slot(self, index: int) -> Optional[Slot]:
        """返回窗口内槽位的引用；不在窗口内返回 None（调用方先 ensure_window）。"""
        slot = self._peek(index)
        if slot is None:
            self._stats.misses += 1
        else:
            self._stats.hits += 1
        return slot

    def mutate_slot(self, index: int, updater: Callable[[Slot], object]) -> Slot:
        """
        在常驻槽位上执行 updater 并标脏：
        - 索引不在窗口内：NotResident
        - 修改后统一截断到字段上限，并恢复槽号
        """
        slot = self._peek(index)
        if slot is None:
            raise NotResident(f"slot index {index} not resident (did you forget ensure_window?)")
        try:
            updater(slot)
            normalize_slot(slot)
            slot.slot_number = index + 1
        finally:
            self.dirty = True
        return slot

    def count_occupied_in_window(self) -> int:
        return sum(1 for i, s in enumerate(self.window)
                   if self.cache_start + i < self._total_slots and s.occupied)

    def slot_status(self, index: int) -> Optional[str]:
        """列表显示用的状态文本："Invalid" / "Empty" / 专辑名；不在窗口内返回 None。"""
        if not 0 <= index < self._total_slots:
            return "Invalid"
        slot = self._peek(index)
        if slot is None:
            return None
        return slot_status(slot)

    # -------------------- 换窗 / 写回 --------------------

    def ensure_window(self, target_index: int) -> bool:
        """
        保证 target_index 常驻：
        - 已在窗口内：不动（即使不居中），无 I/O
        - 否则 cache_start = clamp(target - W//2, 0, max(0, total - W))
          脏窗口先 flush；flush 失败则保留旧窗口并返回 False
        越界的 target 先夹到 [0, total)。
        """
        if not self._opened:
            return False
        target = min(max(int(target_index), 0), self._total_slots - 1)
        if self._peek(target) is not None:
            return True
        new_start = self._start_for(target)
        if new_start == self.cache_start:
            return True
        if self.dirty and not self.flush():
            log.warning("recenter to %d aborted: dirty window at %d not flushed",
                        new_start, self.cache_start)
            return False
        log.debug("recenter %d -> %d (target=%d)", self.cache_start, new_start, target)
        self._stats.recenters += 1
        self._load(new_start)
        return True

    def flush(self) -> bool:
        """
        脏则写回：record 0 头部 + 窗口内且 < total 的各条记录（原位覆盖）。
        成功清 dirty；失败返回 False，dirty 保持，等待下一次 flush 重试。
        """
        if not self.dirty or not self._opened:
            return True
        try:
            self.store.open_write()
            try:
                self.store.seek_record(0)
                self.store.write_all(encode_header(self._total_slots))
                for i, slot in enumerate(self.window):
                    idx = self.cache_start + i
                    if idx >= self._total_slots:
                        break
                    self.store.seek_record(idx + 1)
                    self.store.write_all(encode_entry(slot))
                    self._stats.records_written += 1
            finally:
                self.store.close()
        except _WRITE_ERRORS as e:
            self._stats.flush_failures += 1
            log.warning("flush failed, window at %d stays dirty: %s", self.cache_start, e)
            return False
        self.dirty = False
        self._stats.flushes += 1
        return True

    # -------------------- 整库操作 --------------------

    def count_occupied_total(self) -> int:
        """全库已占用槽位数：窗口内按内存计，其余逐条从文件读取。"""
        count = self.count_occupied_in_window()
        try:
            if not self.store.open_read():
                return count
            try:
                for idx in range(self._total_slots):
                    if self._peek(idx) is not None:
                        continue
                    slot = self._read_record(idx + 1)
                    if slot is not None and slot.occupied:
                        count += 1
            finally:
                self.store.close()
        except StoreIOError as e:
            log.warning("count_occupied_total: store unreadable: %s", e)
        return count

    def resize(self, total_slots: int) -> bool:
        """
        修改槽位总数（夹到 [MIN_SLOTS, MAX_SLOTS]）：
        写回脏窗口 -> 截掉多余记录 -> 重写头部 -> 重新加载合法窗口。
        """
        n = clamp_total_slots(total_slots)
        if not self._opened:
            return False
        if n == self._total_slots:
            return True
        if self.dirty and not self.flush():
            return False
        try:
            self.store.open_write()
            try:
                self.store.truncate_records(n + 1)
                self.store.seek_record(0)
                self.store.write_all(encode_header(n))
            finally:
                self.store.close()
        except _WRITE_ERRORS as e:
            log.warning("resize to %d failed: %s", n, e)
            return False
        log.info("total_slots %d -> %d", self._total_slots, n)
        self._total_slots = n
        self.loaded_from_defaults = False
        self._load(min(self.cache_start, max(0, n - self.capacity)))
        return True

    def export_document(self, path: str) -> bool:
        """
        把整库导出成一份单文件文档（encode 格式）。
        逐条流式写出：窗口内用内存数据（含未写回的修改），其余从记录文件读。
        先写临时文件再 os.replace。
        """
        if not self._opened:
            return False
        tmp = path + ".tmp"
        try:
            ensure_parent_dir(path)
            with open(tmp, "wb") as out:
                out.write(document_prefix(self._total_slots))
                opened = self.store.open_read()
                try:
                    for idx in range(self._total_slots):
                        slot = self._peek(idx)
                        if slot is None and opened:
                            slot = self._read_record(idx + 1)
                        if slot is None:
                            slot = default_slot(idx + 1)
                        slot.slot_number = idx + 1
                        if idx:
                            out.write(b",")
                        out.write(encode_entry(slot))
                finally:
                    self.store.close()
                out.write(DOCUMENT_SUFFIX)
                out.flush()
                os.fsync(out.fileno())
            os.replace(tmp, path)
        except (StoreIOError, OSError) as e:
            _discard(tmp)
            log.warning("export to %s failed: %s", path, e)
            return False
        return True

    def import_document(self, path: str, max_bytes: Optional[int] = None) -> bool:
        """
        导入单文件文档（旧版 flipchanger_data.json 格式），整体替换当前记录文件：
        - 有界读取；文档超出上限视为失败
        - 槽号越界的条目跳过；同一槽号出现多次以第一次为准
        - 先写临时记录文件，成功后 os.replace，失败不影响原数据
        """
        cap = self.legacy_read_limit if max_bytes is None else max_bytes
        if self.dirty and not self.flush():
            return False
        src = SlotStore(path, record_size=cap)
        try:
            if not src.open_read():
                log.info("import: no document at %s", path)
                return False
            try:
                raw = src.read_all(cap)
            finally:
                src.close()
        except StoreIOError as e:
            log.warning("import from %s failed: %s", path, e)
            return False

        total = decode_header(raw)
        if total is None:
            total = self.default_total_slots
        tmp = SlotStore(self.store.path + ".import", record_size=self.store.record_size)
        seen = set()
        try:
            tmp.open_write_truncate()
            try:
                tmp.seek_record(0)
                tmp.write_all(encode_header(total))
                for slot in iter_entries(raw):
                    n = slot.slot_number
                    if not 1 <= n <= total or n in seen:
                        log.debug("import: skip entry for slot %d", n)
                        continue
                    seen.add(n)
                    tmp.seek_record(n)
                    tmp.write_all(encode_entry(slot))
            finally:
                tmp.close()
            os.replace(tmp.path, self.store.path)
        except _WRITE_ERRORS as e:
            _discard(tmp.path)
            log.warning("import from %s failed: %s", path, e)
            return False
        log.info("imported %d entries from %s (total_slots=%d)", len(seen), path, total)
        self._total_slots = total
        self.loaded_from_defaults = False
        self._load(min(self.cache_start, max(0, total - self.capacity)))
        return True

    # -------------------- 统计与日志 --------------------

    def stats_snapshot(self) -> dict:
        return asdict(self._stats)

    @staticmethod
    def enable_log(path: str | None = None) -> None:
        """
        开启文件日志（仅初始化一次）：
        - 默认写入 __logs__/window_cache.log
        - 记录换窗、写回失败、按默认值加载等事件
        """
        global _log_handler
        if _log_handler is not None:
            return
        if path is None:
            os.makedirs("__logs__", exist_ok=True)
            path = os.path.join("__logs__", "window_cache.log")
        handler = logging.FileHandler(path, encoding="utf-8")
        handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s"))
        log.setLevel(logging.DEBUG)
        log.addHandler(handler)
        _log_handler = handler

    @staticmethod
    def disable_log() -> None:
        global _log_handler
        if _log_handler is not None:
            log.removeHandler(_log_handler)
            _log_handler.close()
        _log_handler = None

    # -------------------- 内部方法 --------------------

    def _peek(self, index: int) -> Optional[Slot]:
        if not self._opened or not 0 <= index < self._total_slots:
            return None
        i = index - self.cache_start
        if 0 <= i < self.capacity:
            return self.window[i]
        return None

    def _start_for(self, target: int) -> int:
        start = target - self.capacity // 2
        return max(0, min(start, max(0, self._total_slots - self.capacity)))

    def _read_header(self) -> Optional[int]:
        try:
            if not self.store.open_read():
                return None
            try:
                self.store.seek_record(0)
                return decode_header(self.store.read_all())
            finally:
                self.store.close()
        except StoreIOError as e:
            log.warning("header unreadable: %s", e)
            return None

    def _read_record(self, record_id: int) -> Optional[Slot]:
        """读一条槽位记录；空记录或读失败返回 None（由调用方补默认值）。"""
        self._stats.records_read += 1
        try:
            self.store.seek_record(record_id)
            raw = self.store.read_all()
        except StoreIOError as e:
            log.debug("record %d unreadable: %s", record_id, e)
            return None
        if not raw:
            return None
        return decode_entry(raw)

    def _load(self, start: int) -> None:
        """
        读入以 start 开头的窗口；从不向外抛错：
        文件不存在、读失败、内容损坏的槽位一律用默认值代替。
        """
        window = [default_slot(start + i + 1) for i in range(self.capacity)]
        try:
            if self.store.open_read():
                try:
                    for i in range(self.capacity):
                        idx = start + i
                        if idx >= self._total_slots:
                            break
                        slot = self._read_record(idx + 1)
                        if slot is not None:
                            window[i] = slot
                finally:
                    self.store.close()
        except StoreIOError as e:
            log.warning("window load at %d fell back to defaults: %s", start, e)
        for i, slot in enumerate(window):
            slot.slot_number = start + i + 1
        self.cache_start = start
        self.window = window
        self.dirty = False
        self._stats.loads += 1
        self._opened = True
