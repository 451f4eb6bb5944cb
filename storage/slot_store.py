# slot_store.py
from __future__ import annotations
import io
import os
from typing import Optional

from engine.errors import CapacityExceeded, StoreIOError
from .files import ensure_parent_dir

# ---------------- 记录文件布局 ----------------
# 整个文件切成固定大小的“记录”，按槽号随机访问：
#   - record 0: 头部（版本 / total_slots）
#   - record n: 第 n 号槽位（1 起）
# 每条记录 = 编码文本 | 终止符 0x00 | 零填充到 record_size。
# 从未写过的记录（越过文件末尾，或首字节为 0）读出为空，由上层回退默认值。
RECORD_SIZE = 16384
TERMINATOR = b"\x00"


class SlotStore:
    """
    单文件定长记录存储（持久化适配器）：
      - open_read / open_write / open_write_truncate 打开文件
      - seek_record 定位到某条记录
      - read_all 有界读取（必须在上限内遇到终止符或文件末尾）
      - write_all 写入一整条记录（含填充）
      - close 先 fsync 再关闭，保证已写字节落盘
    同一时刻只持有一个文件句柄，由 WindowCache 独占。
    """

    def __init__(self, path: str, record_size: int = RECORD_SIZE):
        self.path = path
        self.record_size = record_size
        self._f: Optional[io.BufferedRandom] = None
        self._writable = False

    def __enter__(self) -> "SlotStore":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # ------------------------- 打开 -------------------------

    def exists(self) -> bool:
        return os.path.exists(self.path)

    def open_read(self) -> bool:
        """只读打开；文件不存在不算错误，返回 False 表示“用默认值”。"""
        self.close()
        try:
            self._f = open(self.path, "rb")
        except FileNotFoundError:
            return False
        except OSError as e:
            raise StoreIOError(f"open {self.path} for read: {e}") from e
        self._writable = False
        return True

    def open_write(self) -> None:
        """读写打开（原位更新）；文件不存在则新建（先建目录）。"""
        if not self.exists():
            self.open_write_truncate()
            return
        self.close()
        try:
            self._f = open(self.path, "r+b")
        except OSError as e:
            raise StoreIOError(f"open {self.path} for write: {e}") from e
        self._writable = True

    def open_write_truncate(self) -> None:
        """新建或清空文件；缺失的上级目录一并创建。"""
        self.close()
        try:
            ensure_parent_dir(self.path)
            self._f = open(self.path, "w+b")
        except OSError as e:
            raise StoreIOError(f"create {self.path}: {e}") from e
        self._writable = True

    # ------------------------- 读写 -------------------------

    def seek_record(self, record_id: int) -> None:
        if record_id < 0:
            raise IndexError(f"record_id out of range: {record_id}")
        self._require_open().seek(record_id * self.record_size)

    def read_all(self, max_bytes: Optional[int] = None) -> bytes:
        """
        从当前位置有界读取：
          - 遇到终止符：返回终止符之前的字节
          - 文件比上限短：返回实际读到的字节（可能为空）
          - 读满上限仍无终止符：StoreIOError
        """
        cap = self.record_size if max_bytes is None else max_bytes
        f = self._require_open()
        try:
            data = f.read(cap)
        except OSError as e:
            raise StoreIOError(f"read {self.path}: {e}") from e
        end = data.find(TERMINATOR)
        if end >= 0:
            return data[:end]
        if len(data) >= cap:
            raise StoreIOError(f"no terminator within {cap} bytes in {self.path}")
        return data

    def write_all(self, data: bytes) -> None:
        """在当前位置写一整条记录：data + 终止符 + 零填充。"""
        if len(data) + len(TERMINATOR) > self.record_size:
            raise CapacityExceeded(f"record of {len(data)} bytes exceeds {self.record_size}")
        f = self._require_open()
        if not self._writable:
            raise StoreIOError(f"{self.path} is opened read-only")
        buf = bytearray(self.record_size)
        buf[: len(data)] = data
        try:
            f.write(buf)
        except OSError as e:
            raise StoreIOError(f"write {self.path}: {e}") from e

    def record_count(self) -> int:
        """文件中（含头部记录）已有的记录数。"""
        f = self._require_open()
        f.seek(0, os.SEEK_END)
        return f.tell() // self.record_size

    def truncate_records(self, count: int) -> None:
        """把文件截到 count 条记录（只缩不扩）。"""
        f = self._require_open()
        if not self._writable:
            raise StoreIOError(f"{self.path} is opened read-only")
        try:
            if self.record_count() > count:
                f.truncate(count * self.record_size)
        except OSError as e:
            raise StoreIOError(f"truncate {self.path}: {e}") from e

    def sync(self) -> None:
        """强制刷盘（flush + fsync）。"""
        f = self._require_open()
        try:
            f.flush()
            os.fsync(f.fileno())
        except OSError as e:
            raise StoreIOError(f"sync {self.path}: {e}") from e

    def close(self) -> None:
        """关闭前先 sync，确保落盘安全；未打开时为空操作。"""
        f = self._f
        if f is None:
            return
        try:
            if self._writable:
                self.sync()
        finally:
            self._f = None
            self._writable = False
            f.close()

    # ------------------------- 内部方法 -------------------------

    def _require_open(self) -> io.BufferedRandom:
        if self._f is None:
            raise StoreIOError(f"{self.path} is not open")
        return self._f
