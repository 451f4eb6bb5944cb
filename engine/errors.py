# engine/errors.py
"""
错误类型：
  - StoreIOError      后备文件打开/读/写/落盘失败（含“缓冲区内找不到终止符”）
  - ParseError        单条记录结构损坏；解码器就地跳过，不会中止整体解码
  - ValidationError   字段超长/越界；默认截断，仅 strict 模式抛出
  - CapacityExceeded  记录或窗口容量不够
  - NotResident       访问不在当前窗口中的槽位（忘了先 ensure_window）
"""


class ChangerError(Exception):
    pass


class StoreIOError(ChangerError, IOError):
    pass


class ParseError(ChangerError, ValueError):
    pass


class ValidationError(ChangerError, ValueError):
    pass


class CapacityExceeded(ChangerError, MemoryError):
    pass


class NotResident(ChangerError, KeyError):
    pass
