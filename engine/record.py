"""Record model: Track / CD / Slot with per-field length limits."""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, List

from .errors import ValidationError

MIN_SLOTS = 3
MAX_SLOTS = 200
DEFAULT_TOTAL_SLOTS = 100
WINDOW_CAPACITY = 10

MAX_TRACKS = 20

# 字段名 -> 最大字符数
FIELD_LIMITS = {
    "artist": 63,
    "album": 63,
    "genre": 31,
    "notes": 255,
    "title": 63,
    "duration": 15,
}


@dataclass
class Track:
    number: int = 0
    title: str = ""
    duration: str = ""  # 形如 "3:45"


@dataclass
class CD:
    artist: str = ""
    album: str = ""
    year: int = 0  # 0 = 未设置
    genre: str = ""
    tracks: List[Track] = field(default_factory=list)
    notes: str = ""

    @property
    def track_count(self) -> int:
        return len(self.tracks)


@dataclass
class Slot:
    """
    换碟机中的一个物理槽位：
    - slot_number: 1 起编号（窗口加载时按 cache_start+i+1 重新编号）
    - occupied: 是否有碟
    - cd: 仅 occupied 时有意义
    """
    slot_number: int
    occupied: bool = False
    cd: CD = field(default_factory=CD)


def default_slot(number: int) -> Slot:
    return Slot(slot_number=number)


def clamp_total_slots(n: Any) -> int:
    try:
        n = int(n)
    except (TypeError, ValueError, OverflowError):
        return MIN_SLOTS
    if n < MIN_SLOTS:
        return MIN_SLOTS
    if n > MAX_SLOTS:
        return MAX_SLOTS
    return n


def truncate(value: Any, limit: int) -> str:
    """统一的截断函数：解码与交互编辑都走这里。0x00 是记录终止符，一并去掉。"""
    s = "" if value is None else str(value).replace("\x00", "")
    return s[:limit]


def _fit(owner: str, name: str, value: Any, strict: bool) -> str:
    limit = FIELD_LIMITS[name]
    s = "" if value is None else str(value)
    if strict and len(s) > limit:
        raise ValidationError(f"{owner}.{name}: {len(s)} chars > {limit}")
    return truncate(s, limit)


def normalize_slot(slot: Slot, strict: bool = False) -> Slot:
    """
    就地把槽位规整到字段上限：
      - 字符串截断到 FIELD_LIMITS
      - 曲目超过 MAX_TRACKS 的部分丢弃
    strict=True 时遇到越界直接抛 ValidationError，不做修改。
    """
    cd = slot.cd
    if strict and len(cd.tracks) > MAX_TRACKS:
        raise ValidationError(f"cd.tracks: {len(cd.tracks)} > {MAX_TRACKS}")
    cd.artist = _fit("cd", "artist", cd.artist, strict)
    cd.album = _fit("cd", "album", cd.album, strict)
    cd.genre = _fit("cd", "genre", cd.genre, strict)
    cd.notes = _fit("cd", "notes", cd.notes, strict)
    del cd.tracks[MAX_TRACKS:]
    for t in cd.tracks:
        t.title = _fit("track", "title", t.title, strict)
        t.duration = _fit("track", "duration", t.duration, strict)
    return slot


def slot_status(slot: Slot) -> str:
    if slot.occupied:
        return slot.cd.album
    return "Empty"
