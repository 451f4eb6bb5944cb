# codec/codec.py
# -*- coding: utf-8 -*-
"""
槽位记录的文本编解码（JSON 子集）。

文档格式（整库导出 / 旧版单文件）：
  {"version":1,"total_slots":N,"slots":[<entry>,<entry>,...]}
单条记录 <entry>：
  {"slot":n,"occupied":true,"artist":"..","album":"..","year":1999,"genre":"..",
   "track_count":2,"tracks":[{"number":1,"title":"..","duration":"3:45"},...],"notes":".."}
  occupied=false 时只写 slot 与 occupied。

转义规则只有一条：字面量 " 与 \\ 前加 \\，其余字节原样输出。

解码是“尽力而为、绝不中止”的：
  - 按键名查找字段，与顺序无关；重复键以第一次出现的为准
  - 缺失的键 -> 记录模型默认值
  - slots 数组中不以 { 开头的元素视为损坏条目，跳过并继续扫描
  - 输入耗尽 / 遇到数组结束符 / 达到 capacity 时停止接收新条目
"""
from __future__ import annotations

import logging
import re
from typing import Any, Dict, Iterator, List, Optional, Tuple

from engine.errors import ParseError
from engine.record import (
    DEFAULT_TOTAL_SLOTS, MAX_TRACKS, WINDOW_CAPACITY,
    Slot, Track, clamp_total_slots, default_slot, normalize_slot,
)
from .lexer import Lexer, Token, TokenType

FORMAT_VERSION = 1
DOCUMENT_SUFFIX = b"]}\n"

# 嵌套超过该深度的容器直接跳过，不再建树
_MAX_DEPTH = 8
_INT = re.compile(r"-?\d+")

_ENTRY = "entry"
_HEADER = "header"

log = logging.getLogger("codec")


# ---------------------------- 编码 ----------------------------

def escape(text: str) -> str:
    return text.replace("\\", "\\\\").replace('"', '\\"')


def _q(value: Any) -> str:
    return '"' + escape("" if value is None else str(value)) + '"'


def _b(value: bool) -> str:
    return "true" if value else "false"


def encode_header(total_slots: int) -> bytes:
    return ('{"version":%d,"total_slots":%d}' % (FORMAT_VERSION, int(total_slots))).encode("utf-8")


def encode_entry(slot: Slot) -> bytes:
    parts = ['{"slot":%d' % int(slot.slot_number), '"occupied":' + _b(slot.occupied)]
    if slot.occupied:
        cd = slot.cd
        tracks = ",".join(
            '{"number":%d,"title":%s,"duration":%s}' % (int(t.number), _q(t.title), _q(t.duration))
            for t in cd.tracks
        )
        parts += [
            '"artist":' + _q(cd.artist),
            '"album":' + _q(cd.album),
            '"year":%d' % int(cd.year),
            '"genre":' + _q(cd.genre),
            '"track_count":%d' % cd.track_count,
            '"tracks":[' + tracks + "]",
            '"notes":' + _q(cd.notes),
        ]
    return (",".join(parts) + "}").encode("utf-8")


def document_prefix(total_slots: int) -> bytes:
    return ('{"version":%d,"total_slots":%d,"slots":[' % (FORMAT_VERSION, int(total_slots))).encode("utf-8")


def encode(total_slots: int, slots: List[Slot]) -> bytes:
    """把 (total_slots, 槽位切片) 编成一份完整文档。"""
    body = b",".join(encode_entry(s) for s in slots)
    return document_prefix(total_slots) + body + DOCUMENT_SUFFIX


# ---------------------------- 解析 ----------------------------

class _Parser:
    """
    在 token 流上做容错的递归下降：
      - value(): 对象 -> dict，数组 -> list，标量 -> 原始 Token
      - walk():  遍历顶层对象，逐条产出 slots 里的条目，最后产出头部字段
    """

    def __init__(self, stream):
        self._tokens = Lexer(stream).tokens()
        self.cur: Token = next(self._tokens)

    def _advance(self) -> Token:
        tok = self.cur
        if tok.type is not TokenType.EOF:
            self.cur = next(self._tokens)
        return tok

    def _at(self, *types: TokenType) -> bool:
        return self.cur.type in types

    def seek(self, *types: TokenType) -> bool:
        while not self._at(TokenType.EOF, *types):
            self._advance()
        return not self._at(TokenType.EOF) or TokenType.EOF in types

    def value(self, depth: int = 0):
        if self._at(TokenType.OBJECT_START, TokenType.ARRAY_START):
            if depth >= _MAX_DEPTH:
                self._skip_container()
                return None
            if self._at(TokenType.OBJECT_START):
                return self.obj(depth + 1)
            return self.array(depth + 1)
        if self._at(TokenType.OBJECT_END, TokenType.ARRAY_END, TokenType.EOF):
            # 值缺失（截断或 "key": } 这种情况）
            return None
        return self._advance()

    def obj(self, depth: int = 1) -> Dict[str, Any]:
        self._advance()  # '{'
        out: Dict[str, Any] = {}
        while True:
            if self._at(TokenType.OBJECT_END):
                self._advance()
                return out
            if self._at(TokenType.ARRAY_END, TokenType.EOF):
                return out
            if self._at(TokenType.STRING):
                key = self._advance().value
                val = self.value(depth)
                out.setdefault(key, val)  # 重复键：第一次出现的为准
            elif self._at(TokenType.OBJECT_START, TokenType.ARRAY_START):
                self.value(depth)  # 键位置上的容器：丢弃
            else:
                self._advance()

    def array(self, depth: int = 1) -> List[Any]:
        self._advance()  # '['
        out: List[Any] = []
        while True:
            if self._at(TokenType.ARRAY_END):
                self._advance()
                return out
            if self._at(TokenType.OBJECT_END, TokenType.EOF):
                return out
            out.append(self.value(depth))

    def _skip_container(self) -> None:
        level = 0
        while not self._at(TokenType.EOF):
            t = self._advance().type
            if t in (TokenType.OBJECT_START, TokenType.ARRAY_START):
                level += 1
            elif t in (TokenType.OBJECT_END, TokenType.ARRAY_END):
                level -= 1
                if level <= 0:
                    return

    # ---------- 文档级遍历 ----------
    def walk(self) -> Iterator[Tuple[str, Any]]:
        header: Dict[str, Any] = {}
        seen_slots = False
        if self.seek(TokenType.OBJECT_START):
            self._advance()
            while not self._at(TokenType.OBJECT_END, TokenType.EOF):
                if self._at(TokenType.STRING):
                    key = self._advance().value
                    if key == "slots" and not seen_slots and self._at(TokenType.ARRAY_START):
                        seen_slots = True
                        yield from self._entries()
                    elif key == "slots":
                        self.value(1)
                    else:
                        header.setdefault(key, self.value(1))
                elif self._at(TokenType.OBJECT_START, TokenType.ARRAY_START):
                    self.value(1)
                else:
                    self._advance()
        yield _HEADER, header

    def _entries(self) -> Iterator[Tuple[str, Dict[str, Any]]]:
        self._advance()  # '['
        while True:
            if self._at(TokenType.ARRAY_END):
                self._advance()
                return
            if self._at(TokenType.EOF):
                return
            try:
                yield _ENTRY, self._entry()
            except ParseError as e:
                log.debug("skip malformed entry: %s", e)
                self._skip_malformed()

    def _entry(self) -> Dict[str, Any]:
        if not self._at(TokenType.OBJECT_START):
            raise ParseError(f"entry at offset {self.cur.pos}: missing '{{'")
        return self.obj(2)

    def _skip_malformed(self) -> None:
        # 跳到下一个 { 或 slots 的 ]；嵌套数组整体跳过，免得它的 ] 被当成结束符
        while True:
            if self._at(TokenType.ARRAY_START):
                self._skip_container()
            else:
                self._advance()
            if self._at(TokenType.OBJECT_START, TokenType.ARRAY_END, TokenType.EOF):
                return


# ---------------------------- 标量转换 ----------------------------

def _parse_int(tok: Any) -> Optional[int]:
    if not isinstance(tok, Token) or tok.type not in (TokenType.NUMBER, TokenType.STRING):
        return None
    text = tok.value.strip()
    if not _INT.fullmatch(text):
        return None
    try:
        return int(text)
    except ValueError:
        # 位数超过解释器上限
        return None


def _int(tok: Any) -> int:
    v = _parse_int(tok)
    return 0 if v is None else v


def _bool(tok: Any) -> bool:
    return isinstance(tok, Token) and tok.type is TokenType.BOOL and tok.value == "true"


def _str(tok: Any) -> str:
    if isinstance(tok, Token) and tok.type is TokenType.STRING:
        return tok.value
    return ""


def _build_slot(obj: Dict[str, Any]) -> Slot:
    """条目构建器：缺键取默认，超长截断，多余曲目丢弃。"""
    slot = default_slot(_int(obj.get("slot")))
    slot.occupied = _bool(obj.get("occupied"))
    if slot.occupied:
        cd = slot.cd
        cd.artist = _str(obj.get("artist"))
        cd.album = _str(obj.get("album"))
        cd.year = _int(obj.get("year"))
        cd.genre = _str(obj.get("genre"))
        cd.notes = _str(obj.get("notes"))
        tracks = obj.get("tracks")
        if isinstance(tracks, list):
            for item in tracks:
                if len(cd.tracks) >= MAX_TRACKS:
                    break
                if not isinstance(item, dict):
                    continue
                cd.tracks.append(Track(
                    number=_int(item.get("number")),
                    title=_str(item.get("title")),
                    duration=_str(item.get("duration")),
                ))
    return normalize_slot(slot)


def _header_total(header: Dict[str, Any]) -> Optional[int]:
    if "version" in header and _int(header["version"]) != FORMAT_VERSION:
        log.debug("format version %r, expected %d", header["version"], FORMAT_VERSION)
    n = _parse_int(header.get("total_slots"))
    return None if n is None else clamp_total_slots(n)


# ---------------------------- 解码 ----------------------------

def decode(stream, capacity: int = WINDOW_CAPACITY) -> Tuple[int, List[Slot]]:
    """
    文档 -> (total_slots, 槽位列表)。
    最多接收 capacity 条；超出的条目照样扫描（以便找到其后的头部字段）但丢弃。
    """
    header: Dict[str, Any] = {}
    slots: List[Slot] = []
    dropped = 0
    for kind, item in _Parser(stream).walk():
        if kind == _HEADER:
            header = item
        elif len(slots) < capacity:
            slots.append(_build_slot(item))
        else:
            dropped += 1
    if dropped:
        log.debug("decode: capacity %d reached, %d entries dropped", capacity, dropped)
    total = _header_total(header)
    return (DEFAULT_TOTAL_SLOTS if total is None else total), slots


def iter_entries(stream) -> Iterator[Slot]:
    """逐条产出文档中所有可恢复的条目（不受窗口容量限制）。"""
    for kind, item in _Parser(stream).walk():
        if kind == _ENTRY:
            yield _build_slot(item)


def decode_header(stream) -> Optional[int]:
    """头部记录 -> 截断后的 total_slots；没有可解析的头部时返回 None。"""
    header: Dict[str, Any] = {}
    for kind, item in _Parser(stream).walk():
        if kind == _HEADER:
            header = item
    return _header_total(header)


def decode_entry(stream) -> Optional[Slot]:
    p = _Parser(stream)
    if not p.seek(TokenType.OBJECT_START):
        return None
    return _build_slot(p.obj(1))
