#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
词法与Token定义

把持久化文本切成带标签的 token 流。容错规则：
  - 冒号、逗号、空白只作分隔，不产生 token
  - 不认识的字符直接跳过
  - 字符串到输入末尾仍未闭合时，返回已读到的部分
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterator, Union


class TokenType(Enum):
    STRING = "STRING"
    NUMBER = "NUMBER"
    BOOL = "BOOL"
    #true/false 以外的裸词，比如 null 或垃圾
    WORD = "WORD"
    ARRAY_START = "ARRAY_START"
    ARRAY_END = "ARRAY_END"
    OBJECT_START = "OBJECT_START"
    OBJECT_END = "OBJECT_END"
    EOF = "EOF"


#定义token数据结构
@dataclass
class Token:
    type: TokenType
    value: str
    pos: int


_STRUCT = {
    "[": TokenType.ARRAY_START,
    "]": TokenType.ARRAY_END,
    "{": TokenType.OBJECT_START,
    "}": TokenType.OBJECT_END,
}
_SEPARATORS = set(":, \t\r\n\x00")
_NUMBER = re.compile(r"-?\d+")
_WORD = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")


class Lexer:
    """词法分析器"""

    def __init__(self, src: Union[str, bytes, bytearray, memoryview]):
        if isinstance(src, (bytes, bytearray, memoryview)):
            src = bytes(src).decode("utf-8", errors="replace")
        self.src = src

    def tokens(self) -> Iterator[Token]:
        src = self.src
        n = len(src)
        pos = 0
        while pos < n:
            ch = src[pos]
            if ch in _SEPARATORS:
                pos += 1
                continue
            if ch in _STRUCT:
                yield Token(_STRUCT[ch], ch, pos)
                pos += 1
                continue
            if ch == '"':
                value, end = self._read_string(pos + 1)
                yield Token(TokenType.STRING, value, pos)
                pos = end
                continue
            m = _NUMBER.match(src, pos)
            if m:
                yield Token(TokenType.NUMBER, m.group(0), pos)
                pos = m.end()
                continue
            m = _WORD.match(src, pos)
            if m:
                word = m.group(0)
                if word in ("true", "false"):
                    yield Token(TokenType.BOOL, word, pos)
                else:
                    yield Token(TokenType.WORD, word, pos)
                pos = m.end()
                continue
            # 未识别字符：跳过
            pos += 1
        yield Token(TokenType.EOF, "", n)

    def _read_string(self, pos: int):
        """从开引号之后读到闭引号；返回 (内容, 闭引号之后的位置)。"""
        src = self.src
        n = len(src)
        out = []
        while pos < n:
            ch = src[pos]
            if ch == "\\" and pos + 1 < n:
                nxt = src[pos + 1]
                if nxt in ('"', "\\"):
                    out.append(nxt)
                else:
                    out.append(ch)
                    out.append(nxt)
                pos += 2
                continue
            if ch == '"':
                return "".join(out), pos + 1
            out.append(ch)
            pos += 1
        return "".join(out), n
