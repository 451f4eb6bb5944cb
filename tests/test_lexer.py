# -*- coding: utf-8 -*-
"""词法分析：token 类型、转义、容错"""
from codec.lexer import Lexer, TokenType as T


def _types(src):
    return [t.type for t in Lexer(src).tokens()]


def test_token_types():
    assert _types('{"a":[1,-2,true,false,null]}') == [
        T.OBJECT_START, T.STRING, T.ARRAY_START, T.NUMBER, T.NUMBER,
        T.BOOL, T.BOOL, T.WORD, T.ARRAY_END, T.OBJECT_END, T.EOF,
    ]


def test_number_values():
    toks = list(Lexer("[-12, 34]").tokens())
    assert [t.value for t in toks if t.type is T.NUMBER] == ["-12", "34"]


def test_string_unescape():
    toks = list(Lexer(r'"x\"y\\z\q"').tokens())
    assert toks[0].type is T.STRING
    assert toks[0].value == 'x"y\\z\\q'


def test_unterminated_string():
    toks = list(Lexer('"abc').tokens())
    assert [(t.type, t.value) for t in toks] == [(T.STRING, "abc"), (T.EOF, "")]


def test_garbage_skipped():
    assert _types("@#{ %") == [T.OBJECT_START, T.EOF]


def test_bytes_invalid_utf8():
    toks = list(Lexer(b'"\xff"').tokens())
    assert toks[0].type is T.STRING
    assert toks[0].value == "\ufffd"
