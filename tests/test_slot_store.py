# -*- coding: utf-8 -*-
"""定长记录存储：打开、有界读取、写入、截断"""
import pytest

from engine.errors import CapacityExceeded, StoreIOError
from storage.slot_store import SlotStore


def test_missing_file_is_not_an_error(tmp_path):
    st = SlotStore(str(tmp_path / "none.db"))
    assert st.open_read() is False


def test_write_truncate_creates_dirs_and_reads_back(tmp_path):
    path = tmp_path / "a" / "b" / "c.db"
    with SlotStore(str(path), record_size=64) as st:
        st.open_write_truncate()
        st.seek_record(0)
        st.write_all(b"header")
        st.seek_record(3)
        st.write_all(b"third")
    assert path.exists()
    assert path.stat().st_size == 4 * 64

    with SlotStore(str(path), record_size=64) as st:
        assert st.open_read() is True
        st.seek_record(3)
        assert st.read_all() == b"third"
        st.seek_record(0)
        assert st.read_all() == b"header"
        st.seek_record(1)
        assert st.read_all() == b""  # 空洞
        st.seek_record(9)
        assert st.read_all() == b""  # 越过文件末尾
        assert st.record_count() == 4


def test_open_write_updates_in_place(tmp_path):
    path = str(tmp_path / "s.db")
    st = SlotStore(path, record_size=32)
    st.open_write_truncate()
    for i in range(3):
        st.seek_record(i)
        st.write_all(b"r%d" % i)
    st.close()

    st.open_write()
    st.seek_record(1)
    st.write_all(b"new")
    st.close()

    st.open_read()
    got = []
    for i in range(3):
        st.seek_record(i)
        got.append(st.read_all())
    st.close()
    assert got == [b"r0", b"new", b"r2"]


def test_write_too_large(tmp_path):
    st = SlotStore(str(tmp_path / "s.db"), record_size=16)
    st.open_write_truncate()
    with pytest.raises(CapacityExceeded):
        st.write_all(b"x" * 16)
    st.write_all(b"x" * 15)
    st.close()


def test_read_without_terminator(tmp_path):
    path = tmp_path / "raw.txt"
    path.write_bytes(b"x" * 100)
    st = SlotStore(str(path), record_size=64)
    st.open_read()
    with pytest.raises(StoreIOError):
        st.read_all(64)
    st.seek_record(0)
    assert st.read_all(200) == b"x" * 100  # 文件比上限短
    st.close()


def test_write_on_read_only(tmp_path):
    path = str(tmp_path / "s.db")
    st = SlotStore(path, record_size=32)
    st.open_write_truncate()
    st.close()
    st.open_read()
    with pytest.raises(StoreIOError):
        st.write_all(b"x")
    st.close()


def test_not_open(tmp_path):
    st = SlotStore(str(tmp_path / "s.db"))
    with pytest.raises(StoreIOError):
        st.read_all()
    st.close()  # 未打开时为空操作


def test_truncate_records(tmp_path):
    st = SlotStore(str(tmp_path / "s.db"), record_size=32)
    st.open_write_truncate()
    st.seek_record(9)
    st.write_all(b"last")
    assert st.record_count() == 10
    st.truncate_records(4)
    assert st.record_count() == 4
    st.truncate_records(8)  # 只缩不扩
    assert st.record_count() == 4
    st.close()
