import os
from pathlib import Path

import pytest

from vsdb import common
from vsdb.common import (
    PREFIX_SIZE,
    VsdbError,
    parse_int,
    parse_prefix,
    vsdb_get_base_dir,
    vsdb_get_custom_dir,
    vsdb_set_base_dir,
)


@pytest.fixture
def fresh_state(monkeypatch):
    monkeypatch.setattr(common, "_state", common._State())
    monkeypatch.delenv("VSDB_CUSTOM_DIR", raising=False)
    return monkeypatch


def test_base_dir_from_env(fresh_state, tmp_path):
    target = tmp_path / "from_env"
    fresh_state.setenv("VSDB_BASE_DIR", str(target))
    assert vsdb_get_base_dir() == target
    assert target.is_dir()


def test_base_dir_falls_back_to_home(fresh_state, tmp_path):
    fresh_state.delenv("VSDB_BASE_DIR", raising=False)
    fresh_state.setenv("HOME", str(tmp_path))
    assert vsdb_get_base_dir() == tmp_path / ".vsdb"
    assert (tmp_path / ".vsdb").is_dir()


def test_set_base_dir_only_once(fresh_state, tmp_path):
    fresh_state.delenv("VSDB_BASE_DIR", raising=False)
    target = tmp_path / "chosen"
    vsdb_set_base_dir(target)
    assert vsdb_get_base_dir() == target
    assert os.environ["VSDB_BASE_DIR"] == str(target)
    with pytest.raises(VsdbError):
        vsdb_set_base_dir(tmp_path / "other")
    assert vsdb_get_base_dir() == target


def test_custom_dir(fresh_state, tmp_path):
    fresh_state.setenv("VSDB_BASE_DIR", str(tmp_path))
    custom = vsdb_get_custom_dir()
    assert custom == tmp_path / "__CUSTOM__"
    assert custom.is_dir()
    assert Path(os.environ["VSDB_CUSTOM_DIR"]) == custom
    assert vsdb_get_custom_dir() == custom


def test_parse_int_round_trip():
    for value in (0, 1, 255, 65535, 2**63 + 7):
        assert parse_int(value.to_bytes(8, "big")) == value


def test_parse_int_is_big_endian():
    assert parse_int(b"\x01\x00") == 256


def test_parse_prefix_round_trip():
    value = common.RESERVED_ID_CNT
    assert parse_prefix(value.to_bytes(PREFIX_SIZE, "big")) == value


@pytest.mark.parametrize("data", [b"", b"\x00" * 7, b"\x00" * 9])
def test_parse_prefix_rejects_bad_length(data):
    with pytest.raises(VsdbError):
        parse_prefix(data)