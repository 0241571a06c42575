"""Shared constants, errors and data-directory settings."""

from __future__ import annotations

import os
import threading
from dataclasses import dataclass, field
from pathlib import Path

NULL = b""

KB = 1 << 10
MB = 1 << 20
GB = 1 << 30

PREFIX_SIZE = 8

RESERVED_ID_CNT = 40_960_000
BIGGEST_RESERVED_ID = RESERVED_ID_CNT - 1

BASE_DIR_VAR = "VSDB_BASE_DIR"
CUSTOM_DIR_VAR = "VSDB_CUSTOM_DIR"
CUSTOM_DIR_NAME = "__CUSTOM__"


class VsdbError(Exception):
    """Raised when a storage operation cannot be carried out."""


@dataclass
class _State:
    base_dir: Path | None = None
    custom_dir: Path | None = None
    initialized: bool = False
    lock: threading.RLock = field(default_factory=threading.RLock)


_state = _State()


def _gen_data_dir() -> Path:
    directory = os.environ.get(BASE_DIR_VAR)
    if directory is None:
        home = os.environ.get("HOME")
        directory = f"{home}/.vsdb" if home is not None else "/tmp/.vsdb"
    path = Path(directory)
    path.mkdir(parents=True, exist_ok=True)
    return path


def vsdb_get_base_dir() -> Path:
    """Return the base data directory, creating the default one if needed."""
    state = _state
    with state.lock:
        if state.base_dir is None:
            state.base_dir = _gen_data_dir()
        return state.base_dir


def vsdb_set_base_dir(dir: str | os.PathLike[str]) -> None:
    """Set the base data directory; allowed only once per process."""
    state = _state
    with state.lock:
        if state.initialized:
            raise VsdbError("VSDB has been initialized !!")
        state.initialized = True
        path = Path(dir)
        os.environ[BASE_DIR_VAR] = str(path)
        state.base_dir = path


def vsdb_get_custom_dir() -> Path:
    """Return the directory for user data kept beside the database."""
    state = _state
    with state.lock:
        if state.custom_dir is None:
            path = vsdb_get_base_dir() / CUSTOM_DIR_NAME
            path.mkdir(parents=True, exist_ok=True)
            os.environ[CUSTOM_DIR_VAR] = str(path)
            state.custom_dir = path
        return state.custom_dir


def parse_int(data: bytes) -> int:
    """Decode a big-endian unsigned integer."""
    return int.from_bytes(bytes(data), "big")


def parse_prefix(data: bytes) -> int:
    """Decode an instance prefix, which must be exactly PREFIX_SIZE bytes."""
    raw = bytes(data)
    if len(raw) != PREFIX_SIZE:
        raise VsdbError(f"invalid prefix length: {len(raw)}")
    return parse_int(raw)