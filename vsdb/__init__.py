"""Disk-backed raw byte maps, an in-memory paged slot index and a trie node codec."""

__version__ = "0.1.0"

__all__ = ["common", "storage", "mapx_raw", "slot_db", "node_codec"]