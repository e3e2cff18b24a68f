"""Utility functions for the voucher kernel."""

from voucher_kernel.utils.hashing import canonicalize_json, hash_payload

__all__ = ["canonicalize_json", "hash_payload"]
