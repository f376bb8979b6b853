"""Utility functions for formatting."""
from .formatting import format_duration, format_hash_rate, format_token_amount, shorten_hex

__all__ = [
    "format_duration",
    "format_hash_rate",
    "format_token_amount",
    "shorten_hex",
]
