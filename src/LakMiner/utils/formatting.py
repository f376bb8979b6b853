"""Formatting helpers for hashrates, hashes and token amounts."""
from decimal import Decimal


def format_hash_rate(value: float, unit: str = "H/s") -> str:
    """Format a hashrate with a magnitude prefix (k, M, G)"""
    if value <= 0:
        return f"0 {unit}"
    if value < 1000:
        return f"{value:.1f} {unit}"
    elif value < 1_000_000:
        return f"{value / 1000:.1f} k{unit}"
    elif value < 1_000_000_000:
        return f"{value / 1_000_000:.1f} M{unit}"
    return f"{value / 1_000_000_000:.1f} G{unit}"


def shorten_hex(value: str, length: int = 12) -> str:
    if not value:
        return "N/A"
    if len(value) <= length:
        return value
    return value[:length] + "..."


def format_token_amount(wei: int, decimals: int = 18) -> str:
    """Render an integer base-unit amount as a plain decimal string (no exponent)."""
    amount = Decimal(int(wei)) / (Decimal(10) ** decimals)
    text = format(amount, "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text or "0"


def format_duration(seconds: float) -> str:
    """Uptime as 1h 02m 03s"""
    seconds = int(max(0, seconds))
    hours, rem = divmod(seconds, 3600)
    minutes, secs = divmod(rem, 60)
    if hours:
        return f"{hours}h {minutes:02d}m {secs:02d}s"
    if minutes:
        return f"{minutes}m {secs:02d}s"
    return f"{secs}s"
