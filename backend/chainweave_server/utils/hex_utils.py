import re
from typing import Any

_WALLET_RE = re.compile(r'^0x[a-fA-F0-9]{40}$')


def is_wallet_address(value: Any) -> bool:
    return isinstance(value, str) and bool(_WALLET_RE.match(value.strip()))


def normalize_wallet(value: str) -> str:
    """Lowercase and trim a hex wallet address.

    Args:
        value: address in any case, with or without surrounding whitespace.

    Returns:
        The lowercased address. Raises ValueError when it is not 0x + 40 hex.
    """
    candidate = (value or '').strip()
    if not _WALLET_RE.match(candidate):
        raise ValueError(f"invalid wallet address: {value!r}")
    return candidate.lower()


def to_hex(value: Any) -> str:
    """Render bytes / HexBytes / ints / strings from web3 as a 0x-prefixed hex string."""
    if value is None:
        return ''
    if isinstance(value, (bytes, bytearray)):
        return '0x' + bytes(value).hex()
    if isinstance(value, int):
        return hex(value)
    text = str(value)
    if hasattr(value, 'hex') and not isinstance(value, str):
        text = value.hex()
    return text if text.startswith('0x') else '0x' + text


def to_bytes32(value: str | bytes) -> bytes:
    """Left-pad a hex request id into the 32 bytes a ``bytes32`` argument expects."""
    if isinstance(value, (bytes, bytearray)):
        raw = bytes(value)
    else:
        text = value[2:] if value.startswith('0x') else value
        if len(text) % 2:
            text = '0' + text
        raw = bytes.fromhex(text)
    if len(raw) > 32:
        raise ValueError(f"value does not fit in bytes32: {value!r}")
    return raw.rjust(32, b'\x00')
