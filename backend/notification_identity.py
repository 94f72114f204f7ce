"""Stable numeric notification ids derived from event ids, never stored."""


def _utf16_code_units(value: str):
    encoded = value.encode("utf-16-le")
    for idx in range(0, len(encoded), 2):
        yield encoded[idx] | (encoded[idx + 1] << 8)


def _to_int32(value: int) -> int:
    value &= 0xFFFFFFFF
    return value - 0x100000000 if value & 0x80000000 else value


def derive_notification_id(event_id: str) -> int:
    """
    Map an event id to the numeric handle used for OS-level schedule/cancel.

    Rolling ``h * 31 + c`` hash over UTF-16 code units, kept in signed 32-bit
    range at every step, then made non-negative. No lookup table: the same id
    gives the same number in every process. Distinct ids can collide.
    """
    hashed = 0
    for unit in _utf16_code_units(str(event_id)):
        hashed = _to_int32((hashed << 5) - hashed + unit)
    return abs(hashed)
