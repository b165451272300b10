from __future__ import annotations

from expense_tracker.models import Color

PALETTE: tuple[Color, ...] = tuple(
    Color.from_hex(value)
    for value in (
        0x4CAF50,  # green
        0xFF9800,  # orange
        0x2196F3,  # blue
        0xF44336,  # red
        0x9C27B0,  # purple
        0x00BCD4,  # cyan
        0xFFEB3B,  # yellow
        0x795548,  # brown
        0x607D8B,  # blue grey
        0xE91E63,  # pink
    )
)

FIXED_CATEGORY_COLORS: dict[str, Color] = {
    "Shopping": PALETTE[0],
    "Food": PALETTE[1],
    "Transport": PALETTE[2],
    "Entertainment": PALETTE[3],
    "Bills": PALETTE[4],
}

NO_DATA_COLOR = Color.from_hex(0x888888)


def java_string_hash(value: str) -> int:
    """32-bit signed ``String.hashCode`` as computed by the JVM.

    Iterates UTF-16 code units, so characters outside the BMP contribute two
    units (a surrogate pair) just as they do on the JVM.
    """
    encoded = value.encode("utf-16-be")
    result = 0
    for index in range(0, len(encoded), 2):
        unit = (encoded[index] << 8) | encoded[index + 1]
        result = (31 * result + unit) & 0xFFFFFFFF
    if result >= 0x80000000:
        result -= 0x100000000
    return result


def color_of(category: str) -> Color:
    fixed = FIXED_CATEGORY_COLORS.get(category)
    if fixed is not None:
        return fixed
    # Python's % is non-negative for a positive divisor.
    return PALETTE[java_string_hash(category) % len(PALETTE)]
