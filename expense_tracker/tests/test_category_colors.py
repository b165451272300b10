import unittest

from expense_tracker.category_colors import (
    FIXED_CATEGORY_COLORS,
    NO_DATA_COLOR,
    PALETTE,
    color_of,
    java_string_hash,
)
from expense_tracker.models import Color


class JavaStringHashTests(unittest.TestCase):
    def test_matches_known_jvm_values(self) -> None:
        self.assertEqual(java_string_hash(""), 0)
        self.assertEqual(java_string_hash("a"), 97)
        self.assertEqual(java_string_hash("ab"), 3105)
        self.assertEqual(java_string_hash("hello"), 99162322)

    def test_wraps_to_signed_32_bit(self) -> None:
        self.assertEqual(java_string_hash("polygenelubricants"), -2147483648)

    def test_counts_surrogate_pairs_as_two_units(self) -> None:
        # U+1F600 is the pair D83D DE00 in UTF-16.
        self.assertEqual(java_string_hash("\U0001F600"), 0xD83D * 31 + 0xDE00)


class CategoryColorTests(unittest.TestCase):
    def test_fixed_categories_use_leading_palette_entries(self) -> None:
        self.assertEqual(color_of("Shopping"), PALETTE[0])
        self.assertEqual(color_of("Food"), PALETTE[1])
        self.assertEqual(color_of("Transport"), PALETTE[2])
        self.assertEqual(color_of("Entertainment"), PALETTE[3])
        self.assertEqual(color_of("Bills"), PALETTE[4])
        self.assertEqual(len(FIXED_CATEGORY_COLORS), 5)

    def test_custom_category_uses_hash_modulo_palette(self) -> None:
        self.assertEqual(color_of("hello"), PALETTE[2])

    def test_negative_hash_maps_to_non_negative_index(self) -> None:
        self.assertEqual(color_of("polygenelubricants"), PALETTE[2])

    def test_color_is_stable_across_calls(self) -> None:
        for category in ("Groceries", "Rent", "Travel", "Gifts", "Health"):
            with self.subTest(category=category):
                self.assertEqual(color_of(category), color_of(category))
                self.assertIn(color_of(category), PALETTE)

    def test_fixed_names_are_case_sensitive(self) -> None:
        self.assertEqual(color_of("food"), PALETTE[java_string_hash("food") % len(PALETTE)])

    def test_palette_and_sentinel_hex(self) -> None:
        self.assertEqual(len(PALETTE), 10)
        self.assertEqual(PALETTE[0].hex, "#4CAF50")
        self.assertEqual(PALETTE[9].hex, "#E91E63")
        self.assertEqual(NO_DATA_COLOR, Color(0x88, 0x88, 0x88))


if __name__ == "__main__":
    unittest.main()
