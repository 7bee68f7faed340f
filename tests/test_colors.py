from lifx_act.colors import NAMED_COLORS, name_to_rgb, rgb_to_hsv


def test_named_color_expands_each_channel_to_16_bits():
    assert name_to_rgb("red") == (0xFF00, 0x0000, 0x0000)
    assert name_to_rgb("Dark Orange") == (0xFF00, 0x8C00, 0x0000)


def test_unknown_color_name_returns_none():
    assert name_to_rgb("ultraviolet-ish") is None


def test_table_holds_the_css_color_names():
    assert len(NAMED_COLORS) >= 140
    assert NAMED_COLORS["tomato"] == 0xFF6347


def test_pure_white_is_a_scalar_brightness():
    assert rgb_to_hsv(0xFFFF, 0xFFFF, 0xFFFF) == 65535


def test_gray_level_is_a_scalar_brightness():
    assert rgb_to_hsv(0x8000, 0x8000, 0x8000) == 0x8000


def test_black_is_zero():
    assert rgb_to_hsv(0, 0, 0) == 0


def test_primaries_map_to_hue_thirds():
    assert rgb_to_hsv(0xFFFF, 0, 0) == (0, 65535, 65535)
    assert rgb_to_hsv(0, 0xFFFF, 0) == (21845, 65535, 65535)
    assert rgb_to_hsv(0, 0, 0xFFFF) == (43690, 65535, 65535)


def test_hue_wraps_into_positive_range():
    h, s, v = rgb_to_hsv(0xFFFF, 0, 0x8000)
    assert 0 < h <= 65535
    assert s == 65535
    assert v == 65535
