import numpy as np
import pytest

from volumeslice import ColorLookupTable, parse_color_lut
from volumeslice.volume.color_lut import LabelColor

LUT_TEXT = """
# index name r g b a
0   Unknown                 0   0   0   0
4   Left-Lateral-Ventricle  120 18  134 0

1001 LH:_ctx_lh_bankssts_(BSTS) 25  100 40  255
this line is not a colour entry
"""


def test_parse_both_layouts():
    table = parse_color_lut(LUT_TEXT)

    assert len(table) == 3
    assert table.labels == [0, 4, 1001]
    assert table[4].abbrev == "Left-Lateral-Ventricle"
    assert table[4].color == (120, 18, 134, 0)
    assert table[1001].abbrev == "BSTS"
    assert table[1001].hemisphere == "LH"
    assert table.get(5) is None


def test_colorize_truncates_and_reports_absent_labels():
    table = ColorLookupTable({1: (255, 0, 0), 3: (0, 255, 0, 128)})
    rgb, present = table.colorize([1.9, 2.0, 3.0, -1.0, np.nan, 99.0])

    np.testing.assert_array_equal(present, [True, False, True, False, False, False])
    np.testing.assert_array_equal(rgb[0], [255, 0, 0])
    np.testing.assert_array_equal(rgb[2], [0, 255, 0])
    assert not rgb[~present].any()
    assert table[3].color[3] == 128
    assert table[1].color[3] == 255


def test_colorize_keeps_shape():
    table = ColorLookupTable([LabelColor(index=2, abbrev="x", color=(1, 2, 3, 4))])
    rgb, present = table.colorize(np.full((2, 3), 2.0))
    assert rgb.shape == (2, 3, 3)
    assert present.all()


def test_empty_table_colours_nothing():
    rgb, present = ColorLookupTable().colorize([0.0, 1.0])
    assert not present.any()
    assert not rgb.any()


@pytest.mark.parametrize(
    "entries",
    [
        {1: (256, 0, 0)},
        {1: (0, -1, 0)},
        {1: (0, 0)},
        {-2: (0, 0, 0)},
    ],
)
def test_invalid_entries(entries):
    with pytest.raises(ValueError):
        ColorLookupTable(entries)
