"""
Module: tests/unit/test_paging.py

What:
    Validate the pagination arithmetic behind the triage page.

Why:
    After bulk actions the total shrinks under the user; clamping must keep
    the cursor on a real page and the ordinals consistent.

How:
    Sweep small grids of totals and page sizes for the bounds, then pin the
    concrete clamp from the documented example.
"""

import pytest

from mailsweep.core.paging import PageCursor, derive, total_pages_for


def test_derive_bounds_hold_across_grid():
    for page_size in (1, 3, 25):
        for total in (0, 1, 2, 24, 25, 26, 60):
            for requested in (-3, 0, 1, 2, 5, 100):
                window = derive(total, page_size, requested)
                assert 1 <= window.page_index <= window.total_pages
                if total > 0:
                    assert 1 <= window.first_item_ordinal <= window.last_item_ordinal <= total
                else:
                    assert window.first_item_ordinal == window.last_item_ordinal == 0


def test_sixty_items_at_twenty_five_per_page_clamps_to_three():
    """
    What:
        ``pageSize=25, totalCount=60`` gives three pages; page 5 clamps to 3.
    """

    window = derive(60, 25, 5)
    assert window.total_pages == 3
    assert window.page_index == 3
    assert (window.offset, window.limit) == (50, 25)
    assert (window.first_item_ordinal, window.last_item_ordinal) == (51, 60)
    assert PageCursor(25, 5).clamp(60) == PageCursor(25, 3)


def test_zero_total_has_single_page():
    assert total_pages_for(0, 25) == 1
    window = derive(0, 25, 1)
    assert not window.has_previous
    assert not window.has_next


def test_cursor_validation():
    with pytest.raises(ValueError):
        PageCursor(0)
    with pytest.raises(ValueError):
        PageCursor(10, 0)


def test_clamp_returns_same_cursor_when_in_range():
    cursor = PageCursor(10, 2)
    assert cursor.clamp(15) is cursor


def test_page_size_change_returns_to_first_page():
    assert PageCursor(10, 4).with_page_size(50) == PageCursor(50, 1)
    assert PageCursor(10, 4).with_page(-2).page_index == 1
