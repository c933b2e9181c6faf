import pytest

from imapreader.imap.pagination import ASC, DESC, Pagination


def test_desc_second_page():
    page = Pagination(order=DESC, limit=2, page=2).apply([5, 1, 3, 2, 4])
    assert page.ids == [3, 2]
    assert page.total == 5
    assert page.offset == 2
    assert page.has_next is True
    assert page.has_prev is True


def test_asc_first_page():
    page = Pagination(order=ASC, limit=2, page=1).apply([5, 1, 3, 2, 4])
    assert page.ids == [1, 2]
    assert page.has_prev is False


def test_no_limit_returns_everything_sorted():
    assert Pagination().apply([3, 1, 2]).ids == [3, 2, 1]
    assert Pagination(order="asc").apply([3, 1, 2]).ids == [1, 2, 3]


def test_limit_without_page_is_first_window():
    assert Pagination(limit=3).apply([1, 2, 3, 4]).ids == [4, 3, 2]


def test_page_past_the_end_is_empty():
    page = Pagination(limit=2, page=10).apply([1, 2, 3])
    assert page.ids == []
    assert page.has_next is False


def test_empty_ids():
    page = Pagination(limit=5, page=1).apply([])
    assert page.ids == []
    assert page.total == 0
    assert page.has_prev is False


@pytest.mark.parametrize(
    "kwargs",
    [dict(order="sideways"), dict(limit=-1), dict(page=0)],
)
def test_invalid_pagination(kwargs):
    with pytest.raises(ValueError):
        Pagination(**kwargs)
