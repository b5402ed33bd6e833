import pytest
from pydantic import ValidationError

from recordbase.models.enums import SortOrder
from recordbase.models.query import QueryPage, RecordQuery, SortSpec


def test_query_defaults() -> None:
    query = RecordQuery()

    assert query.page == 1
    assert query.limit is None
    assert query.sort is None
    assert not query.has_filters()


def test_query_has_filters() -> None:
    assert not RecordQuery(filters={}).has_filters()
    assert RecordQuery(filters={"team": "red"}).has_filters()


def test_query_coerces_nested_sort() -> None:
    query = RecordQuery.model_validate({"sort": {"field": "score", "order": "desc"}, "page": 2, "limit": 5})

    assert query.sort == SortSpec(field="score", order=SortOrder.DESC)
    assert query.sort.descending
    assert query.page == 2


@pytest.mark.parametrize("options", [{"page": 0}, {"limit": 0}, {"sort": {"field": "x", "order": "up"}}])
def test_query_rejects_invalid_paging_and_order(options: dict) -> None:
    with pytest.raises(ValidationError):
        RecordQuery.model_validate(options)


@pytest.mark.parametrize(
    ("field", "column"),
    [("created_at", "created_at"), ("createdAt", "created_at"), ("updatedAt", "updated_at"), ("score", None)],
)
def test_sort_spec_timestamp_column(field: str, column: str | None) -> None:
    assert SortSpec(field=field).timestamp_column == column


def test_query_page_is_frozen() -> None:
    page = QueryPage(records=[], total=0, page=1, total_pages=0)

    with pytest.raises(Exception):
        page.total = 3
