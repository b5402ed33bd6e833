"""Filtered, sorted, paginated reads of a table's live records."""

import math
from collections.abc import Mapping
from functools import cmp_to_key
from typing import Any

import structlog

from recordbase.errors import NotFoundError, ValidationError, parse_model
from recordbase.models.base import is_snake_case
from recordbase.models.query import QueryPage, RecordQuery, SortSpec
from recordbase.services.document_store import DocumentStore, persistence_guard

_FILTER_SCALARS = (str, int, float, bool, type(None))


class QueryPlanner:
    """Turns a RecordQuery into store reads.

    Filters are exact-match predicates pushed down to storage. Ordering by
    created_at/updated_at happens in storage. Ordering by a data field happens
    in memory on the selected page only, after skip/limit, so pages are not
    globally ordered by that field.
    """

    def __init__(
        self,
        store: DocumentStore,
        default_page_size: int = 20,
        max_page_size: int = 100,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._store = store
        self._default_page_size = default_page_size
        self._max_page_size = max_page_size
        self._logger = logger or structlog.get_logger(__name__)

    async def query(
        self,
        table_id: str,
        options: RecordQuery | Mapping[str, Any] | None = None,
    ) -> QueryPage:
        """Fetch one page of records.

        Args:
            table_id: Table to read.
            options: Filters, sort, page (1-based) and limit.

        Returns:
            QueryPage with flattened records and paging totals.

        Raises:
            NotFoundError: If the table does not exist.
            ValidationError: If the options are malformed.
        """
        request = parse_model(RecordQuery, options if options is not None else {})
        limit = self._resolve_limit(request.limit)
        filters = _check_filters(request.filters) if request.has_filters() else None

        table = await self._store.get_table(table_id)
        if table is None:
            raise NotFoundError("Table")

        order_by, descending = _storage_order(request.sort)
        offset = (request.page - 1) * limit

        with persistence_guard(self._logger, "record_query_failed", table_id=table_id):
            total = await self._store.count_records(table_id, filters)
            records = await self._store.list_records(
                table_id,
                filters=filters,
                order_by=order_by,
                descending=descending,
                offset=offset,
                limit=limit,
            )

        rows = [record.to_row() for record in records]
        if request.sort is not None and request.sort.timestamp_column is None:
            rows = sort_page(rows, request.sort)

        self._logger.debug(
            "records_queried",
            table_id=table_id,
            filter_keys=sorted(filters or {}),
            page=request.page,
            limit=limit,
            total=total,
            returned=len(rows),
        )
        return QueryPage(
            records=rows,
            total=total,
            page=request.page,
            total_pages=math.ceil(total / limit),
        )

    def _resolve_limit(self, limit: int | None) -> int:
        if limit is None:
            return self._default_page_size
        if limit > self._max_page_size:
            raise ValidationError(
                f"limit must be at most {self._max_page_size}",
                field="limit",
                value=limit,
                constraint="max",
            )
        return limit


def sort_page(rows: list[dict[str, Any]], sort: SortSpec) -> list[dict[str, Any]]:
    """Stable in-memory sort of one page by a data field.

    Rows without a value go last in either direction. Values whose types do
    not order against each other compare as equal.
    """
    direction = -1 if sort.descending else 1
    present = [row for row in rows if row.get(sort.field) is not None]
    missing = [row for row in rows if row.get(sort.field) is None]

    def compare(left: dict[str, Any], right: dict[str, Any]) -> int:
        a, b = left[sort.field], right[sort.field]
        try:
            if a < b:
                return -direction
            if a > b:
                return direction
        except TypeError:
            return 0
        return 0

    return sorted(present, key=cmp_to_key(compare)) + missing


def _storage_order(sort: SortSpec | None) -> tuple[str, bool]:
    if sort is not None and sort.timestamp_column is not None:
        return sort.timestamp_column, sort.descending
    return "created_at", True


def _check_filters(filters: dict[str, Any]) -> dict[str, Any]:
    for key, value in filters.items():
        if not is_snake_case(key):
            raise ValidationError(
                f'Cannot filter on "{key}"',
                field=key,
                value=value,
                constraint="filter_key",
            )
        if not isinstance(value, _FILTER_SCALARS):
            raise ValidationError(
                f'Filter value for "{key}" must be a scalar',
                field=key,
                value=value,
                constraint="filter_value",
            )
    return filters
