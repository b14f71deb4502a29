"""
Page/limit pagination shared by the list endpoints.

Lists are returned as ``{'ok': True, 'data': [...], 'pagination': {...}}``
where the pagination block carries ``page``, ``limit``, ``total``,
``pages``, ``hasNext`` and ``hasPrev``.
"""
from __future__ import annotations

import math
from typing import Any, Callable, Iterable, Sequence

from rest_framework import serializers

DEFAULT_LIMIT = 10
MAX_LIMIT = 100


class PageQuerySerializer(serializers.Serializer):
    page = serializers.IntegerField(required=False, min_value=1, default=1)
    limit = serializers.IntegerField(required=False, min_value=1, max_value=MAX_LIMIT, default=DEFAULT_LIMIT)


def page_params(query_params) -> tuple[int, int]:
    q = PageQuerySerializer(data={k: v for k, v in query_params.items() if k in ('page', 'limit')})
    q.is_valid(raise_exception=True)
    return q.validated_data['page'], q.validated_data['limit']


def paginate(items: Sequence[Any] | Any, page: int, limit: int,
             formatter: Callable[[Any], dict] | None = None) -> dict:
    """Slice ``items`` (a queryset or a list) and build the list payload."""
    total = items.count() if hasattr(items, 'count') and not isinstance(items, list) else len(items)
    start = (page - 1) * limit
    chunk: Iterable[Any] = items[start:start + limit]
    pages = math.ceil(total / limit) if total else 0
    return {
        'ok': True,
        'data': [formatter(i) for i in chunk] if formatter else list(chunk),
        'pagination': {
            'page': page,
            'limit': limit,
            'total': total,
            'pages': pages,
            'hasNext': page < pages,
            'hasPrev': page > 1,
        },
    }
