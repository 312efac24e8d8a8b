"""Course listing query construction.

Turns the optional listing parameters of ``GET /courses`` into a Mongo
filter, a sort specification and a skip/limit window. ``GET /courses-count``
uses the same filter so that list and count always agree.
"""
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Tuple

from config import DEFAULT_PAGE_SIZE

ALL_CATEGORIES = "All"

# skip and limit are encoded as signed 64-bit BSON integers
MAX_BSON_INT = 2**63 - 1

SORT_NEWEST = "createdAt"
SORT_PRICE_ASC = "price-asc"
SORT_PRICE_DESC = "price-desc"

_SORTS: Dict[str, List[Tuple[str, int]]] = {
    SORT_NEWEST: [("createdAt", -1), ("_id", -1)],
    SORT_PRICE_ASC: [("price", 1), ("_id", 1)],
    SORT_PRICE_DESC: [("price", -1), ("_id", -1)],
}


class InvalidArgument(ValueError):
    pass


@dataclass(frozen=True)
class CourseQuery:
    filter: Dict[str, Any]
    sort: List[Tuple[str, int]]
    skip: int
    limit: int


def build_course_filter(search: str = "", category: str = "", featured: bool = False) -> Dict[str, Any]:
    """Title substring (case-insensitive), optional category, optional featured flag."""
    query: Dict[str, Any] = {"title": {"$regex": re.escape(search or ""), "$options": "i"}}
    if category and category != ALL_CATEGORIES:
        query["category"] = category
    if featured:
        query["isFeatured"] = True
    return query


def build_course_sort(sort: str = SORT_NEWEST) -> List[Tuple[str, int]]:
    # unknown keys fall back to newest first
    return list(_SORTS.get(sort, _SORTS[SORT_NEWEST]))


def is_featured_requested(featured: str) -> bool:
    return featured == "true"


def build_course_query(
    page: int = 0,
    size: int = DEFAULT_PAGE_SIZE,
    search: str = "",
    category: str = "",
    sort: str = SORT_NEWEST,
    featured: str = "false",
) -> CourseQuery:
    if page < 0:
        raise InvalidArgument("page must be a non-negative integer")
    if size <= 0:
        raise InvalidArgument("size must be a positive integer")
    if size > MAX_BSON_INT or page * size > MAX_BSON_INT:
        raise InvalidArgument("page window is too large")
    return CourseQuery(
        filter=build_course_filter(search, category, is_featured_requested(featured)),
        sort=build_course_sort(sort),
        skip=page * size,
        limit=size,
    )
