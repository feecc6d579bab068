"""
Composable query construction for list endpoints.

A request-parameter bag is turned into one immutable QuerySpec by the pure
function compose_query(); QueryBuilder wraps it with a chainable interface
and applies the QuerySpec to a SQLAlchemy query. Every stage is collapsed into
the same QuerySpec before execution, so the order of the chained calls does not
change the result.
"""
import math
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple

from sqlalchemy import and_, or_
from sqlalchemy.orm import Query

from app.config import settings
from app.date_utils import parse_datetime_param
from app.errors import InvalidInputError
from app.logger import get_logger
from app.models import project_record

logger = get_logger(__name__)

# Parameters that configure the query itself and never become filters
RESERVED_PARAMS = frozenset({"searchTerm", "search", "sort", "limit", "page", "fields"})

# Parameters consumed by the alternative sort form
SORT_PARAMS = frozenset({"sortBy", "sortOrder"})

# Range parameters: (lower bound param, upper bound param) -> target field
DATE_RANGE_PARAMS = ("startDate", "endDate", "createdAt")
POINTS_RANGE_PARAMS = ("minPoints", "maxPoints", "points")

ALL_STAGES = frozenset({"search", "filter", "sort", "paginate", "fields"})

# Highest page honored; keeps (page - 1) * limit inside a 64-bit OFFSET
MAX_PAGE = 10 ** 9

FilterParser = Callable[[str, Any], Any]


# ============================================================================
# Parameter parsers
# ============================================================================

def _as_list(value: Any) -> List[Any]:
    if isinstance(value, (list, tuple, set)):
        return list(value)
    if isinstance(value, str) and "," in value:
        return [part.strip() for part in value.split(",") if part.strip()]
    return [value]


def enum_filter(enum_cls: type) -> FilterParser:
    """
    Equality filter on an enum column. A list or comma-separated value
    becomes an IN filter. Unknown members are rejected.
    """
    allowed = [member.value for member in enum_cls]

    def parse(name: str, value: Any) -> Any:
        members = []
        invalid = []
        for item in _as_list(value):
            try:
                members.append(enum_cls(getattr(item, "value", item)))
            except ValueError:
                invalid.append(str(item))
        if invalid:
            raise InvalidInputError(
                f"Invalid {name}: {', '.join(invalid)}. Must be one of: {', '.join(allowed)}",
                details=[{"path": name, "message": f"Must be one of: {', '.join(allowed)}"}],
            )
        if not members:
            return None
        return members[0] if len(members) == 1 else tuple(members)

    return parse


_TRUE_VALUES = frozenset({"true", "1", "yes"})
_FALSE_VALUES = frozenset({"false", "0", "no"})


def bool_filter(name: str, value: Any) -> Optional[bool]:
    """Equality filter on a boolean column."""
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE_VALUES:
        return True
    if text in _FALSE_VALUES:
        return False
    raise InvalidInputError(
        f"{name} must be true or false",
        details=[{"path": name, "message": "Must be true or false"}],
    )


def _parse_number(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(str(value).strip())
    except (TypeError, ValueError):
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def _parse_positive_int(value: Any, default: int) -> int:
    number = _parse_number(value)
    if number is None or number < 1:
        return default
    return int(number)


# ============================================================================
# Immutable query description
# ============================================================================

@dataclass(frozen=True)
class RangeFilter:
    """Inclusive range on one field; either bound may be absent."""
    field: str
    gte: Optional[Any] = None
    lte: Optional[Any] = None


@dataclass(frozen=True)
class SortKey:
    field: str
    descending: bool = False


@dataclass(frozen=True)
class QueryFields:
    """
    Per-entity declaration of what the composer may touch.

    Attributes:
        columns: Public field name -> SQLAlchemy column
        filters: Allowed filter param -> parser
        filter_targets: Filter param -> field name when they differ
        sortable: Field names accepted by ?sort= and ?sortBy=
        default_sort: Sort used when none is given
    """
    columns: Mapping[str, Any]
    filters: Mapping[str, FilterParser] = field(default_factory=dict)
    filter_targets: Mapping[str, str] = field(default_factory=dict)
    sortable: FrozenSet[str] = frozenset({"createdAt"})
    default_sort: Tuple[SortKey, ...] = (SortKey("createdAt", descending=True),)


@dataclass(frozen=True)
class QuerySpec:
    """Fully resolved read query: search, filters, order, page and projection."""
    search_term: Optional[str] = None
    search_fields: Tuple[str, ...] = ()
    equals: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    ranges: Tuple[RangeFilter, ...] = ()
    sort: Tuple[SortKey, ...] = ()
    page: int = 1
    limit: int = 10
    paginated: bool = True
    projection: Optional[Tuple[str, ...]] = None

    @property
    def skip(self) -> int:
        return (self.page - 1) * self.limit

    def pagination_meta(self, total: int) -> dict:
        return {
            "page": self.page,
            "limit": self.limit,
            "total": total,
            "totalPages": math.ceil(total / self.limit),
        }


# ============================================================================
# Pure composition
# ============================================================================

def _compose_search(params: Mapping[str, Any], fields: Iterable[str], query_fields: QueryFields) -> Tuple[Optional[str], Tuple[str, ...]]:
    term = params.get("searchTerm") or params.get("search")
    if term is None or not str(term).strip():
        return None, ()
    searchable = tuple(f for f in fields if f in query_fields.columns)
    if not searchable:
        return None, ()
    return str(term).strip(), searchable


def _compose_ranges(params: Mapping[str, Any], query_fields: QueryFields) -> Tuple[RangeFilter, ...]:
    ranges = []

    low_param, high_param, target = DATE_RANGE_PARAMS
    if target in query_fields.columns:
        start = parse_datetime_param(params.get(low_param))
        end = parse_datetime_param(params.get(high_param), end_of_day=True)
        if start is not None or end is not None:
            ranges.append(RangeFilter(target, gte=start, lte=end))

    low_param, high_param, target = POINTS_RANGE_PARAMS
    if target in query_fields.columns:
        minimum = _parse_number(params.get(low_param))
        maximum = _parse_number(params.get(high_param))
        if minimum is not None or maximum is not None:
            ranges.append(RangeFilter(target, gte=minimum, lte=maximum))

    return tuple(ranges)


def _compose_filters(params: Mapping[str, Any], query_fields: QueryFields) -> Dict[str, Any]:
    range_params = set(DATE_RANGE_PARAMS[:2] + POINTS_RANGE_PARAMS[:2])
    equals: Dict[str, Any] = {}
    for name, raw in params.items():
        if name in RESERVED_PARAMS or name in SORT_PARAMS or name in range_params:
            continue
        parser = query_fields.filters.get(name)
        if parser is None:
            logger.debug(f"Ignoring unrecognized query parameter '{name}'")
            continue
        if raw is None or (isinstance(raw, str) and not raw.strip()):
            continue
        value = parser(name, raw)
        if value is None:
            continue
        target = query_fields.filter_targets.get(name, name)
        if target in query_fields.columns:
            equals[target] = value
    return equals


def _compose_sort(params: Mapping[str, Any], query_fields: QueryFields) -> Tuple[SortKey, ...]:
    keys: List[SortKey] = []
    raw_sort = params.get("sort")
    if raw_sort:
        for token in _as_list(raw_sort):
            token = str(token).strip()
            descending = token.startswith("-")
            name = token.lstrip("-+")
            if name in query_fields.sortable and name in query_fields.columns:
                keys.append(SortKey(name, descending))
            else:
                logger.debug(f"Ignoring unsortable field '{name}'")
    elif params.get("sortBy"):
        name = str(params["sortBy"]).strip()
        if name in query_fields.sortable and name in query_fields.columns:
            descending = str(params.get("sortOrder", "desc")).strip().lower() != "asc"
            keys.append(SortKey(name, descending))
    return tuple(keys) or query_fields.default_sort


def _compose_projection(params: Mapping[str, Any]) -> Optional[Tuple[str, ...]]:
    raw_fields = params.get("fields")
    if not raw_fields:
        return None
    names = tuple(str(name).strip() for name in _as_list(raw_fields) if str(name).strip())
    return names or None


def compose_query(
    params: Optional[Mapping[str, Any]],
    query_fields: QueryFields,
    search_fields: Iterable[str] = (),
    stages: Iterable[str] = ALL_STAGES,
    default_limit: Optional[int] = None,
    max_limit: Optional[int] = None,
) -> QuerySpec:
    """
    Build a QuerySpec from a raw parameter bag.

    Args:
        params: Request parameters (string keys, scalar or list values)
        query_fields: What the target entity allows to be filtered/sorted
        search_fields: Fields matched by ?searchTerm= / ?search=
        stages: Which of search/filter/sort/paginate/fields to apply
        default_limit: Page size when ?limit= is missing or invalid
        max_limit: Upper bound for ?limit=

    Returns:
        Immutable QuerySpec. Raises InvalidInputError for invalid enum or
        boolean filter values; malformed numbers and dates are ignored.
    """
    params = params or {}
    stages = frozenset(stages)
    default_limit = default_limit or settings.default_page_limit
    max_limit = max_limit or settings.max_page_limit

    search_term, searched = (None, ())
    if "search" in stages:
        search_term, searched = _compose_search(params, search_fields, query_fields)

    equals: Dict[str, Any] = {}
    ranges: Tuple[RangeFilter, ...] = ()
    if "filter" in stages:
        equals = _compose_filters(params, query_fields)
        ranges = _compose_ranges(params, query_fields)

    page = min(_parse_positive_int(params.get("page"), 1), MAX_PAGE)
    limit = min(_parse_positive_int(params.get("limit"), default_limit), max_limit)

    return QuerySpec(
        search_term=search_term,
        search_fields=searched,
        equals=MappingProxyType(equals),
        ranges=ranges,
        sort=_compose_sort(params, query_fields) if "sort" in stages else (),
        page=page,
        limit=limit,
        paginated="paginate" in stages,
        projection=_compose_projection(params) if "fields" in stages else None,
    )


# ============================================================================
# SQLAlchemy application
# ============================================================================

def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def apply_filters(query: Query, spec: QuerySpec, query_fields: QueryFields) -> Query:
    """Narrow a query by the QuerySpec search term, equality filters and ranges."""
    columns = query_fields.columns

    if spec.search_term:
        pattern = f"%{_escape_like(spec.search_term)}%"
        query = query.filter(or_(*[
            columns[name].ilike(pattern, escape="\\") for name in spec.search_fields
        ]))

    for name, value in spec.equals.items():
        column = columns[name]
        if isinstance(value, tuple):
            query = query.filter(column.in_(value))
        else:
            query = query.filter(column == value)

    for range_filter in spec.ranges:
        column = columns[range_filter.field]
        bounds = []
        if range_filter.gte is not None:
            bounds.append(column >= range_filter.gte)
        if range_filter.lte is not None:
            bounds.append(column <= range_filter.lte)
        query = query.filter(and_(*bounds))

    return query


def apply_ordering(query: Query, spec: QuerySpec, query_fields: QueryFields) -> Query:
    """Apply the sort keys, then skip/limit when paginated."""
    columns = query_fields.columns
    order = [
        columns[key.field].desc() if key.descending else columns[key.field].asc()
        for key in spec.sort
    ]
    if order and "id" in columns and all(key.field != "id" for key in spec.sort):
        # Stable pages when the sort field has ties
        order.append(columns["id"].desc() if spec.sort[-1].descending else columns["id"].asc())
    if order:
        query = query.order_by(*order)
    if spec.paginated:
        query = query.offset(spec.skip).limit(spec.limit)
    return query


class QueryBuilder:
    """
    Chainable wrapper around compose_query().

    Usage:
        builder = (
            QueryBuilder(db.query(Task).filter(Task.user_id == user_id), params, TASK_QUERY_FIELDS)
            .search(["title", "description"])
            .filter()
            .sort()
            .paginate()
            .fields()
        )
        records = builder.records()
        meta = builder.count_total()
    """

    def __init__(self, query: Query, params: Optional[Mapping[str, Any]], query_fields: QueryFields):
        self.query = query
        self.params = dict(params or {})
        self.query_fields = query_fields
        self._stages: set = set()
        self._search_fields: Tuple[str, ...] = ()
        self._spec: Optional[QuerySpec] = None

    def _enable(self, stage: str) -> "QueryBuilder":
        self._stages.add(stage)
        self._spec = None
        return self

    def search(self, fields: Iterable[str]) -> "QueryBuilder":
        self._search_fields = tuple(fields)
        return self._enable("search")

    def filter(self) -> "QueryBuilder":
        return self._enable("filter")

    def sort(self) -> "QueryBuilder":
        return self._enable("sort")

    def paginate(self) -> "QueryBuilder":
        return self._enable("paginate")

    def fields(self) -> "QueryBuilder":
        return self._enable("fields")

    @property
    def spec(self) -> QuerySpec:
        if self._spec is None:
            self._spec = compose_query(
                self.params,
                self.query_fields,
                search_fields=self._search_fields,
                stages=self._stages,
            )
        return self._spec

    def filtered_query(self) -> Query:
        return apply_filters(self.query, self.spec, self.query_fields)

    def all(self) -> list:
        """Execute the data query and return ORM objects."""
        return apply_ordering(self.filtered_query(), self.spec, self.query_fields).all()

    def records(self, serialize: Callable[[Any], dict] = lambda obj: obj.to_dict()) -> List[dict]:
        """Execute the data query and return projected dictionaries."""
        projection = self.spec.projection
        return [project_record(serialize(obj), projection) for obj in self.all()]

    def count_total(self) -> dict:
        """Count rows matching the filters (never the page) and return pagination metadata."""
        total = self.filtered_query().order_by(None).count()
        return self.spec.pagination_meta(total)
