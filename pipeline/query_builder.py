"""
Translate shoe search conditions into SQLAlchemy filters and ordering.
"""
import logging
import re
from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence

import sqlalchemy as sa
from sqlalchemy.orm import Session, selectinload

from data.shoes import Shoe, ShoeGender, ShoeReview
from models.conditions import RangeSpec, ShoeSearchConditions

logger = logging.getLogger(__name__)

MAX_RESULTS = 5

# Forefoot values scanned by the enumerate drop strategy when no stack range is given
DEFAULT_PRIMARY_RANGE = (10.0, 40.0)

DROP_STRATEGIES = ("expression", "enumerate")

STOPWORDS = {"what", "which", "where", "when", "how", "that", "this", "with", "from", "have", "your",
             "shoe", "shoes", "show", "find", "best", "some", "there", "does", "them", "they"}


@dataclass
class ShoeQuery:
    """Filters and ordering ready to run against the shoe catalogue."""
    predicates: List[Any] = field(default_factory=list)
    guards: List[Any] = field(default_factory=list)
    order_by: List[Any] = field(default_factory=list)
    drop_sort: Optional[str] = None

    def is_empty(self) -> bool:
        """True when no filter predicate exists. Ordering and guards alone never run a query."""
        return not self.predicates


def effective_limit(requested: Optional[int]) -> int:
    return min(requested or MAX_RESULTS, MAX_RESULTS)


def _ordering(column, direction: str):
    clause = column.desc() if direction == "desc" else column.asc()
    return sa.nulls_last(clause)


def keyword_predicate(keyword: str):
    """Case-insensitive match of one keyword against names, use, gender versions and reviews."""
    pattern = f"%{keyword}%"
    return sa.or_(
        Shoe.model.ilike(pattern),
        Shoe.brand.ilike(pattern),
        Shoe.intended_use.ilike(pattern),
        Shoe.genders.any(ShoeGender.gender.ilike(pattern)),
        Shoe.reviews.any(sa.or_(
            ShoeReview.fit.ilike(pattern),
            ShoeReview.feel.ilike(pattern),
            ShoeReview.durability.ilike(pattern),
        )),
    )


def _bounds(column, range_spec: RangeSpec) -> List[Any]:
    bounds = []
    if range_spec.min is not None:
        bounds.append(column >= range_spec.min)
    if range_spec.max is not None:
        bounds.append(column <= range_spec.max)
    return bounds


def _single_range(query: ShoeQuery, column, range_spec: Optional[RangeSpec]):
    if range_spec is None:
        return
    query.predicates.extend(_bounds(column, range_spec))
    if range_spec.sort:
        query.order_by.append(_ordering(column, range_spec.sort))


def _paired_range(query: ShoeQuery, range_spec: Optional[RangeSpec]):
    """Stack height: either column may satisfy the bounds; sort on forefoot, then heel."""
    if range_spec is None:
        return
    forefoot = _bounds(Shoe.forefoot_stack_height_mm, range_spec)
    heel = _bounds(Shoe.heel_stack_height_mm, range_spec)
    if forefoot:
        query.predicates.append(sa.or_(sa.and_(*forefoot), sa.and_(*heel)))
    if range_spec.sort:
        query.order_by.append(_ordering(Shoe.forefoot_stack_height_mm, range_spec.sort))
        query.order_by.append(_ordering(Shoe.heel_stack_height_mm, range_spec.sort))


def _primary_range(conditions: ShoeSearchConditions):
    """Forefoot values to scan for the enumerate strategy."""
    low, high = DEFAULT_PRIMARY_RANGE
    for name in ("forefoot_stack_height_mm", "stack_height_mm"):
        range_spec = conditions.range_for(name)
        if range_spec is not None:
            if range_spec.min is not None:
                low = range_spec.min
            if range_spec.max is not None:
                high = range_spec.max
            break
    return low, high


def _enumerated_drop(conditions: ShoeSearchConditions, range_spec: RangeSpec) -> Any:
    """
    Emulate a drop range without a computed expression.

    Scans forefoot values from the primary range in steps of the drop span,
    pairing each with heel bounds. Forefoot values between steps are missed.
    """
    low, high = _primary_range(conditions)
    span = (range_spec.max - range_spec.min) if range_spec.min is not None and range_spec.max is not None else 0
    step = span if span > 0 else 1

    groups = []
    value = low
    while value <= high:
        group = [Shoe.forefoot_stack_height_mm == value]
        if range_spec.min is not None:
            group.append(Shoe.heel_stack_height_mm >= value + range_spec.min)
        if range_spec.max is not None:
            group.append(Shoe.heel_stack_height_mm <= value + range_spec.max)
        groups.append(sa.and_(*group))
        value += step
    return sa.or_(*groups) if groups else sa.false()


def _drop(query: ShoeQuery, conditions: ShoeSearchConditions, strategy: str):
    range_spec = conditions.range_for("drop")
    if range_spec is None:
        return

    query.guards.append(Shoe.heel_stack_height_mm.isnot(None))
    query.guards.append(Shoe.forefoot_stack_height_mm.isnot(None))

    if range_spec.min is not None or range_spec.max is not None:
        if strategy == "enumerate":
            query.predicates.append(_enumerated_drop(conditions, range_spec))
        else:
            query.predicates.extend(_bounds(Shoe.computed_drop_mm, range_spec))

    if range_spec.sort:
        query.drop_sort = range_spec.sort
        if strategy == "expression":
            query.order_by.append(_ordering(Shoe.computed_drop_mm, range_spec.sort))


def build_query(conditions: ShoeSearchConditions, drop_strategy: str = "expression") -> ShoeQuery:
    """
    Build filters and ordering from search conditions.

    Args:
        conditions: Validated search conditions
        drop_strategy: "expression" filters on heel minus forefoot directly,
            "enumerate" scans discrete forefoot values instead

    Returns:
        ShoeQuery with AND-combined predicates
    """
    if drop_strategy not in DROP_STRATEGIES:
        raise ValueError(f"Unknown drop strategy: {drop_strategy}")

    query = ShoeQuery()

    for keyword in conditions.keywords:
        query.predicates.append(keyword_predicate(keyword))

    _paired_range(query, conditions.range_for("stack_height_mm"))
    _single_range(query, Shoe.forefoot_stack_height_mm, conditions.range_for("forefoot_stack_height_mm"))
    _single_range(query, Shoe.heel_stack_height_mm, conditions.range_for("heel_stack_height_mm"))
    _drop(query, conditions, drop_strategy)

    width = conditions.text_for("width")
    if width:
        query.predicates.append(Shoe.fit.ilike(f"%{width}%"))

    intended_use = conditions.text_for("intended_use")
    if intended_use:
        query.predicates.append(Shoe.intended_use.ilike(f"%{intended_use}%"))

    gender = conditions.text_for("gender")
    if gender:
        query.predicates.append(Shoe.genders.any(ShoeGender.gender.ilike(f"%{gender}%")))

    logger.debug(f"Built shoe query with {len(query.predicates)} predicates and "
                 f"{len(query.order_by)} sort keys")
    return query


def sort_by_drop(shoes: Sequence[Shoe], direction: str) -> List[Shoe]:
    """Order shoes by heel minus forefoot; shoes without both values go last."""
    known = [shoe for shoe in shoes if shoe.computed_drop_mm is not None]
    unknown = [shoe for shoe in shoes if shoe.computed_drop_mm is None]
    known.sort(key=lambda shoe: shoe.computed_drop_mm, reverse=(direction == "desc"))
    return known + unknown


def execute(session: Session, query: ShoeQuery, limit: Optional[int] = None) -> List[Shoe]:
    """
    Run a shoe query.

    An empty query returns no shoes rather than the whole catalogue.

    Args:
        session: Open SQLAlchemy session
        query: Output of build_query or keyword_fallback_query
        limit: Requested number of results, capped at MAX_RESULTS

    Returns:
        Matching shoes with versions and reviews loaded
    """
    if query.is_empty():
        logger.info("No shoe search conditions, skipping database query")
        return []

    stmt = sa.select(Shoe).options(selectinload(Shoe.genders), selectinload(Shoe.reviews))
    stmt = stmt.where(sa.and_(*query.predicates, *query.guards))
    stmt = stmt.order_by(*query.order_by, Shoe.id.asc()).limit(effective_limit(limit))

    shoes = list(session.scalars(stmt))
    if query.drop_sort:
        shoes = sort_by_drop(shoes, query.drop_sort)

    logger.info(f"Found {len(shoes)} matching shoes")
    return shoes


def find_shoes(session: Session, conditions: ShoeSearchConditions,
               drop_strategy: str = "expression") -> List[Shoe]:
    return execute(session, build_query(conditions, drop_strategy), conditions.limit)


def extract_keywords(text: str) -> List[str]:
    """Lower-case words longer than three characters that are not stopwords, in order."""
    words = re.findall(r"[a-z0-9+]+", text.lower())
    keywords = []
    for word in words:
        if len(word) > 3 and word not in STOPWORDS and word not in keywords:
            keywords.append(word)
    return keywords


def keyword_fallback_query(text: str) -> ShoeQuery:
    """Match any remaining word of the request against the keyword fields."""
    keywords = extract_keywords(text)
    if not keywords:
        return ShoeQuery()
    return ShoeQuery(predicates=[sa.or_(*(keyword_predicate(k) for k in keywords))])
