"""Ordering and cursor pagination."""

from dataclasses import dataclass
from typing import Any

from sqlalchemy import and_, false, func, inspect, or_, select
from sqlalchemy.orm import Session

from courseplatform.core.errors import ClientValidationError
from courseplatform.query.args import order_by_items
from courseplatform.query.filters import build_where, relation, require_unique_where, scalar_fields

DIRECTIONS = ("asc", "desc")
NULLS = ("first", "last")


@dataclass
class OrderTerm:
    expression: Any
    descending: bool = False
    nulls: str | None = None
    field: str | None = None

    def clause(self, reverse: bool = False):
        descending = self.descending != reverse
        ordered = self.expression.desc() if descending else self.expression.asc()
        nulls = self.nulls
        if nulls and reverse:
            nulls = "last" if nulls == "first" else "first"
        if nulls == "first":
            ordered = ordered.nulls_first()
        elif nulls == "last":
            ordered = ordered.nulls_last()
        return ordered


def _direction(model, field: str, value) -> tuple[bool, str | None]:
    if isinstance(value, dict):
        if set(value) - {"sort", "nulls"}:
            raise ClientValidationError(f"Invalid sort options for `{field}` on {model.__name__}.")
        sort, nulls = value.get("sort"), value.get("nulls")
    else:
        sort, nulls = value, None
    if sort not in DIRECTIONS:
        raise ClientValidationError(f"Sort order for `{field}` on {model.__name__} must be `asc` or `desc`.")
    if nulls is not None and nulls not in NULLS:
        raise ClientValidationError(f"`nulls` for `{field}` on {model.__name__} must be `first` or `last`.")
    return sort == "desc", nulls


def _relation_terms(model, prop, ordering) -> list[OrderTerm]:
    target = prop.mapper.class_
    if not isinstance(ordering, dict):
        raise ClientValidationError(f"Ordering by relation `{prop.key}` needs a nested object.")

    if prop.uselist:
        if set(ordering) != {"_count"}:
            raise ClientValidationError(f"To-many relation `{prop.key}` can only be ordered by `_count`.")
        descending, _ = _direction(target, "_count", ordering["_count"])
        counted = select(func.count()).select_from(target).where(prop.primaryjoin).scalar_subquery()
        return [OrderTerm(counted, descending)]

    terms = []
    for field, value in ordering.items():
        if field not in scalar_fields(target):
            raise ClientValidationError(
                f"Ordering by `{prop.key}.{field}` is not supported; only scalar fields of the related record."
            )
        descending, nulls = _direction(target, field, value)
        related = select(getattr(target, field)).where(prop.primaryjoin).scalar_subquery()
        terms.append(OrderTerm(related, descending, nulls))
    return terms


def resolve_order(model, order_by) -> list[OrderTerm]:
    """Order terms for ``order_by`` with the primary key as the final tiebreaker."""
    terms: list[OrderTerm] = []
    for item in order_by_items(order_by):
        for field, value in item.items():
            prop = relation(model, field)
            if prop is not None:
                terms.extend(_relation_terms(model, prop, value))
            elif field in scalar_fields(model):
                descending, nulls = _direction(model, field, value)
                terms.append(OrderTerm(getattr(model, field), descending, nulls, field))
            else:
                raise ClientValidationError(f"Unknown field `{field}` in `order_by` for {model.__name__}.")

    ordered_fields = {term.field for term in terms}
    for column in inspect(model).primary_key:
        name = inspect(model).get_property_by_column(column).key
        if name not in ordered_fields:
            terms.append(OrderTerm(getattr(model, name), False, None, name))
    return terms


# dialects that sort NULL above every value; the rest sort it below
_NULLS_LARGEST = ("postgresql", "oracle")


def _nulls_trail(term: OrderTerm, reverse: bool, dialect: str) -> bool:
    """Whether NULLs come after every value in the traversal order of ``term``."""
    if term.nulls is not None:
        return (term.nulls == "last") != reverse
    descending = term.descending != reverse
    return (dialect in _NULLS_LARGEST) != descending


def _after(term: OrderTerm, value, reverse: bool, dialect: str):
    """Rows strictly after ``value`` in the traversal order of ``term``."""
    column = term.expression
    trail = _nulls_trail(term, reverse, dialect)
    if value is None:
        return false() if trail else column.is_not(None)
    step = column < value if term.descending != reverse else column > value
    if trail:
        return or_(step, column.is_(None))
    return step


def cursor_condition(db: Session, model, cursor: dict[str, Any], terms: list[OrderTerm], reverse: bool):
    """Rows at or after the cursor row in the (possibly reversed) ordering."""
    require_unique_where(model, cursor)
    if any(term.field is None for term in terms):
        raise ClientValidationError("`cursor` cannot be combined with ordering by a relation.")

    anchor = db.query(model).filter(build_where(model, cursor)).first()
    if anchor is None:
        return false()

    dialect = db.get_bind().dialect.name
    values = [getattr(anchor, term.field) for term in terms]
    branches = []
    for index, term in enumerate(terms):
        equal_prefix = [terms[j].expression.is_not_distinct_from(values[j]) for j in range(index)]
        step = _after(term, values[index], reverse, dialect)
        if index == len(terms) - 1:
            step = or_(step, term.expression.is_not_distinct_from(values[index]))
        branches.append(and_(*equal_prefix, step))
    return or_(*branches)
