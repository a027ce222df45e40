"""Compile ``where`` dictionaries into SQLAlchemy criteria."""

import operator
from typing import Any

from sqlalchemy import UniqueConstraint, and_, false, func, inspect, not_, or_, true
from sqlalchemy.orm import ColumnProperty, RelationshipProperty

from courseplatform.core.errors import ClientValidationError

SCALAR_OPERATORS = (
    "equals",
    "not",
    "in",
    "not_in",
    "lt",
    "lte",
    "gt",
    "gte",
    "contains",
    "starts_with",
    "ends_with",
    "mode",
)
QUERY_MODES = ("default", "insensitive")
COMPARISONS = {
    "lt": operator.lt,
    "lte": operator.le,
    "gt": operator.gt,
    "gte": operator.ge,
}
TO_MANY_OPERATORS = ("some", "every", "none")
TO_ONE_OPERATORS = ("is", "is_not")


def scalar_fields(model) -> list[str]:
    return [prop.key for prop in inspect(model).attrs if isinstance(prop, ColumnProperty)]


def relation(model, name: str) -> RelationshipProperty | None:
    prop = inspect(model).attrs.get(name)
    if isinstance(prop, RelationshipProperty):
        return prop
    return None


def unique_keys(model) -> dict[str, tuple[str, ...]]:
    """Unique criteria of ``model`` keyed the way callers address them."""
    mapper = inspect(model)
    table = model.__table__

    def attribute_names(columns) -> tuple[str, ...]:
        return tuple(mapper.get_property_by_column(column).key for column in columns)

    keys: dict[str, tuple[str, ...]] = {}
    primary = attribute_names(table.primary_key.columns)
    keys["_".join(primary)] = primary
    for column in table.columns:
        if column.unique:
            name = mapper.get_property_by_column(column).key
            keys[name] = (name,)
    for constraint in table.constraints:
        if isinstance(constraint, UniqueConstraint) and constraint.columns:
            fields = attribute_names(constraint.columns)
            keys["_".join(fields)] = fields
    return keys


def _is_equality(value: Any) -> bool:
    if isinstance(value, dict):
        return set(value) == {"equals"} and value["equals"] is not None
    return value is not None


def require_unique_where(model, where: dict[str, Any] | None) -> None:
    keys = unique_keys(model)
    where = where or {}
    for name, fields in keys.items():
        if name not in where:
            continue
        if len(fields) == 1 and _is_equality(where[name]):
            return
        if len(fields) > 1 and isinstance(where[name], dict):
            return
    expected = ", ".join(f"`{name}`" for name in keys)
    raise ClientValidationError(
        f"Argument `where` of type {model.__name__}WhereUniqueInput needs at least one of {expected} arguments."
    )


def _as_list(value) -> list:
    if isinstance(value, list):
        return value
    return [value]


def build_where(model, where: dict[str, Any] | None):
    """Return one boolean clause for ``where`` on ``model``."""
    if not where:
        return true()
    if not isinstance(where, dict):
        raise ClientValidationError(f"Argument `where` for {model.__name__} must be an object.")

    compound = {name: fields for name, fields in unique_keys(model).items() if len(fields) > 1}
    clauses = []
    for key, value in where.items():
        if key == "AND":
            clauses.append(and_(true(), *[build_where(model, entry) for entry in _as_list(value)]))
        elif key == "OR":
            entries = _as_list(value)
            clauses.append(or_(false(), *[build_where(model, entry) for entry in entries]))
        elif key == "NOT":
            entries = _as_list(value)
            if entries:
                clauses.append(not_(and_(true(), *[build_where(model, entry) for entry in entries])))
        elif key in compound:
            clauses.append(_compound_condition(model, key, compound[key], value))
        elif relation(model, key) is not None:
            clauses.append(_relation_condition(model, relation(model, key), value))
        elif key in scalar_fields(model):
            clauses.append(scalar_condition(getattr(model, key), value))
        else:
            raise ClientValidationError(f"Unknown argument `{key}` in `where` for {model.__name__}.")
    return and_(true(), *clauses)


def _compound_condition(model, key: str, fields: tuple[str, ...], value):
    if not isinstance(value, dict) or set(value) != set(fields):
        raise ClientValidationError(
            f"Argument `{key}` for {model.__name__} needs exactly the fields {', '.join(fields)}."
        )
    return and_(*[getattr(model, field) == value[field] for field in fields])


def _folded(column, operand, insensitive: bool):
    """Both sides of a comparison, lower-cased for insensitive string filters."""
    if insensitive and isinstance(operand, str):
        return func.lower(column), func.lower(operand)
    return column, operand


def _folded_list(column, operands: list, insensitive: bool):
    if insensitive and operands and all(isinstance(operand, str) for operand in operands):
        return func.lower(column), [operand.lower() for operand in operands]
    return column, operands


def _equals(column, operand, insensitive: bool):
    if operand is None:
        return column.is_(None)
    left, right = _folded(column, operand, insensitive)
    return left == right


def scalar_condition(column, value):
    """Condition for one scalar column; ``column`` may be any SQL expression."""
    if not isinstance(value, dict):
        return _equals(column, value, insensitive=False)

    unknown = [op for op in value if op not in SCALAR_OPERATORS]
    if unknown:
        raise ClientValidationError(f"Unknown filter operator `{unknown[0]}`.")
    mode = value.get("mode", "default")
    if mode not in QUERY_MODES:
        raise ClientValidationError(f"Invalid filter mode `{mode}`. Expected `default` or `insensitive`.")
    insensitive = mode == "insensitive"

    clauses = []
    for op, operand in value.items():
        if op == "mode":
            continue
        if op == "equals":
            clauses.append(_equals(column, operand, insensitive))
        elif op == "not":
            if isinstance(operand, dict):
                nested = dict(operand)
                nested.setdefault("mode", mode)
                clauses.append(not_(scalar_condition(column, nested)))
            elif operand is None:
                clauses.append(column.is_not(None))
            else:
                clauses.append(not_(_equals(column, operand, insensitive)))
        elif op in ("in", "not_in"):
            target, operands = _folded_list(column, list(operand), insensitive)
            clauses.append(target.in_(operands) if op == "in" else target.not_in(operands))
        elif op in ("lt", "lte", "gt", "gte"):
            left, right = _folded(column, operand, insensitive)
            clauses.append(COMPARISONS[op](left, right))
        elif op == "contains":
            clauses.append(column.icontains(operand, autoescape=True) if insensitive
                           else column.contains(operand, autoescape=True))
        elif op == "starts_with":
            clauses.append(column.istartswith(operand, autoescape=True) if insensitive
                           else column.startswith(operand, autoescape=True))
        elif op == "ends_with":
            clauses.append(column.iendswith(operand, autoescape=True) if insensitive
                           else column.endswith(operand, autoescape=True))
    return and_(true(), *clauses)


def _relation_condition(model, prop: RelationshipProperty, value):
    target = prop.mapper.class_
    attribute = getattr(model, prop.key)

    if prop.uselist:
        if not isinstance(value, dict) or not value or any(op not in TO_MANY_OPERATORS for op in value):
            raise ClientValidationError(
                f"Relation filter `{prop.key}` on {model.__name__} takes `some`, `every` or `none`."
            )
        clauses = []
        for op, nested in value.items():
            criterion = build_where(target, nested)
            if op == "some":
                clauses.append(attribute.any(criterion))
            elif op == "none":
                clauses.append(not_(attribute.any(criterion)))
            else:
                clauses.append(not_(attribute.any(not_(criterion))))
        return and_(*clauses)

    if value is None:
        return not_(attribute.has())
    if isinstance(value, dict) and value and all(op in TO_ONE_OPERATORS for op in value):
        clauses = []
        for op, nested in value.items():
            if nested is None:
                clauses.append(not_(attribute.has()) if op == "is" else attribute.has())
            elif op == "is":
                clauses.append(attribute.has(build_where(target, nested)))
            else:
                clauses.append(not_(attribute.has(build_where(target, nested))))
        return and_(*clauses)
    return attribute.has(build_where(target, value))


def relation_link(prop: RelationshipProperty) -> tuple[str, str]:
    """Attribute names ``(local, remote)`` joining the two sides of ``prop``."""
    (local_column, remote_column), = prop.local_remote_pairs
    local = prop.parent.get_property_by_column(local_column).key
    remote = prop.mapper.get_property_by_column(remote_column).key
    return local, remote
