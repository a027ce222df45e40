"""count / aggregate / group_by compilation."""

from decimal import Decimal
from typing import Any

from sqlalchemy import Float, Integer, Numeric, and_, false, func, not_, or_, select, true
from sqlalchemy.orm import Query, Session

from courseplatform.core.errors import ClientValidationError
from courseplatform.query.args import AGGREGATE_KEYS, LOGICAL_KEYS, order_by_items
from courseplatform.query.filters import build_where, scalar_condition, scalar_fields

_FUNCTIONS = {
    "_avg": func.avg,
    "_sum": func.sum,
    "_min": func.min,
    "_max": func.max,
}


def _is_numeric(column) -> bool:
    return isinstance(column.type, (Integer, Float, Numeric))


def _check_field(model, section: str, field: str, columns) -> None:
    if field not in scalar_fields(model):
        raise ClientValidationError(f"Unknown field `{field}` in `{section}` for {model.__name__}.")
    if section in ("_avg", "_sum") and not _is_numeric(columns[field]):
        raise ClientValidationError(f"`{section}` only accepts numeric fields; `{field}` is not numeric.")


def aggregate_expressions(model, sections: dict[str, Any], columns) -> list[tuple[str, str, Any]]:
    """``(section, field, expression)`` for every requested aggregate.

    ``columns`` maps field names to the columns being aggregated, either the
    model's own columns or those of a windowed subquery.
    """
    expressions = []
    for section, fields in sections.items():
        if section == "_count":
            if fields is True:
                expressions.append(("_count", "_all", func.count()))
                continue
            for field, wanted in fields.items():
                if not wanted:
                    continue
                if field == "_all":
                    expressions.append(("_count", "_all", func.count()))
                else:
                    _check_field(model, section, field, columns)
                    expressions.append(("_count", field, func.count(columns[field])))
            continue
        for field, wanted in fields.items():
            if wanted:
                _check_field(model, section, field, columns)
                expressions.append((section, field, _FUNCTIONS[section](columns[field])))
    return expressions


def _result_value(section: str, value):
    if value is None:
        return None
    if section == "_avg":
        return float(value)
    if isinstance(value, Decimal):
        return float(value) if value % 1 else int(value)
    return value


def shape_aggregates(expressions, values, count_shorthand: bool) -> dict[str, Any]:
    result: dict[str, Any] = {}
    for (section, field, _), value in zip(expressions, values):
        if section == "_count" and count_shorthand:
            result["_count"] = value
            continue
        result.setdefault(section, {})[field] = _result_value(section, value)
    return result


def aggregate_window(db: Session, model, window: Query, sections: dict[str, Any]) -> dict[str, Any]:
    subquery = window.subquery()
    columns = {field: subquery.c[field] for field in scalar_fields(model)}
    expressions = aggregate_expressions(model, sections, columns)
    if not expressions:
        return {}
    row = db.execute(select(*[expression for _, _, expression in expressions]).select_from(subquery)).one()
    return shape_aggregates(expressions, row, count_shorthand=sections.get("_count") is True)


def count_window(db: Session, model, window: Query, fields: dict[str, bool] | None):
    subquery = window.subquery()
    if not fields:
        return db.execute(select(func.count()).select_from(subquery)).scalar_one()

    columns = {field: subquery.c[field] for field in scalar_fields(model)}
    expressions = aggregate_expressions(model, {"_count": fields}, columns)
    row = db.execute(select(*[expression for _, _, expression in expressions]).select_from(subquery)).one()
    return {field: value for (_, field, _), value in zip(expressions, row)}


def _having_clause(model, having: dict[str, Any]):
    clauses = []
    for key, value in having.items():
        if key in LOGICAL_KEYS:
            entries = value if isinstance(value, list) else [value]
            nested = [_having_clause(model, entry) for entry in entries]
            if key == "AND":
                clauses.append(and_(true(), *nested))
            elif key == "OR":
                clauses.append(or_(false(), *nested))
            elif nested:
                clauses.append(not_(and_(true(), *nested)))
            continue

        if key not in scalar_fields(model):
            raise ClientValidationError(f"Unknown field `{key}` in `having` for {model.__name__}.")
        column = getattr(model, key)
        if not isinstance(value, dict):
            clauses.append(scalar_condition(column, value))
            continue

        plain = {op: operand for op, operand in value.items() if op not in AGGREGATE_KEYS}
        if plain:
            clauses.append(scalar_condition(column, plain))
        for section in AGGREGATE_KEYS:
            if section not in value:
                continue
            if section in ("_avg", "_sum") and not _is_numeric(column):
                raise ClientValidationError(f"`{section}` only accepts numeric fields; `{key}` is not numeric.")
            aggregated = func.count(column) if section == "_count" else _FUNCTIONS[section](column)
            clauses.append(scalar_condition(aggregated, value[section]))
    return and_(true(), *clauses)


def _group_order(model, order_by) -> list:
    columns = {name: getattr(model, name) for name in scalar_fields(model)}
    ordering = []
    for item in order_by_items(order_by):
        (key, value), = item.items()
        if key in AGGREGATE_KEYS:
            if not isinstance(value, dict):
                raise ClientValidationError(f"Ordering by `{key}` takes `{{field: direction}}`.")
            for field, direction in value.items():
                if key == "_count" and field == "_all":
                    expression = func.count()
                else:
                    _check_field(model, key, field, columns)
                    column = columns[field]
                    expression = func.count(column) if key == "_count" else _FUNCTIONS[key](column)
                ordering.append(_directed(expression, direction))
        else:
            ordering.append(_directed(getattr(model, key), value))
    return ordering


def _directed(expression, direction):
    nulls = None
    if isinstance(direction, dict):
        direction, nulls = direction.get("sort"), direction.get("nulls")
    if direction not in ("asc", "desc"):
        raise ClientValidationError("Sort order must be `asc` or `desc`.")
    ordered = expression.desc() if direction == "desc" else expression.asc()
    if nulls == "first":
        ordered = ordered.nulls_first()
    elif nulls == "last":
        ordered = ordered.nulls_last()
    return ordered


def check_group_fields(model, by: list[str]) -> None:
    for field in by:
        if field not in scalar_fields(model):
            raise ClientValidationError(f"Unknown field `{field}` in `by` for {model.__name__}.")


def group_by(db: Session, model, args) -> list[dict[str, Any]]:
    columns = {name: getattr(model, name) for name in scalar_fields(model)}
    sections = args.sections()
    expressions = aggregate_expressions(model, sections, columns)
    group_columns = [columns[field] for field in args.by]

    query = (
        db.query(*group_columns, *[expression for _, _, expression in expressions])
        .filter(build_where(model, args.where))
        .group_by(*group_columns)
    )
    if args.having:
        query = query.having(_having_clause(model, args.having))
    ordering = _group_order(model, args.order_by)
    if ordering:
        query = query.order_by(*ordering)
    if args.skip:
        query = query.offset(args.skip)
    if args.take is not None:
        query = query.limit(args.take)

    results = []
    for row in query.all():
        record = dict(zip(args.by, row[: len(args.by)]))
        record.update(shape_aggregates(expressions, row[len(args.by):], count_shorthand=sections.get("_count") is True))
        results.append(record)
    return results
