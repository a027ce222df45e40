"""Turn loaded rows into plain dict records shaped by select/include/omit."""

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import func, inspect
from sqlalchemy.orm import Session

from courseplatform.core.errors import ClientValidationError
from courseplatform.query.filters import build_where, relation, relation_link, scalar_fields
from courseplatform.query.ordering import resolve_order

NESTED_TO_MANY_KEYS = ("select", "include", "omit", "where", "order_by", "skip", "take")
NESTED_TO_ONE_KEYS = ("select", "include", "omit")


@dataclass
class RelationLoad:
    selection: "Selection"
    where: dict | None = None
    order_by: Any = None
    skip: int | None = None
    take: int | None = None


@dataclass
class Selection:
    scalars: list[str]
    relations: dict[str, RelationLoad] = field(default_factory=dict)
    counts: dict[str, dict | None] = field(default_factory=dict)


def build_selection(model, select=None, include=None, omit=None, global_omit=None) -> Selection:
    if select is not None and include is not None:
        raise ClientValidationError("Please either use `include` or `select`, but not both at the same time.")
    if select is not None and omit is not None:
        raise ClientValidationError("Please either use `omit` or `select`, but not both at the same time.")

    fields = scalar_fields(model)
    omitted = dict((global_omit or {}).get(model.__name__, {}))
    omitted.update(omit or {})
    for name in omitted:
        if name not in fields:
            raise ClientValidationError(f"Unknown field `{name}` in `omit` for {model.__name__}.")

    if select is not None:
        selection = Selection(scalars=[])
        requested = select
    else:
        selection = Selection(scalars=[name for name in fields if not omitted.get(name)])
        requested = include or {}

    for key, value in requested.items():
        if not value:
            continue
        if key == "_count":
            selection.counts = _count_selection(model, value)
        elif key in fields:
            if select is None:
                raise ClientValidationError(
                    f"Invalid scalar field `{key}` for include statement on {model.__name__}."
                )
            selection.scalars.append(key)
        elif relation(model, key) is not None:
            selection.relations[key] = _relation_load(model, key, value, global_omit)
        else:
            raise ClientValidationError(f"Unknown field `{key}` for {model.__name__}.")
    return selection


def _count_selection(model, value) -> dict[str, dict | None]:
    to_many = _to_many_relations(model)
    if value is True:
        return {name: None for name in to_many}
    if not isinstance(value, dict) or set(value) != {"select"}:
        raise ClientValidationError("`_count` takes `True` or `{'select': {...}}`.")

    counts = {}
    for name, wanted in value["select"].items():
        if name not in to_many:
            raise ClientValidationError(f"`{name}` is not a to-many relation of {model.__name__}.")
        if not wanted:
            continue
        if wanted is True:
            counts[name] = None
        elif isinstance(wanted, dict) and set(wanted) <= {"where"}:
            counts[name] = wanted.get("where")
        else:
            raise ClientValidationError(f"Invalid `_count` selection for `{name}`.")
    return counts


def _to_many_relations(model) -> list[str]:
    return [prop.key for prop in inspect(model).relationships if prop.uselist]


def _relation_load(model, name: str, value, global_omit) -> RelationLoad:
    prop = relation(model, name)
    target = prop.mapper.class_
    if value is True:
        return RelationLoad(build_selection(target, global_omit=global_omit))
    if not isinstance(value, dict):
        raise ClientValidationError(f"Invalid selection for relation `{name}` on {model.__name__}.")

    allowed = NESTED_TO_MANY_KEYS if prop.uselist else NESTED_TO_ONE_KEYS
    unknown = [key for key in value if key not in allowed]
    if unknown:
        raise ClientValidationError(f"Unknown argument `{unknown[0]}` for relation `{name}`.")
    take = value.get("take")
    if take is not None and take < 0:
        raise ClientValidationError(f"`take` for relation `{name}` must not be negative.")
    skip = value.get("skip")
    if skip is not None and skip < 0:
        raise ClientValidationError(f"`skip` for relation `{name}` must not be negative.")

    return RelationLoad(
        selection=build_selection(
            target,
            select=value.get("select"),
            include=value.get("include"),
            omit=value.get("omit"),
            global_omit=global_omit,
        ),
        where=value.get("where"),
        order_by=value.get("order_by"),
        skip=skip,
        take=take,
    )


def project(db: Session, model, rows: list, selection: Selection) -> list[dict]:
    records = [{name: getattr(row, name) for name in selection.scalars} for row in rows]
    if not rows:
        return records

    for name, load in selection.relations.items():
        attached = _load_relation(db, model, rows, name, load)
        for record, value in zip(records, attached):
            record[name] = value

    if selection.counts:
        counted = {name: _count_relation(db, model, rows, name, where) for name, where in selection.counts.items()}
        for index, record in enumerate(records):
            record["_count"] = {name: values[index] for name, values in counted.items()}
    return records


def _load_relation(db: Session, model, rows: list, name: str, load: RelationLoad) -> list:
    prop = relation(model, name)
    target = prop.mapper.class_
    local, remote = relation_link(prop)

    keys = {getattr(row, local) for row in rows} - {None}
    children = []
    if keys:
        order = resolve_order(target, load.order_by)
        children = (
            db.query(target)
            .filter(getattr(target, remote).in_(list(keys)), build_where(target, load.where))
            .order_by(*[term.clause() for term in order])
            .all()
        )

    grouped = defaultdict(list)
    for child in children:
        grouped[getattr(child, remote)].append(child)

    per_row = []
    for row in rows:
        group = grouped.get(getattr(row, local), [])
        if prop.uselist:
            start = load.skip or 0
            group = group[start:start + load.take] if load.take is not None else group[start:]
        else:
            group = group[:1]
        per_row.append(group)

    flattened = [child for group in per_row for child in group]
    projected = iter(project(db, target, flattened, load.selection))
    attached = []
    for group in per_row:
        values = [next(projected) for _ in group]
        if prop.uselist:
            attached.append(values)
        else:
            attached.append(values[0] if values else None)
    return attached


def _count_relation(db: Session, model, rows: list, name: str, where) -> list[int]:
    prop = relation(model, name)
    target = prop.mapper.class_
    local, remote = relation_link(prop)
    remote_column = getattr(target, remote)

    keys = {getattr(row, local) for row in rows} - {None}
    totals = dict(
        db.query(remote_column, func.count())
        .filter(remote_column.in_(list(keys)), build_where(target, where))
        .group_by(remote_column)
        .all()
    )
    return [totals.get(getattr(row, local), 0) for row in rows]
