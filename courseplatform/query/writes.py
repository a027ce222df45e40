"""Create/update data handling, including nested relation writes."""

from typing import Any

from pydantic import ValidationError
from sqlalchemy import Float, Integer, Numeric, insert, inspect
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from courseplatform.core.errors import ClientValidationError, RecordNotFoundError, validation_error_from_pydantic
from courseplatform.query.filters import build_where, relation, relation_link, require_unique_where, scalar_fields
from courseplatform.schemas import INPUT_SCHEMAS

ATOMIC_OPERATIONS = ("set", "increment", "decrement", "multiply", "divide")
TO_ONE_CREATE_OPERATIONS = ("connect", "create")
TO_ONE_UPDATE_OPERATIONS = ("connect", "create", "disconnect")
TO_MANY_CREATE_OPERATIONS = ("create", "create_many", "connect")
TO_MANY_UPDATE_OPERATIONS = ("create", "create_many", "connect", "disconnect", "delete_many")


def primary_key_name(model) -> str:
    mapper = inspect(model)
    column, = mapper.primary_key
    return mapper.get_property_by_column(column).key


def _as_list(value) -> list:
    if isinstance(value, list):
        return value
    return [value]


def split_data(model, data: dict[str, Any]) -> tuple[dict[str, Any], dict[str, Any]]:
    scalars, relations = {}, {}
    for key, value in data.items():
        if relation(model, key) is not None:
            relations[key] = value
        else:
            scalars[key] = value
    return scalars, relations


def validate_scalars(model, values: dict[str, Any], creating: bool) -> dict[str, Any]:
    create_schema, update_schema = INPUT_SCHEMAS[model.__name__]
    schema = create_schema if creating else update_schema
    try:
        validated = schema.model_validate(values).model_dump(exclude_unset=True)
    except ValidationError as exc:
        raise validation_error_from_pydantic(exc) from exc

    columns = inspect(model).columns
    for key, value in validated.items():
        if value is None and key in columns and not columns[key].nullable:
            raise ClientValidationError(f"Argument `{key}` must not be null.")
    return validated


def check_required(model, values: dict[str, Any]) -> None:
    mapper = inspect(model)
    for column in model.__table__.columns:
        if column.nullable or column.default is not None or column.server_default is not None:
            continue
        if column.primary_key and isinstance(column.type, Integer):
            continue
        name = mapper.get_property_by_column(column).key
        if values.get(name) is not None:
            continue
        linked = [prop.key for prop in mapper.relationships if not prop.uselist and relation_link(prop)[0] == name]
        raise ClientValidationError(f"Argument `{linked[0] if linked else name}` is missing.")


def _find_for_connect(db: Session, prop, where: dict[str, Any]):
    target = prop.mapper.class_
    require_unique_where(target, where)
    row = db.query(target).filter(build_where(target, where)).first()
    if row is None:
        raise RecordNotFoundError(
            f"No '{target.__name__}' record was found for a nested connect on relation '{prop.key}'.",
            meta={"relation": prop.key},
        )
    return row


def _check_operations(prop, ops, allowed: tuple[str, ...]) -> None:
    if not isinstance(ops, dict) or not ops or any(op not in allowed for op in ops):
        raise ClientValidationError(
            f"Relation `{prop.key}` takes one of {', '.join(f'`{op}`' for op in allowed)}."
        )


def _to_one_value(db: Session, model, prop, ops, creating: bool):
    """Foreign key value a nested to-one write resolves to."""
    _check_operations(prop, ops, TO_ONE_CREATE_OPERATIONS if creating else TO_ONE_UPDATE_OPERATIONS)
    if len(ops) != 1:
        raise ClientValidationError(f"Relation `{prop.key}` takes exactly one nested operation.")
    local, remote = relation_link(prop)
    (op, argument), = ops.items()

    if op == "connect":
        return getattr(_find_for_connect(db, prop, argument), remote)
    if op == "create":
        return getattr(create_record(db, prop.mapper.class_, argument), remote)

    if not model.__table__.columns[local].nullable:
        raise ClientValidationError(f"Relation `{prop.key}` on {model.__name__} is required and cannot be disconnected.")
    if argument is not True:
        raise ClientValidationError(f"`disconnect` on `{prop.key}` takes `True`.")
    return None


def _write_to_many(db: Session, instance, prop, ops, creating: bool) -> None:
    _check_operations(prop, ops, TO_MANY_CREATE_OPERATIONS if creating else TO_MANY_UPDATE_OPERATIONS)
    target = prop.mapper.class_
    local, remote = relation_link(prop)
    parent_value = getattr(instance, local)

    for op, argument in ops.items():
        if op == "create":
            for item in _as_list(argument):
                create_record(db, target, {**item, remote: parent_value})
        elif op == "create_many":
            if not isinstance(argument, dict) or "data" not in argument:
                raise ClientValidationError(f"`create_many` on `{prop.key}` takes `{{'data': [...]}}`.")
            rows = [{**item, remote: parent_value} for item in _as_list(argument["data"])]
            insert_rows(db, target, rows, skip_duplicates=bool(argument.get("skip_duplicates")))
        elif op == "connect":
            for where in _as_list(argument):
                setattr(_find_for_connect(db, prop, where), remote, parent_value)
        elif op == "disconnect":
            if not target.__table__.columns[remote].nullable:
                raise ClientValidationError(
                    f"Records of `{prop.key}` require a {instance.__class__.__name__} and cannot be disconnected."
                )
            for where in _as_list(argument):
                require_unique_where(target, where)
                for row in db.query(target).filter(build_where(target, where), getattr(target, remote) == parent_value):
                    setattr(row, remote, None)
        elif op == "delete_many":
            where = {"OR": _as_list(argument)} if argument else None
            delete_ids(db, target, matching_ids(db, target, where, getattr(target, remote) == parent_value))
    db.flush()


def create_record(db: Session, model, data: dict[str, Any]):
    scalars, relations = split_data(model, data)
    values = validate_scalars(model, scalars, creating=True)

    for name, ops in relations.items():
        prop = relation(model, name)
        if not prop.uselist:
            values[relation_link(prop)[0]] = _to_one_value(db, model, prop, ops, creating=True)
    check_required(model, values)

    instance = model(**values)
    db.add(instance)
    db.flush()

    for name, ops in relations.items():
        prop = relation(model, name)
        if prop.uselist:
            _write_to_many(db, instance, prop, ops, creating=True)
    return instance


def update_values(model, scalars: dict[str, Any]) -> dict[str, Any]:
    """Validated column values; atomic operations become SQL expressions."""
    plain = {key: value for key, value in scalars.items() if not isinstance(value, dict)}
    values = validate_scalars(model, plain, creating=False)

    for key, operation in scalars.items():
        if not isinstance(operation, dict):
            continue
        if key not in scalar_fields(model):
            raise ClientValidationError(f"Unknown argument `{key}` in `data` for {model.__name__}.")
        if len(operation) != 1 or next(iter(operation)) not in ATOMIC_OPERATIONS:
            raise ClientValidationError(
                f"`{key}` takes a value or exactly one of {', '.join(f'`{op}`' for op in ATOMIC_OPERATIONS)}."
            )
        (name, operand), = operation.items()
        if name == "set":
            values.update(validate_scalars(model, {key: operand}, creating=False))
            continue

        column = getattr(model, key)
        if not isinstance(column.type, (Integer, Float, Numeric)):
            raise ClientValidationError(f"`{name}` is only valid for numeric fields, not `{key}`.")
        if isinstance(operand, bool) or not isinstance(operand, (int, float)):
            raise ClientValidationError(f"`{name}` on `{key}` takes a number.")
        if name == "increment":
            values[key] = column + operand
        elif name == "decrement":
            values[key] = column - operand
        elif name == "multiply":
            values[key] = column * operand
        else:
            if operand == 0:
                raise ClientValidationError(f"Cannot divide `{key}` by zero.")
            values[key] = column / operand
    return values


def update_record(db: Session, instance, data: dict[str, Any]):
    model = instance.__class__
    scalars, relations = split_data(model, data)
    values = update_values(model, scalars)

    for name, ops in relations.items():
        prop = relation(model, name)
        if not prop.uselist:
            values[relation_link(prop)[0]] = _to_one_value(db, model, prop, ops, creating=False)

    for key, value in values.items():
        setattr(instance, key, value)
    db.flush()

    for name, ops in relations.items():
        prop = relation(model, name)
        if prop.uselist:
            _write_to_many(db, instance, prop, ops, creating=False)
    return instance


def matching_ids(db: Session, model, where, *criteria, limit: int | None = None) -> list:
    """Primary keys of rows matching ``where``, in key order."""
    key = getattr(model, primary_key_name(model))
    query = db.query(key).filter(build_where(model, where), *criteria).order_by(key)
    if limit is not None:
        query = query.limit(limit)
    return [row[0] for row in query.all()]


def update_ids(db: Session, model, ids: list, values: dict[str, Any]) -> int:
    if not ids:
        return 0
    if not values:
        return len(ids)
    key = getattr(model, primary_key_name(model))
    return db.query(model).filter(key.in_(ids)).update(values, synchronize_session=False)


def delete_ids(db: Session, model, ids: list) -> int:
    if not ids:
        return 0
    key = getattr(model, primary_key_name(model))
    return db.query(model).filter(key.in_(ids)).delete(synchronize_session=False)


def _insert_statement(model, dialect: str, skip_duplicates: bool):
    table = model.__table__
    if not skip_duplicates:
        return insert(table)
    if dialect == "sqlite":
        return sqlite_insert(table).on_conflict_do_nothing()
    if dialect == "postgresql":
        return postgresql_insert(table).on_conflict_do_nothing()
    if dialect in ("mysql", "mariadb"):
        return insert(table).prefix_with("IGNORE")
    raise ClientValidationError(f"`skip_duplicates` is not supported on {dialect}.")


def insert_rows(db: Session, model, rows: list[dict[str, Any]], skip_duplicates: bool) -> tuple[list, int]:
    """Insert scalar-only rows; returns created primary keys and the skipped count."""
    prepared = []
    for row in rows:
        scalars, relations = split_data(model, row)
        if relations:
            raise ClientValidationError(
                f"`create_many` does not accept relation fields ({', '.join(relations)}); use foreign keys."
            )
        values = validate_scalars(model, scalars, creating=True)
        check_required(model, values)
        prepared.append(values)

    statement = _insert_statement(model, db.get_bind().dialect.name, skip_duplicates)
    created, skipped = [], 0
    for values in prepared:
        result = db.execute(statement.values(**values))
        if result.rowcount == 0:
            skipped += 1
        else:
            created.append(result.inserted_primary_key[0])
    return created, skipped
