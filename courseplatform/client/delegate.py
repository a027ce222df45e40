"""Operation delegates, one per entity.

A delegate validates the call arguments, opens a session through its client
and returns plain dict records. Every ``ClientError`` leaving a delegate
method has been rendered for that call site and reported on the ``error``
log level.
"""

import functools
from typing import Any

from courseplatform.core.errors import ClientError, ClientValidationError, RecordNotFoundError
from courseplatform.core.events import LogEvent
from courseplatform.query.aggregates import aggregate_window, check_group_fields, count_window, group_by
from courseplatform.query.args import (
    AggregateArgs,
    CountArgs,
    CreateArgs,
    CreateManyArgs,
    DeleteArgs,
    DeleteManyArgs,
    FindManyArgs,
    FindUniqueArgs,
    GroupByArgs,
    UpdateArgs,
    UpdateManyArgs,
    UpsertArgs,
    parse_args,
)
from courseplatform.query.filters import build_where, require_unique_where, scalar_fields
from courseplatform.query.ordering import cursor_condition, resolve_order
from courseplatform.query.projection import build_selection, project
from courseplatform.query.writes import (
    create_record,
    delete_ids,
    insert_rows,
    matching_ids,
    primary_key_name,
    split_data,
    update_ids,
    update_record,
    update_values,
)

NOT_FOUND_MESSAGE = "No record was found for a query."


def _operation(method):
    @functools.wraps(method)
    def wrapper(self, **kwargs):
        try:
            return method(self, **kwargs)
        except ClientError as exc:
            self._client._report(exc, f"{self.name}.{method.__name__}")
            raise

    return wrapper


def _dependent_record_missing(action: str) -> RecordNotFoundError:
    cause = f"Record to {action} not found."
    return RecordNotFoundError(
        f"An operation failed because it depends on one or more records that were required but not found. {cause}",
        meta={"cause": cause},
    )


class ModelDelegate:
    """Typed operations for one model, e.g. ``client.user.find_many(...)``."""

    def __init__(self, client, name: str, model) -> None:
        self._client = client
        self.name = name
        self.model = model

    def _selection(self, args):
        return build_selection(
            self.model,
            select=args.select,
            include=args.include,
            omit=args.omit,
            global_omit=self._client._global_omit,
        )

    def _window(self, db, where, order_by, cursor, skip, take, paginate: bool = True):
        """Query for the rows in the requested page and whether it runs backwards."""
        model = self.model
        terms = resolve_order(model, order_by)
        reverse = take is not None and take < 0

        query = db.query(model).filter(build_where(model, where))
        if cursor is not None:
            query = query.filter(cursor_condition(db, model, cursor, terms, reverse))
        query = query.order_by(*[term.clause(reverse) for term in terms])
        if paginate:
            if skip:
                query = query.offset(skip)
            if take is not None:
                query = query.limit(abs(take))
        return query, reverse

    def _find_rows(self, db, args, take=None) -> list:
        take = args.take if take is None else take
        if not args.distinct:
            query, reverse = self._window(db, args.where, args.order_by, args.cursor, args.skip, take)
            rows = query.all()
        else:
            unknown = [field for field in args.distinct if field not in scalar_fields(self.model)]
            if unknown:
                raise ClientValidationError(f"Unknown field `{unknown[0]}` in `distinct` for {self.model.__name__}.")
            query, reverse = self._window(db, args.where, args.order_by, args.cursor, None, take, paginate=False)
            seen = set()
            rows = []
            for row in query:
                marker = tuple(getattr(row, field) for field in args.distinct)
                if marker in seen:
                    continue
                seen.add(marker)
                rows.append(row)
            start = args.skip or 0
            rows = rows[start:start + abs(take)] if take is not None else rows[start:]
        if reverse:
            rows.reverse()
        return rows

    def _find_unique_row(self, db, where):
        return db.query(self.model).filter(build_where(self.model, where)).first()

    @_operation
    def find_unique(self, **kwargs) -> dict | None:
        args = parse_args(FindUniqueArgs, **kwargs)
        require_unique_where(self.model, args.where)
        selection = self._selection(args)
        with self._client._session_scope() as db:
            row = self._find_unique_row(db, args.where)
            if row is None:
                return None
            return project(db, self.model, [row], selection)[0]

    @_operation
    def find_unique_or_throw(self, **kwargs) -> dict:
        args = parse_args(FindUniqueArgs, **kwargs)
        require_unique_where(self.model, args.where)
        selection = self._selection(args)
        with self._client._session_scope() as db:
            row = self._find_unique_row(db, args.where)
            if row is None:
                raise RecordNotFoundError(NOT_FOUND_MESSAGE, meta={"model_name": self.model.__name__})
            return project(db, self.model, [row], selection)[0]

    @_operation
    def find_first(self, **kwargs) -> dict | None:
        args = parse_args(FindManyArgs, **kwargs)
        selection = self._selection(args)
        with self._client._session_scope() as db:
            rows = self._find_rows(db, args, take=args.take if args.take is not None else 1)
            if not rows:
                return None
            return project(db, self.model, rows[:1], selection)[0]

    @_operation
    def find_first_or_throw(self, **kwargs) -> dict:
        args = parse_args(FindManyArgs, **kwargs)
        selection = self._selection(args)
        with self._client._session_scope() as db:
            rows = self._find_rows(db, args, take=args.take if args.take is not None else 1)
            if not rows:
                raise RecordNotFoundError(NOT_FOUND_MESSAGE, meta={"model_name": self.model.__name__})
            return project(db, self.model, rows[:1], selection)[0]

    @_operation
    def find_many(self, **kwargs) -> list[dict]:
        args = parse_args(FindManyArgs, **kwargs)
        selection = self._selection(args)
        with self._client._session_scope() as db:
            return project(db, self.model, self._find_rows(db, args), selection)

    @_operation
    def create(self, **kwargs) -> dict:
        args = parse_args(CreateArgs, **kwargs)
        selection = self._selection(args)
        with self._client._session_scope() as db:
            instance = create_record(db, self.model, args.data)
            return project(db, self.model, [instance], selection)[0]

    def _insert_many(self, db, args) -> list:
        created, skipped = insert_rows(db, self.model, args.data, args.skip_duplicates)
        if skipped:
            self._client._emitter.emit(
                "warn",
                LogEvent(f"{self.name}: skipped {skipped} duplicate row(s) in create_many."),
            )
        return created

    @_operation
    def create_many(self, **kwargs) -> dict[str, int]:
        args = parse_args(CreateManyArgs, **kwargs)
        with self._client._session_scope() as db:
            return {"count": len(self._insert_many(db, args))}

    @_operation
    def create_many_and_return(self, **kwargs) -> list[dict]:
        args = parse_args(CreateManyArgs, **kwargs)
        selection = build_selection(self.model, global_omit=self._client._global_omit)
        with self._client._session_scope() as db:
            created = self._insert_many(db, args)
            rows = self._rows_by_key(db, created)
            return project(db, self.model, rows, selection)

    def _rows_by_key(self, db, keys: list) -> list:
        """Rows for ``keys``, in the order the keys are given."""
        if not keys:
            return []
        key = getattr(self.model, primary_key_name(self.model))
        loaded = db.query(self.model).filter(key.in_(keys)).populate_existing().all()
        by_key = {getattr(row, key.key): row for row in loaded}
        return [by_key[value] for value in keys if value in by_key]

    @_operation
    def update(self, **kwargs) -> dict:
        args = parse_args(UpdateArgs, **kwargs)
        require_unique_where(self.model, args.where)
        selection = self._selection(args)
        with self._client._session_scope() as db:
            instance = self._find_unique_row(db, args.where)
            if instance is None:
                raise _dependent_record_missing("update")
            update_record(db, instance, args.data)
            return project(db, self.model, [instance], selection)[0]

    def _scalar_update(self, db, args) -> tuple[list, int]:
        scalars, relations = split_data(self.model, args.data)
        if relations:
            raise ClientValidationError(
                f"`update_many` only accepts scalar fields; got relation(s) {', '.join(relations)}."
            )
        values = update_values(self.model, scalars)
        ids = matching_ids(db, self.model, args.where, limit=args.limit)
        return ids, update_ids(db, self.model, ids, values)

    @_operation
    def update_many(self, **kwargs) -> dict[str, int]:
        args = parse_args(UpdateManyArgs, **kwargs)
        with self._client._session_scope() as db:
            _, count = self._scalar_update(db, args)
            return {"count": count}

    @_operation
    def update_many_and_return(self, **kwargs) -> list[dict]:
        args = parse_args(UpdateManyArgs, **kwargs)
        if primary_key_name(self.model) in args.data:
            raise ClientValidationError("`update_many_and_return` cannot change the primary key.")
        selection = build_selection(self.model, global_omit=self._client._global_omit)
        with self._client._session_scope() as db:
            ids, _ = self._scalar_update(db, args)
            return project(db, self.model, self._rows_by_key(db, ids), selection)

    @_operation
    def upsert(self, **kwargs) -> dict:
        args = parse_args(UpsertArgs, **kwargs)
        require_unique_where(self.model, args.where)
        selection = self._selection(args)
        with self._client._session_scope() as db:
            instance = self._find_unique_row(db, args.where)
            if instance is None:
                instance = create_record(db, self.model, args.create)
            else:
                update_record(db, instance, args.update)
            return project(db, self.model, [instance], selection)[0]

    @_operation
    def delete(self, **kwargs) -> dict:
        args = parse_args(DeleteArgs, **kwargs)
        require_unique_where(self.model, args.where)
        selection = self._selection(args)
        with self._client._session_scope() as db:
            instance = self._find_unique_row(db, args.where)
            if instance is None:
                raise _dependent_record_missing("delete")
            record = project(db, self.model, [instance], selection)[0]
            delete_ids(db, self.model, [getattr(instance, primary_key_name(self.model))])
            db.expunge(instance)
            return record

    @_operation
    def delete_many(self, **kwargs) -> dict[str, int]:
        args = parse_args(DeleteManyArgs, **kwargs)
        with self._client._session_scope() as db:
            ids = matching_ids(db, self.model, args.where, limit=args.limit)
            return {"count": delete_ids(db, self.model, ids)}

    @_operation
    def count(self, **kwargs) -> int | dict[str, int]:
        args = parse_args(CountArgs, **kwargs)
        with self._client._session_scope() as db:
            window, _ = self._window(db, args.where, args.order_by, args.cursor, args.skip, args.take)
            return count_window(db, self.model, window, args.select)

    @_operation
    def aggregate(self, **kwargs) -> dict[str, Any]:
        args = parse_args(AggregateArgs, **kwargs)
        with self._client._session_scope() as db:
            window, _ = self._window(db, args.where, args.order_by, args.cursor, args.skip, args.take)
            return aggregate_window(db, self.model, window, args.sections())

    @_operation
    def group_by(self, **kwargs) -> list[dict[str, Any]]:
        args = parse_args(GroupByArgs, **kwargs)
        check_group_fields(self.model, args.by)
        with self._client._session_scope() as db:
            return group_by(db, self.model, args)
