"""Call-argument models for delegate operations.

These run before a session is opened, so anything rejected here never
reaches the database.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from courseplatform.core.errors import validation_error_from_pydantic

LOGICAL_KEYS = ("AND", "OR", "NOT")
AGGREGATE_KEYS = ("_count", "_avg", "_sum", "_min", "_max")

OrderBy = dict[str, Any] | list[dict[str, Any]]


def parse_args(args_model: type[BaseModel], **values) -> BaseModel:
    payload = {key: value for key, value in values.items() if value is not None}
    try:
        return args_model.model_validate(payload)
    except ValidationError as exc:
        raise validation_error_from_pydantic(exc) from exc


def order_by_items(order_by) -> list[dict[str, Any]]:
    if order_by is None:
        return []
    if isinstance(order_by, dict):
        return [{key: value} for key, value in order_by.items()]
    items = []
    for entry in order_by:
        items.extend({key: value} for key, value in entry.items())
    return items


class _Args(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)


class ProjectionArgs(_Args):
    select: dict[str, Any] | None = None
    include: dict[str, Any] | None = None
    omit: dict[str, bool] | None = None

    @model_validator(mode="after")
    def check_projection(self):
        if self.select is not None and self.include is not None:
            raise ValueError("Please either use `include` or `select`, but not both at the same time.")
        if self.select is not None and self.omit is not None:
            raise ValueError("Please either use `omit` or `select`, but not both at the same time.")
        return self


class FindUniqueArgs(ProjectionArgs):
    where: dict[str, Any]


class FindManyArgs(ProjectionArgs):
    where: dict[str, Any] | None = None
    order_by: OrderBy | None = None
    cursor: dict[str, Any] | None = None
    skip: int | None = Field(default=None, ge=0)
    take: int | None = None
    distinct: list[str] | None = None

    @field_validator("distinct", mode="before")
    @classmethod
    def wrap_distinct(cls, value):
        if isinstance(value, str):
            return [value]
        return value


class CreateArgs(ProjectionArgs):
    data: dict[str, Any]


class CreateManyArgs(_Args):
    data: list[dict[str, Any]]
    skip_duplicates: bool = False

    @field_validator("data", mode="before")
    @classmethod
    def wrap_data(cls, value):
        if isinstance(value, dict):
            return [value]
        return value


class UpdateArgs(ProjectionArgs):
    where: dict[str, Any]
    data: dict[str, Any]


class UpdateManyArgs(_Args):
    where: dict[str, Any] | None = None
    data: dict[str, Any]
    limit: int | None = Field(default=None, ge=0)


class UpsertArgs(ProjectionArgs):
    where: dict[str, Any]
    create: dict[str, Any]
    update: dict[str, Any]


class DeleteArgs(ProjectionArgs):
    where: dict[str, Any]


class DeleteManyArgs(_Args):
    where: dict[str, Any] | None = None
    limit: int | None = Field(default=None, ge=0)


class CountArgs(_Args):
    where: dict[str, Any] | None = None
    order_by: OrderBy | None = None
    cursor: dict[str, Any] | None = None
    skip: int | None = Field(default=None, ge=0)
    take: int | None = None
    select: dict[str, bool] | None = None


class _AggregateSections(_Args):
    count: bool | dict[str, bool] | None = Field(default=None, alias="_count")
    avg: dict[str, bool] | None = Field(default=None, alias="_avg")
    sum: dict[str, bool] | None = Field(default=None, alias="_sum")
    min: dict[str, bool] | None = Field(default=None, alias="_min")
    max: dict[str, bool] | None = Field(default=None, alias="_max")

    def sections(self) -> dict[str, Any]:
        requested = {
            "_count": self.count,
            "_avg": self.avg,
            "_sum": self.sum,
            "_min": self.min,
            "_max": self.max,
        }
        return {key: value for key, value in requested.items() if value}


class AggregateArgs(_AggregateSections):
    where: dict[str, Any] | None = None
    order_by: OrderBy | None = None
    cursor: dict[str, Any] | None = None
    skip: int | None = Field(default=None, ge=0)
    take: int | None = None


def _having_scalar_fields(having: dict[str, Any]) -> set[str]:
    fields: set[str] = set()
    for key, value in having.items():
        if key in LOGICAL_KEYS:
            nested = value if isinstance(value, list) else [value]
            for entry in nested:
                fields |= _having_scalar_fields(entry)
            continue
        if not isinstance(value, dict) or any(op not in AGGREGATE_KEYS for op in value):
            fields.add(key)
    return fields


class GroupByArgs(_AggregateSections):
    by: list[str] = Field(min_length=1)
    where: dict[str, Any] | None = None
    order_by: OrderBy | None = None
    having: dict[str, Any] | None = None
    skip: int | None = Field(default=None, ge=0)
    take: int | None = Field(default=None, ge=0)

    @field_validator("by", mode="before")
    @classmethod
    def wrap_by(cls, value):
        if isinstance(value, str):
            return [value]
        return value

    @model_validator(mode="after")
    def check_group_fields(self):
        grouped = set(self.by)

        ordered = {key for item in order_by_items(self.order_by) for key in item if key not in AGGREGATE_KEYS}
        missing = sorted(ordered - grouped)
        if missing:
            raise ValueError(
                "Every field used for `order_by` must be included in the `by` arguments of the query. "
                f"Missing fields: {', '.join(missing)}"
            )

        missing = sorted(_having_scalar_fields(self.having or {}) - grouped)
        if missing:
            raise ValueError(
                "Every field used in `having` filters must either be an aggregation filter "
                f"or be included in the `by` arguments of the query. Missing fields: {', '.join(missing)}"
            )

        if (self.skip is not None or self.take is not None) and not self.order_by:
            raise ValueError("`order_by` is required when using `skip` or `take` with `group_by`.")
        return self
