from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Any

from sqlalchemy import Select, delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import InstrumentedAttribute, Session, aliased

from home_inventory.errors import NotFoundError, ValidationError
from home_inventory.models import Base, Box, BoxItem, Item, ItemType, Location, Size
from home_inventory.services.attachment_service import AttachmentStore, DeleteResult


class EntityKind(str, Enum):
    TYPES = 'types'
    LOCATIONS = 'locations'
    SIZES = 'sizes'
    ITEMS = 'items'
    BOXES = 'boxes'
    BOX_ITEMS = 'box_items'


class OnDelete(str, Enum):
    SET_NULL = 'SET NULL'
    CASCADE = 'CASCADE'


def _optional_text(field: str, value: Any) -> str | None:
    if value is None:
        return None
    return str(value).strip() or None


def _optional_int(field: str, value: Any) -> int | None:
    if isinstance(value, bool):
        raise ValidationError(field, f'{field} must be a whole number')
    if value is None:
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    raw = str(value).strip()
    if raw == '':
        return None
    try:
        return int(raw)
    except ValueError as exc:
        raise ValidationError(field, f'{field} must be a whole number') from exc


def _optional_date(field: str, value: Any) -> date | None:
    if value is None or isinstance(value, date):
        return value
    raw = str(value).strip()
    if raw == '':
        return None
    try:
        return date.fromisoformat(raw)
    except ValueError as exc:
        raise ValidationError(field, f'{field} must be a YYYY-MM-DD date') from exc


def _required_text(field: str, value: Any) -> str:
    text = '' if value is None else str(value).strip()
    if not text:
        raise ValidationError.required(field)
    return text


@dataclass(frozen=True)
class LookupRef:
    column: InstrumentedAttribute
    model: type[Base]
    label: str


@dataclass(frozen=True)
class ChildCount:
    column: InstrumentedAttribute
    label: str


@dataclass(frozen=True)
class Dependent:
    column: InstrumentedAttribute
    on_delete: OnDelete


@dataclass(frozen=True)
class EntitySpec:
    model: type[Base]
    resource: str
    required_field: str
    order_by: tuple = ()
    optional_fields: tuple[tuple[str, Callable[[str, Any], Any]], ...] = ()
    parent: InstrumentedAttribute | None = None
    parent_model: type[Base] | None = None
    lookups: tuple[LookupRef, ...] = ()
    counts: tuple[ChildCount, ...] = ()
    dependents: tuple[Dependent, ...] = ()
    unique_required: bool = False
    has_attachments: bool = False


def _lookup_spec(model: type[Base], resource: str, dependents: tuple[Dependent, ...]) -> EntitySpec:
    return EntitySpec(
        model=model,
        resource=resource,
        required_field='name',
        order_by=(model.name.asc(),),
        dependents=dependents,
        unique_required=True,
    )


ENTITY_SPECS: dict[EntityKind, EntitySpec] = {
    EntityKind.TYPES: _lookup_spec(ItemType, 'type', (Dependent(Item.type_id, OnDelete.SET_NULL),)),
    EntityKind.LOCATIONS: _lookup_spec(
        Location,
        'location',
        (Dependent(Item.location_id, OnDelete.SET_NULL), Dependent(Box.location_id, OnDelete.SET_NULL)),
    ),
    EntityKind.SIZES: _lookup_spec(Size, 'size', (Dependent(Item.size_id, OnDelete.SET_NULL),)),
    EntityKind.ITEMS: EntitySpec(
        model=Item,
        resource='item',
        required_field='label',
        order_by=(Item.id.desc(),),
        optional_fields=(
            ('description', _optional_text),
            ('qty', _optional_int),
            ('store', _optional_text),
            ('purchase_date', _optional_date),
            ('warranty_months', _optional_int),
            ('article_no', _optional_text),
            ('link_url', _optional_text),
            ('notes', _optional_text),
            ('box_no', _optional_text),
            ('type_id', _optional_int),
            ('size_id', _optional_int),
            ('location_id', _optional_int),
        ),
        lookups=(
            LookupRef(Item.type_id, ItemType, 'type_name'),
            LookupRef(Item.size_id, Size, 'size_name'),
            LookupRef(Item.location_id, Location, 'location_name'),
        ),
        has_attachments=True,
    ),
    EntityKind.BOXES: EntitySpec(
        model=Box,
        resource='box',
        required_field='label',
        order_by=(Box.label.asc(), Box.id.asc()),
        optional_fields=(('location_id', _optional_int),),
        lookups=(LookupRef(Box.location_id, Location, 'location_name'),),
        counts=(ChildCount(BoxItem.box_id, 'item_count'),),
        dependents=(Dependent(BoxItem.box_id, OnDelete.CASCADE),),
    ),
    EntityKind.BOX_ITEMS: EntitySpec(
        model=BoxItem,
        resource='box item',
        required_field='name',
        order_by=(BoxItem.id.desc(),),
        optional_fields=(('qty', _optional_int),),
        parent=BoxItem.box_id,
        parent_model=Box,
    ),
}


def _listing_query(spec: EntitySpec) -> Select:
    model = spec.model
    stmt = select(*model.__table__.columns)
    for ref in spec.lookups:
        target = aliased(ref.model)
        stmt = stmt.add_columns(target.name.label(ref.label)).outerjoin(target, target.id == ref.column)
    for count in spec.counts:
        child_count = select(func.count()).where(count.column == model.id).scalar_subquery()
        stmt = stmt.add_columns(child_count.label(count.label))
    return stmt


def list_entities(db: Session, kind: EntityKind, *, parent_id: int | None = None) -> list[dict]:
    spec = ENTITY_SPECS[kind]
    stmt = _listing_query(spec)
    if spec.parent is not None and parent_id is not None:
        stmt = stmt.where(spec.parent == parent_id)
    rows = db.execute(stmt.order_by(*spec.order_by)).mappings().all()
    return [dict(row) for row in rows]


def get_entity(db: Session, kind: EntityKind, entity_id: int) -> dict:
    spec = ENTITY_SPECS[kind]
    row = db.execute(_listing_query(spec).where(spec.model.id == entity_id)).mappings().one_or_none()
    if row is None:
        raise NotFoundError(spec.resource, entity_id)
    return dict(row)


def _check_references(db: Session, spec: EntitySpec, values: dict[str, Any]) -> None:
    for ref in spec.lookups:
        value = values.get(ref.column.key)
        if value is not None and db.get(ref.model, value) is None:
            raise ValidationError(ref.column.key, f'{ref.column.key} {value} does not exist')


def create_entity(
    db: Session,
    kind: EntityKind,
    payload: Mapping[str, Any],
    *,
    parent_id: int | None = None,
) -> int:
    spec = ENTITY_SPECS[kind]
    required = spec.required_field
    values: dict[str, Any] = {required: _required_text(required, payload.get(required))}
    for name, coerce in spec.optional_fields:
        values[name] = coerce(name, payload.get(name))

    if spec.parent is not None:
        if parent_id is None:
            raise ValidationError.required(spec.parent.key)
        if db.get(spec.parent_model, parent_id) is None:
            raise NotFoundError(ENTITY_SPECS_BY_MODEL[spec.parent_model].resource, parent_id)
        values[spec.parent.key] = parent_id

    _check_references(db, spec, values)

    if spec.unique_required:
        column = getattr(spec.model, required)
        existing = db.execute(select(spec.model.id).where(column == values[required])).scalar_one_or_none()
        if existing is not None:
            raise _already_exists(spec, values[required])

    entity = spec.model(**values)
    db.add(entity)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        # A concurrent create can win between the check above and this insert.
        if spec.unique_required:
            raise _already_exists(spec, values[required]) from exc
        raise
    return entity.id


def _already_exists(spec: EntitySpec, value: str) -> ValidationError:
    field = spec.required_field
    return ValidationError(field, f'{spec.resource} {value!r} already exists', code=f'{field}_exists')


def delete_entity(
    db: Session,
    kind: EntityKind,
    entity_id: int,
    *,
    attachments: AttachmentStore | None = None,
) -> DeleteResult:
    spec = ENTITY_SPECS[kind]
    if spec.has_attachments and attachments is None:
        raise ValueError(f'Deleting {spec.resource} rows requires an attachment store')
    if db.get(spec.model, entity_id) is None:
        return DeleteResult(deleted=False)

    filenames: list[str] = []
    if spec.has_attachments:
        filenames = attachments.detach_parent(db, entity_id)

    # Cleared here as well as by the constraints, which legacy tables may lack.
    for dependent in spec.dependents:
        column = dependent.column
        if dependent.on_delete is OnDelete.SET_NULL:
            db.execute(update(column.class_).where(column == entity_id).values({column.key: None}))
        else:
            db.execute(delete(column.class_).where(column == entity_id))

    db.execute(delete(spec.model).where(spec.model.id == entity_id))
    db.commit()

    advisories = attachments.discard_files(filenames) if filenames else []
    return DeleteResult(deleted=True, advisories=advisories)


ENTITY_SPECS_BY_MODEL: dict[type[Base], EntitySpec] = {spec.model: spec for spec in ENTITY_SPECS.values()}
