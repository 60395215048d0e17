from __future__ import annotations

import logging
from enum import Enum
from typing import Any

from fastapi import APIRouter, Body, Depends, File, Form, Request, UploadFile
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from home_inventory.db import Database, get_database, get_db
from home_inventory.errors import TransientError, ValidationError
from home_inventory.models import AttachmentKind
from home_inventory.services.attachment_service import AttachmentStore
from home_inventory.services.entity_service import (
    EntityKind,
    create_entity,
    delete_entity,
    get_entity,
    list_entities,
)

logger = logging.getLogger('home_inventory.api')

router = APIRouter(prefix='/api', tags=['api'])


class LookupKind(str, Enum):
    TYPES = 'types'
    LOCATIONS = 'locations'
    SIZES = 'sizes'


def get_attachment_store(request: Request) -> AttachmentStore:
    return request.app.state.attachments


def _upload(
    store: AttachmentStore,
    db: Session,
    *,
    item_id: int,
    kind: str | AttachmentKind | None,
    file: UploadFile | None,
) -> dict:
    if file is None:
        raise ValidationError.required('file')
    return store.upload(
        db,
        parent_id=item_id,
        kind=kind,
        original_filename=file.filename,
        mime_type=file.content_type,
        content=file.file,
        size_bytes=file.size,
    )


@router.get('/health')
def health(database: Database = Depends(get_database)):
    try:
        database.ping()
    except (TransientError, SQLAlchemyError) as exc:
        logger.warning('health check failed: %s', exc)
        return JSONResponse(status_code=500, content={'ok': False, 'db': False, 'error': str(exc)})
    return {'ok': True, 'db': True}


@router.get('/items')
def list_items(db: Session = Depends(get_db)):
    return list_entities(db, EntityKind.ITEMS)


@router.post('/items')
def create_item(payload: dict[str, Any] = Body(default={}), db: Session = Depends(get_db)):
    return {'id': create_entity(db, EntityKind.ITEMS, payload)}


@router.get('/items/{item_id}')
def get_item(item_id: int, db: Session = Depends(get_db)):
    return get_entity(db, EntityKind.ITEMS, item_id)


@router.delete('/items/{item_id}')
def delete_item(
    item_id: int,
    db: Session = Depends(get_db),
    store: AttachmentStore = Depends(get_attachment_store),
):
    delete_entity(db, EntityKind.ITEMS, item_id, attachments=store)
    return {'ok': True}


@router.get('/items/{item_id}/attachments')
def list_attachments(
    item_id: int,
    kind: AttachmentKind | None = None,
    db: Session = Depends(get_db),
    store: AttachmentStore = Depends(get_attachment_store),
):
    return store.list_for(db, item_id, kind=kind)


@router.post('/items/{item_id}/attachments')
def upload_attachment(
    item_id: int,
    kind: str = Form(AttachmentKind.RECEIPT.value),
    file: UploadFile | None = File(None),
    db: Session = Depends(get_db),
    store: AttachmentStore = Depends(get_attachment_store),
):
    return _upload(store, db, item_id=item_id, kind=kind, file=file)


@router.get('/items/{item_id}/receipts')
def list_receipts(
    item_id: int,
    db: Session = Depends(get_db),
    store: AttachmentStore = Depends(get_attachment_store),
):
    return store.list_for(db, item_id, kind=AttachmentKind.RECEIPT)


@router.post('/items/{item_id}/receipts')
def upload_receipt(
    item_id: int,
    file: UploadFile | None = File(None),
    db: Session = Depends(get_db),
    store: AttachmentStore = Depends(get_attachment_store),
):
    return _upload(store, db, item_id=item_id, kind=AttachmentKind.RECEIPT, file=file)


@router.delete('/receipts/{attachment_id}')
def delete_receipt(
    attachment_id: int,
    db: Session = Depends(get_db),
    store: AttachmentStore = Depends(get_attachment_store),
):
    store.delete(db, attachment_id, kind=AttachmentKind.RECEIPT)
    return {'ok': True}


@router.delete('/attachments/{attachment_id}')
def delete_attachment(
    attachment_id: int,
    db: Session = Depends(get_db),
    store: AttachmentStore = Depends(get_attachment_store),
):
    store.delete(db, attachment_id)
    return {'ok': True}


@router.get('/boxes')
def list_boxes(db: Session = Depends(get_db)):
    return list_entities(db, EntityKind.BOXES)


@router.post('/boxes')
def create_box(payload: dict[str, Any] = Body(default={}), db: Session = Depends(get_db)):
    return {'id': create_entity(db, EntityKind.BOXES, payload)}


@router.delete('/boxes/{box_id}')
def delete_box(box_id: int, db: Session = Depends(get_db)):
    delete_entity(db, EntityKind.BOXES, box_id)
    return {'ok': True}


@router.get('/boxes/{box_id}/items')
def list_box_items(box_id: int, db: Session = Depends(get_db)):
    return list_entities(db, EntityKind.BOX_ITEMS, parent_id=box_id)


@router.post('/boxes/{box_id}/items')
def create_box_item(box_id: int, payload: dict[str, Any] = Body(default={}), db: Session = Depends(get_db)):
    return {'id': create_entity(db, EntityKind.BOX_ITEMS, payload, parent_id=box_id)}


@router.delete('/box-items/{box_item_id}')
def delete_box_item(box_item_id: int, db: Session = Depends(get_db)):
    delete_entity(db, EntityKind.BOX_ITEMS, box_item_id)
    return {'ok': True}


# Registered last so the fixed paths above take precedence.
@router.get('/{kind}')
def list_lookup(kind: LookupKind, db: Session = Depends(get_db)):
    return list_entities(db, EntityKind(kind.value))


@router.post('/{kind}')
def create_lookup(kind: LookupKind, payload: dict[str, Any] = Body(default={}), db: Session = Depends(get_db)):
    return {'id': create_entity(db, EntityKind(kind.value), payload)}


@router.delete('/{kind}/{entity_id}')
def delete_lookup(kind: LookupKind, entity_id: int, db: Session = Depends(get_db)):
    delete_entity(db, EntityKind(kind.value), entity_id)
    return {'ok': True}
