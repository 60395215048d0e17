from __future__ import annotations

import logging
import os
import re
import secrets
import shutil
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import BinaryIO
from urllib.parse import quote

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from home_inventory.config import Settings
from home_inventory.errors import AdvisoryFailure, NotFoundError, PayloadTooLargeError, ValidationError
from home_inventory.models import Attachment, AttachmentKind, Item

logger = logging.getLogger('home_inventory.attachments')

_UNSAFE_CHARS = re.compile(r'[^A-Za-z0-9._-]+')
_MAX_NAME_LENGTH = 120
_COPY_CHUNK = 1024 * 1024


def sanitize_filename(original: str | None, fallback: str = 'file') -> str:
    name = Path((original or '').replace('\\', '/')).name
    safe = _UNSAFE_CHARS.sub('_', name).lstrip('.')
    return safe[-_MAX_NAME_LENGTH:] or fallback


def parse_kind(value: str | AttachmentKind | None) -> AttachmentKind:
    if isinstance(value, AttachmentKind):
        return value
    try:
        return AttachmentKind((value or '').strip().lower())
    except ValueError as exc:
        allowed = ', '.join(kind.value for kind in AttachmentKind)
        raise ValidationError('kind', f'kind must be one of: {allowed}') from exc


def _measure(content: BinaryIO) -> int:
    position = content.tell()
    content.seek(0, os.SEEK_END)
    size = content.tell() - position
    content.seek(position)
    return size


@dataclass
class DeleteResult:
    deleted: bool
    advisories: list[AdvisoryFailure] = field(default_factory=list)


class AttachmentStore:
    def __init__(self, upload_dir: Path, *, max_bytes: int, url_prefix: str = '/uploads') -> None:
        self.upload_dir = Path(upload_dir)
        self.max_bytes = max_bytes
        self.url_prefix = url_prefix.rstrip('/')

    @classmethod
    def from_settings(cls, settings: Settings) -> AttachmentStore:
        return cls(
            settings.upload_dir,
            max_bytes=settings.max_upload_bytes,
            url_prefix=settings.api_path('/uploads'),
        )

    def ensure_directory(self) -> None:
        self.upload_dir.mkdir(parents=True, exist_ok=True)

    def stored_filename(self, original: str | None, kind: AttachmentKind) -> str:
        stamp = datetime.now(timezone.utc).strftime('%Y%m%dT%H%M%S%fZ')
        return f'{stamp}-{secrets.token_hex(4)}-{sanitize_filename(original, kind.value)}'

    def path_for(self, filename: str) -> Path:
        if not filename or Path(filename).name != filename or filename in {'.', '..'}:
            raise ValueError(f'Unsafe stored filename: {filename!r}')
        return self.upload_dir / filename

    def url_for(self, filename: str) -> str:
        return f'{self.url_prefix}/{quote(filename)}'

    def serialize(self, attachment: Attachment) -> dict:
        return {
            'id': attachment.id,
            'item_id': attachment.item_id,
            'kind': attachment.kind.value,
            'filename': attachment.filename,
            'original_name': attachment.original_name,
            'mime_type': attachment.mime_type,
            'size_bytes': attachment.size_bytes,
            'created_at': attachment.created_at,
            'url': self.url_for(attachment.filename),
        }

    def list_for(self, db: Session, parent_id: int, *, kind: AttachmentKind | None = None) -> list[dict]:
        stmt = select(Attachment).where(Attachment.item_id == parent_id)
        if kind is not None:
            stmt = stmt.where(Attachment.kind == kind)
        rows = db.execute(stmt.order_by(Attachment.id.desc())).scalars().all()
        return [self.serialize(row) for row in rows]

    def upload(
        self,
        db: Session,
        *,
        parent_id: int,
        kind: str | AttachmentKind | None,
        original_filename: str | None,
        mime_type: str | None,
        content: BinaryIO,
        size_bytes: int | None = None,
    ) -> dict:
        attachment_kind = parse_kind(kind)
        if size_bytes is None:
            size_bytes = _measure(content)
        if size_bytes > self.max_bytes:
            raise PayloadTooLargeError('file', self.max_bytes)
        if db.get(Item, parent_id) is None:
            raise NotFoundError('item', parent_id)

        filename = self.stored_filename(original_filename, attachment_kind)
        path = self.path_for(filename)
        self.ensure_directory()
        try:
            with path.open('xb') as handle:
                shutil.copyfileobj(content, handle, _COPY_CHUNK)
        except FileExistsError:
            raise
        except OSError:
            self.remove_file(filename)
            raise

        attachment = Attachment(
            item_id=parent_id,
            kind=attachment_kind,
            filename=filename,
            original_name=(original_filename or None),
            mime_type=(mime_type or None),
            size_bytes=size_bytes,
        )
        try:
            db.add(attachment)
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            failure = self.remove_file(filename)
            if failure:
                logger.debug('advisory: %s', failure.describe())
            raise
        db.refresh(attachment)
        logger.info('stored %s attachment %s for item %s (%s bytes)', attachment_kind.value, filename, parent_id, size_bytes)
        return self.serialize(attachment)

    def delete(self, db: Session, attachment_id: int, *, kind: AttachmentKind | None = None) -> DeleteResult:
        stmt = select(Attachment.filename).where(Attachment.id == attachment_id)
        if kind is not None:
            stmt = stmt.where(Attachment.kind == kind)
        filename = db.execute(stmt).scalar_one_or_none()
        if filename is None:
            return DeleteResult(deleted=False)

        db.execute(delete(Attachment).where(Attachment.id == attachment_id))
        db.commit()
        return DeleteResult(deleted=True, advisories=self.discard_files([filename]))

    def detach_parent(self, db: Session, parent_id: int) -> list[str]:
        """Delete the attachment rows of a parent without committing.

        Returns the stored filenames so the caller can discard the files once
        the surrounding transaction has committed.
        """
        filenames = list(
            db.execute(select(Attachment.filename).where(Attachment.item_id == parent_id)).scalars()
        )
        if filenames:
            db.execute(delete(Attachment).where(Attachment.item_id == parent_id))
        return filenames

    def discard_files(self, filenames: list[str]) -> list[AdvisoryFailure]:
        advisories = []
        for filename in filenames:
            failure = self.remove_file(filename)
            if failure:
                logger.debug('advisory: %s', failure.describe())
                advisories.append(failure)
        return advisories

    def remove_file(self, filename: str) -> AdvisoryFailure | None:
        try:
            self.path_for(filename).unlink()
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as exc:
            return AdvisoryFailure(step='remove file', target=filename, error=str(exc))
        return None
