from __future__ import annotations

import tempfile
import unittest
from pathlib import Path

from home_inventory.config import Settings
from home_inventory.db import Database
from home_inventory.schema import reconcile_schema
from home_inventory.services.attachment_service import AttachmentStore


def make_settings(root: Path, **overrides) -> Settings:
    values = {
        'database_url': f'sqlite:///{root / "inventory.db"}',
        'upload_dir': root / 'uploads',
        'seed_defaults': False,
        'log_level': 'WARNING',
        'db_pool_size': 2,
        'db_pool_timeout_seconds': 1,
    }
    values.update(overrides)
    return Settings(**values)


class DatabaseTestCase(unittest.TestCase):
    settings_overrides: dict = {}

    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        self.settings = make_settings(self.root, **self.settings_overrides)
        self.database = Database(self.settings)
        self.attachments = AttachmentStore.from_settings(self.settings)

    def tearDown(self) -> None:
        self.database.dispose()
        self._tmp.cleanup()

    def reconcile(self, **kwargs):
        kwargs.setdefault('seed', False)
        return reconcile_schema(self.database.engine, **kwargs)

    def stored_files(self) -> list[str]:
        return sorted(path.name for path in self.settings.upload_dir.glob('*'))
