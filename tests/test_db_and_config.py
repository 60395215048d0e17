from __future__ import annotations

import json
import tempfile
import unittest
from pathlib import Path

from pydantic_settings import SettingsConfigDict
from sqlalchemy import text

from home_inventory.config import Settings
from home_inventory.db import Database
from home_inventory.errors import TransientError
from inventory_fixtures import make_settings


class DatabaseTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.settings = make_settings(Path(self._tmp.name), db_pool_size=1, db_pool_timeout_seconds=0.2)
        self.database = Database(self.settings)

    def tearDown(self) -> None:
        self.database.dispose()
        self._tmp.cleanup()

    def test_exhausted_pool_is_transient(self) -> None:
        held = self.database.engine.connect()
        try:
            with self.assertRaises(TransientError):
                with self.database.session() as db:
                    db.execute(text('SELECT 1'))
        finally:
            held.close()

        self.database.ping()
        self.assertEqual(self.database.engine.pool.checkedout(), 0)

    def test_connection_is_released_after_errors(self) -> None:
        with self.assertRaises(ZeroDivisionError):
            with self.database.session() as db:
                db.execute(text('SELECT 1'))
                1 / 0

        self.assertEqual(self.database.engine.pool.checkedout(), 0)

    def test_sqlite_enforces_foreign_keys(self) -> None:
        with self.database.engine.connect() as conn:
            self.assertEqual(conn.execute(text('PRAGMA foreign_keys')).scalar_one(), 1)


class SettingsTests(unittest.TestCase):
    def test_base_url_is_normalized(self) -> None:
        self.assertEqual(Settings(base_url='/inventory/').base_url, '/inventory')
        self.assertEqual(Settings(base_url='inventory').base_url, '/inventory')
        self.assertEqual(Settings(base_url=' / ').base_url, '')
        self.assertEqual(Settings(base_url='/inventory').api_path('api/items'), '/inventory/api/items')

    def test_database_url_override_is_normalized(self) -> None:
        settings = Settings(database_url='postgres://u:p@db:5432/inventory')

        self.assertEqual(settings.database_url_normalized, 'postgresql+psycopg://u:p@db:5432/inventory')

    def test_database_url_is_built_from_parts(self) -> None:
        settings = Settings(db_host='core-mariadb', db_port=3306, db_user='inventory_user', db_name='inventory')
        url = settings.database_url_normalized

        self.assertEqual(url.drivername, 'postgresql+psycopg')
        self.assertEqual((url.host, url.port, url.database), ('core-mariadb', 3306, 'inventory'))
        self.assertNotIn('change_me', url.render_as_string())

    def test_options_file_is_read(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            options = Path(tmp) / 'options.json'
            options.write_text(json.dumps({'db_host': 'nas.local', 'max_upload_bytes': 1024, 'unknown': 1}))

            class OptionsSettings(Settings):
                model_config = SettingsConfigDict(json_file=str(options))

            settings = OptionsSettings()
            overridden = OptionsSettings(db_host='explicit')

        self.assertEqual(settings.db_host, 'nas.local')
        self.assertEqual(settings.max_upload_bytes, 1024)
        self.assertEqual(overridden.db_host, 'explicit')


if __name__ == '__main__':
    unittest.main()
