from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path

from pydantic import field_validator
from pydantic_settings import (
    BaseSettings,
    JsonConfigSettingsSource,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)
from sqlalchemy.engine import URL

# Add-on supervisors drop user options here; env vars and .env still win.
DEFAULT_OPTIONS_FILE = '/data/options.json'


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file='.env',
        env_file_encoding='utf-8',
        extra='ignore',
        json_file=os.environ.get('HOME_INVENTORY_OPTIONS_FILE', DEFAULT_OPTIONS_FILE),
    )

    db_driver: str = 'postgresql+psycopg'
    db_host: str = 'localhost'
    db_port: int = 5432
    db_user: str = 'inventory_user'
    db_password: str = 'change_me'
    db_name: str = 'home_inventory'
    database_url: str | None = None

    db_pool_size: int = 5
    db_pool_timeout_seconds: float = 10.0
    db_pool_recycle_seconds: int = 60

    upload_dir: Path = Path('/data/uploads')
    max_upload_bytes: int = 20 * 1024 * 1024

    base_url: str = ''
    seed_defaults: bool = True
    log_level: str = 'INFO'

    host: str = '0.0.0.0'
    port: int = 8100

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            JsonConfigSettingsSource(settings_cls),
            file_secret_settings,
        )

    @field_validator('base_url')
    @classmethod
    def _strip_base_url(cls, value: str) -> str:
        value = value.strip().rstrip('/')
        if value and not value.startswith('/'):
            value = '/' + value
        return value

    @property
    def database_url_normalized(self) -> str | URL:
        if self.database_url:
            url = self.database_url.strip()
            if url.startswith('postgres://'):
                return 'postgresql+psycopg://' + url[len('postgres://') :]
            if url.startswith('postgresql://'):
                return 'postgresql+psycopg://' + url[len('postgresql://') :]
            return url
        return URL.create(
            self.db_driver,
            username=self.db_user,
            password=self.db_password,
            host=self.db_host,
            port=self.db_port,
            database=self.db_name,
        )

    def api_path(self, path: str) -> str:
        if not path.startswith('/'):
            path = '/' + path
        return f'{self.base_url}{path}'


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
