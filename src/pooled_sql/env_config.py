"""Загрузка конфигурации пула из .env файла с использованием Pydantic."""

from __future__ import annotations

import logging
import sys
from collections.abc import Mapping
from pathlib import Path
from typing import Final, TypedDict, cast

from dotenv import load_dotenv
from pydantic import Field, ValidationError, ValidationInfo, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy.engine.url import URL, make_url
from sqlalchemy.exc import ArgumentError

from pooled_sql.logger import get_logger

ALLOWED_SCHEMES: Final[frozenset[str]] = frozenset(
    ('postgres', 'postgresql', 'postgresql+psycopg', 'postgresql+psycopg3')
)

DEFAULT_PORT: Final[int] = 5432

DEFAULT_CONFIG: Mapping[str, int | float | str] = {
    'POOL_MIN_SIZE': 1,
    'POOL_MAX_SIZE': 10,
    'POOL_TIMEOUT': 30.0,
    'POOL_NAME': 'pooled_sql',
    'CURSOR_BATCH_SIZE': 500,
    'LOG_LEVEL': 'INFO',
    'LOG_FILE': './logs/pooled_sql.log',
}


class ConnectionParams(TypedDict):
    host: str
    port: int
    user: str | None
    password: str | None
    database: str


def _get_uri_separator(uri: str) -> str | None:
    """Определить разделитель схемы в URI: '://', ':/', '//' или None."""
    if '://' in uri:
        return '://'
    if ':/' in uri:
        return ':/'
    if '//' in uri:
        return '//'
    return None


class Settings(BaseSettings):
    """Настройки пула, логирования и курсоров из окружения / .env."""

    model_config = SettingsConfigDict(
        env_file='.env',
        env_file_encoding='utf-8',
        case_sensitive=False,
        extra='ignore',
    )

    db_connect_uri: str = Field(..., description='PostgreSQL connection URL')

    pool_min_size: int = Field(
        default=cast(int, DEFAULT_CONFIG['POOL_MIN_SIZE']),
        ge=0,
        description='Минимум подключений в пуле',
    )
    pool_max_size: int = Field(
        default=cast(int, DEFAULT_CONFIG['POOL_MAX_SIZE']),
        ge=1,
        description='Максимум подключений в пуле',
    )
    pool_timeout: float = Field(
        default=cast(float, DEFAULT_CONFIG['POOL_TIMEOUT']),
        gt=0,
        description='Ожидание свободного подключения (секунды)',
    )
    pool_name: str = Field(
        default=cast(str, DEFAULT_CONFIG['POOL_NAME']),
        description='Имя пула в логах',
    )
    cursor_batch_size: int = Field(
        default=cast(int, DEFAULT_CONFIG['CURSOR_BATCH_SIZE']),
        ge=1,
        description='Размер батча при чтении курсора',
    )
    log_level: str = Field(
        default=cast(str, DEFAULT_CONFIG['LOG_LEVEL']),
        description='Уровень логирования',
    )
    log_file: str = Field(
        default=cast(str, DEFAULT_CONFIG['LOG_FILE']),
        description='Путь к файлу логов',
    )

    @field_validator(
        'pool_min_size',
        'pool_max_size',
        'pool_timeout',
        'cursor_batch_size',
        'pool_name',
        'log_level',
        'log_file',
        mode='before',
    )
    @classmethod
    def parse_empty(cls, v: object, info: ValidationInfo) -> object:
        """Пустые значения из .env заменяются значениями по умолчанию."""
        if v is None or (isinstance(v, str) and v.strip() == ''):
            field_name = info.field_name or ''
            return DEFAULT_CONFIG.get(field_name.upper(), v)
        return v

    @field_validator('log_level')
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        level = v.strip().upper()
        if level not in logging.getLevelNamesMapping():
            raise ValueError(f'Недопустимый LOG_LEVEL={v!r}')
        return level

    @field_validator('db_connect_uri')
    @classmethod
    def validate_db_connect_uri(cls, v: str) -> str:
        """Валидирует строку подключения с помощью SQLAlchemy make_url."""
        if not v or v.strip() == '':
            raise ValueError('DB_CONNECT_URI не может быть пустым')
        uri = v.strip()
        masked_uri = cls.mask_connection_string(uri)

        try:
            url_obj = make_url(uri)
        except ArgumentError:
            raise ValueError(f'Некорректный формат URL: {masked_uri}') from None

        if url_obj.drivername not in ALLOWED_SCHEMES:
            raise ValueError(
                f'Неверная схема {url_obj.drivername!r}. '
                f'Ожидается одно из {sorted(ALLOWED_SCHEMES)}. URI: {masked_uri}'
            )
        if not url_obj.host:
            raise ValueError(f'URI не содержит hostname: {masked_uri}')
        if not url_obj.database:
            raise ValueError(f'URI не содержит имя базы данных: {masked_uri}')
        return uri

    @model_validator(mode='after')
    def validate_pool_bounds(self) -> Settings:
        if self.pool_max_size < self.pool_min_size:
            raise ValueError(
                f'POOL_MAX_SIZE ({self.pool_max_size}) меньше POOL_MIN_SIZE ({self.pool_min_size})'
            )
        return self

    @staticmethod
    def mask_connection_string(uri: str) -> str:
        """Mask the password in a connection URI.

        Simple parsing instead of SQLAlchemy rendering, which URL-encodes
        the mask (':***@' -> ':%2A%2A%2A@'). The last '@' separates
        credentials from the host, so passwords containing '@' are covered.
        """
        if not uri:
            return uri

        separator = _get_uri_separator(uri)
        if not separator:
            return uri

        scheme_part, rest = uri.split(separator, 1)
        if '@' not in rest:
            return uri

        last_at_idx = rest.rfind('@')
        credentials_part = rest[:last_at_idx]
        host_part = rest[last_at_idx + 1 :]
        if not credentials_part or ':' not in credentials_part:
            return uri

        user_part = credentials_part[: credentials_part.find(':')]
        return f'{scheme_part}{separator}{user_part}:***@{host_part}'

    def model_dump_masked(self) -> dict[str, object]:
        """Словарь настроек с замаскированным db_connect_uri."""
        data = self.model_dump()
        data['db_connect_uri'] = self.mask_connection_string(self.db_connect_uri)
        return data

    def connection_params(self) -> ConnectionParams:
        """Разбирает URL на host/port/user/password/database."""
        url_obj: URL = make_url(self.db_connect_uri)
        return {
            'host': cast(str, url_obj.host),
            'port': url_obj.port or DEFAULT_PORT,
            'user': url_obj.username,
            'password': url_obj.password,
            'database': cast(str, url_obj.database),
        }


def load_config(env_file: str = '.env') -> Settings:
    """
    Загружает конфигурацию из .env файла.

    Raises:
        FileNotFoundError: Файл не найден.
        ValueError: Конфигурация не прошла валидацию.
    """
    env_path = Path(env_file)
    if not env_path.exists():
        error_msg = f'Файл конфигурации не найден: {env_path.absolute()}'
        get_logger('config').error(error_msg)
        raise FileNotFoundError(error_msg)
    try:
        load_dotenv(env_path)
        return Settings()  # type: ignore[call-arg]
    except ValidationError as e:
        raise ValueError(_format_validation_error(e)) from None


def _format_validation_error(e: ValidationError) -> str:
    error_messages = []
    for error in e.errors():
        field = ' -> '.join(str(loc) for loc in error['loc'])
        # input не выводим: там может быть пароль
        error_messages.append(f' • {field}: {error["msg"]}')
    full_error_msg = 'Ошибка валидации конфигурации:\n' + '\n'.join(error_messages)
    get_logger('config').error(full_error_msg)
    return full_error_msg


def print_config_summary(
    config: Settings,
    *,
    mask_sensitive: bool = True,
    logger: logging.Logger | None = None,
) -> None:
    """Выводит сводку конфигурации с маскировкой пароля."""
    data = config.model_dump_masked() if mask_sensitive else config.model_dump()
    sections = [
        ('База данных', ['db_connect_uri']),
        ('Пул', ['pool_name', 'pool_min_size', 'pool_max_size', 'pool_timeout']),
        ('Курсоры', ['cursor_batch_size']),
        ('Логирование', ['log_level', 'log_file']),
    ]
    lines = ['=' * 60, 'КОНФИГУРАЦИЯ', '=' * 60]
    for section_name, params in sections:
        lines.extend(('', f'[{section_name}]', '-' * 40))
        for param in params:
            display_name = param.replace('_', ' ').title()
            lines.append(f' {display_name:28}: {data.get(param)}')
    lines.append('=' * 60)

    if logger:
        for line in lines:
            logger.info('%s', line)
    else:
        print('\n'.join(lines), file=sys.stdout)
