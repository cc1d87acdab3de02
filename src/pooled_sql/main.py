"""Main entrypoint: check connectivity or stream one query through the pool."""

import asyncio
import logging
import sys
from pathlib import Path

from pooled_sql.client import PooledSqlClient
from pooled_sql.env_config import DEFAULT_CONFIG, Settings, load_config, print_config_summary
from pooled_sql.logger import setup_logging, shutdown_logging
from pooled_sql.pool import create_pool

SERVER_INFO_QUERY = (
    'SELECT current_database() AS database, version() AS version, current_user AS "user"'
)


def _load_config() -> Settings | None:
    try:
        return load_config()
    except (FileNotFoundError, ValueError):
        logger = logging.getLogger('pooled_sql.main')
        logger.error('Ошибка при загрузке конфигурации')  # noqa: TRY400
        return None


async def _print_server_info(client: PooledSqlClient) -> None:
    result = await client.execute(SERVER_INFO_QUERY)
    info = result.rows[0] if result.rows else {}
    print('\n✓ Подключение установлено')
    print(f'  База данных: {info.get("database", "N/A")}')
    print(f'  Версия: {info.get("version", "N/A")}')
    print(f'  Пользователь: {info.get("user", "N/A")}')


async def _stream_query(client: PooledSqlClient, sql: str, batch_size: int) -> int:
    total = 0
    async with await client.open_cursor(sql) as cursor:
        async for batch in cursor.iter_batches(batch_size):
            for row in batch:
                print(row)
            total += len(batch)
    return total


async def run(config: Settings, sql: str | None, logger: logging.Logger) -> None:
    pool = await create_pool(config)
    try:
        client = PooledSqlClient(pool)
        if sql is None:
            await _print_server_info(client)
        else:
            total = await _stream_query(client, sql, config.cursor_batch_size)
            logger.info('Прочитано строк: %d', total)
    finally:
        await pool.close()


def main() -> None:
    """Точка входа: python -m pooled_sql [SQL]."""
    logger = setup_logging(log_level=logging.ERROR, log_file=Path(str(DEFAULT_CONFIG['LOG_FILE'])))

    config = _load_config()
    if config is None:
        logger.error('Не удалось загрузить конфигурацию. Завершение.')
        shutdown_logging()
        sys.exit(1)

    logger = setup_logging(log_level=config.log_level, log_file=Path(config.log_file))
    print_config_summary(config, logger=logger)

    sql = ' '.join(sys.argv[1:]) or None
    try:
        asyncio.run(run(config, sql, logger))
    except Exception:
        logger.exception('Ошибка при работе с БД')
        sys.exit(1)
    else:
        logger.info('Завершено успешно')
    finally:
        shutdown_logging()


if __name__ == '__main__':
    main()
