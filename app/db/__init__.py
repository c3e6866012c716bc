"""
app.db
~~~~~~

MongoDB 连接生命周期。

进程内只维护一个 ``AsyncIOMotorClient``（自带连接池）：lifespan 启动时
``connect_mongo()``，关闭时 ``close_mongo()``，仓库通过 ``get_database()``
拿到数据库句柄。客户端以 ``tz_aware=True`` 创建，读出的时间都带 UTC 时区。
"""
from __future__ import annotations

from urllib.parse import urlparse

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo.errors import PyMongoError

from app.core.config import settings
from app.core.exceptions import PersistenceError
from app.core.logging import get_logger

logger = get_logger(__name__)

_client: AsyncIOMotorClient | None = None


def _mask_uri(uri: str) -> str:
    """隐藏连接串中的密码后用于日志输出。"""
    parsed = urlparse(uri)
    if not parsed.password:
        return uri
    return uri.replace(f":{parsed.password}@", ":***@", 1)


async def connect_mongo() -> AsyncIOMotorDatabase:
    """创建客户端并 ping 目标数据库，失败时抛出 ``PersistenceError``。"""
    global _client
    client = AsyncIOMotorClient(settings.MONGO_URI, tz_aware=True)
    db = client[settings.MONGO_DB_NAME]
    try:
        await db.command("ping")
    except PyMongoError as e:
        client.close()
        logger.error("MongoDB 连接失败 | uri=%s", _mask_uri(settings.MONGO_URI), exc_info=True)
        raise PersistenceError("MongoDB 不可用") from e

    _client = client
    logger.info("MongoDB 已连接 | uri=%s | db=%s", _mask_uri(settings.MONGO_URI), settings.MONGO_DB_NAME)
    return db


async def close_mongo() -> None:
    global _client
    if _client is None:
        return
    _client.close()
    _client = None
    logger.info("MongoDB 连接已关闭")


def get_database() -> AsyncIOMotorDatabase:
    """当前数据库句柄。

    Raises:
        RuntimeError: 在 ``connect_mongo()`` 之前调用。
    """
    if _client is None:
        raise RuntimeError("MongoDB 尚未初始化，请先调用 connect_mongo()")
    return _client[settings.MONGO_DB_NAME]
