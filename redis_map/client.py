"""Construction of pooled Redis clients.

The map never creates its own connection implicitly, a client is always handed to it.
This module is the one place where such clients are built, from explicit arguments or from the environment.
"""

from typing import Any
from urllib.parse import urlparse

import redis

from redis_map.config import redis_config
from redis_map.log import get_logger

logger = get_logger("redis-map-client")


def redact_url(url: str, replace: str = "***") -> str:
    """Replace password from {url} (if any) with {replace}.
    If the url contains no password, url is returned unchanged.
    """
    parsed = urlparse(url)
    if parsed.password is None:
        return url
    host = parsed.netloc.rsplit("@", 1)[1]
    return parsed._replace(netloc=f"{parsed.username or ''}:{replace}@{host}").geturl()


def create_client(
    url: str | None = None,
    host: str = "localhost",
    port: int = 6379,
    db: int = 0,
    username: str | None = None,
    password: str | None = None,
    max_connections: int | None = None,
    socket_timeout: float | None = None,
) -> redis.Redis:
    """Create a Redis client backed by its own connection pool.

    Responses are always decoded to `str`, which is what `RedisMap` requires.

    Args:
        url: Connection URL. If given, `host`, `port` and `db` are ignored.
        host: Redis host.
        port: Redis port.
        db: Logical database index.
        username: ACL username.
        password: ACL password.
        max_connections: Maximum size of the connection pool.
        socket_timeout: Socket timeout for commands (in seconds).

    Returns:
        redis.Redis: A client safe to share between threads.
    """
    pool_kwargs: dict[str, Any] = {"decode_responses": True, "socket_timeout": socket_timeout}
    if max_connections is not None:
        pool_kwargs["max_connections"] = max_connections
    if username is not None:
        pool_kwargs["username"] = username
    if password is not None:
        pool_kwargs["password"] = password

    if url:
        logger.info("Creating Redis connection pool from URL.", url=redact_url(url))
        pool = redis.ConnectionPool.from_url(url, **pool_kwargs)
    else:
        logger.info("Creating Redis connection pool.", host=host, port=port, db=db)
        pool = redis.ConnectionPool(host=host, port=port, db=db, **pool_kwargs)
    return redis.Redis(connection_pool=pool)


def client_from_config() -> redis.Redis:
    """Create a new Redis client from `REDIS_MAP_REDIS_*` environment configuration.

    A new client (and pool) is returned on every call.
    """
    return create_client(
        url=redis_config.url,
        host=redis_config.host,
        port=redis_config.port,
        db=redis_config.db,
        username=redis_config.username,
        password=redis_config.password,
        max_connections=redis_config.max_connections,
        socket_timeout=redis_config.socket_timeout,
    )
