from .client import client_from_config, create_client
from .mapping import RedisMap

__all__ = [
    "RedisMap",
    "client_from_config",
    "create_client",
]
