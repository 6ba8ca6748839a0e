"""A Redis-backed mapping.

`RedisMap` exposes a Redis logical database as a `MutableMapping[str, str]`. Every operation is a request
to the server, nothing is cached locally and no consistency beyond what Redis itself offers is added.
"""

import re
from collections.abc import Iterator, Mapping, MutableMapping
from typing import Any

import redis

from redis_map.client import client_from_config
from redis_map.config import redis_config
from redis_map.log import LogTiming, get_logger

SCAN_START_CURSOR = 0
PREFIX_SEPARATOR = ":"

_GLOB_SPECIAL_CHARS = re.compile(r"([*?\[\]\\])")

logger = get_logger("redis-map")


def _escape_glob(value: str) -> str:
    """Escape characters with a special meaning in Redis MATCH patterns."""
    return _GLOB_SPECIAL_CHARS.sub(r"\\\1", value)


class RedisMap(MutableMapping[str, str]):
    """A mapping of strings to strings stored in Redis.

    Without a prefix, the map *is* the whole logical database the client is connected to: `size()` is `DBSIZE`
    and `clear()` flushes the database, including keys written by anyone else. With a prefix, keys are stored
    as `prefix:key` and the map only sees, counts and clears keys in that namespace. Namespaces nest: a map with
    prefix `a` also sees, counts and clears the keys of a map with prefix `a:b`, as `b:key`.

    Enumeration (`key_set()`, `values()`, `entry_set()`) is built on `SCAN` and is not a snapshot. Keys written
    or deleted concurrently may or may not show up. Keys that disappear between the scan and the subsequent
    `GET` are left out of `values()` and `entry_set()`.

    Connection errors are not caught, they propagate as raised by redis-py.
    """

    def __init__(self, client: redis.Redis, prefix: str | None = None, scan_count: int | None = None) -> None:
        """Initialize the map.

        Args:
            client: A redis-py client. It must be created with `decode_responses=True`.
            prefix: An optional key namespace.
            scan_count: An optional COUNT hint for each SCAN request.

        Raises:
            ValueError: If the client does not decode responses or the prefix is blank.
        """
        if not client.get_connection_kwargs().get("decode_responses"):
            raise ValueError("RedisMap requires a client created with decode_responses=True.")
        if prefix and not prefix.strip(PREFIX_SEPARATOR + " "):
            raise ValueError(f"Invalid key prefix {prefix!r}.")
        if scan_count is not None and scan_count < 1:
            raise ValueError(f"scan_count must be a positive integer, got {scan_count!r}.")
        self._client = client
        self.prefix = prefix or None
        self.scan_count = scan_count

    @classmethod
    def from_config(cls) -> "RedisMap":
        """Create a map over a new client built from the environment configuration."""
        return cls(
            client_from_config(),
            prefix=redis_config.key_prefix or None,
            scan_count=redis_config.scan_count,
        )

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(client={self._client!r}, prefix={self.prefix!r})"

    def _key(self, key: str) -> str:
        """Return the key with the prefix added."""
        if self.prefix:
            return f"{self.prefix}{PREFIX_SEPARATOR}{key}"
        return key

    def _unkey(self, stored_key: str) -> str:
        """Return the key with the prefix removed."""
        if self.prefix:
            return stored_key[len(self.prefix) + len(PREFIX_SEPARATOR) :]
        return stored_key

    def _match_pattern(self) -> str | None:
        if self.prefix:
            return f"{_escape_glob(self.prefix)}{PREFIX_SEPARATOR}*"
        return None

    def iter_pages(self) -> Iterator[list[str]]:
        """Iterate pages of stored keys, as returned by one full SCAN pass.

        The pass starts with the start cursor and ends when the server hands it back, however many pages
        that takes. Pages may be empty and may repeat keys. Keys are yielded as stored, prefix included.
        """
        cursor = SCAN_START_CURSOR
        while True:
            cursor, page = self._client.scan(cursor=cursor, match=self._match_pattern(), count=self.scan_count)
            yield page
            if int(cursor) == SCAN_START_CURSOR:
                return

    def key_set(self) -> set[str]:
        """Return all keys in the map.

        Runs a complete SCAN pass, so the cost is proportional to the size of the whole database.
        """
        keys: set[str] = set()
        pages = 0
        for page in self.iter_pages():
            pages += 1
            keys.update(self._unkey(stored_key) for stored_key in page)
        logger.debug("Enumerated keys.", pages=pages, keys=len(keys), prefix=self.prefix)
        return keys

    def _iter_entries(self) -> Iterator[tuple[str, str]]:
        skipped = 0
        for key in self.key_set():
            if (value := self.get(key)) is None:
                skipped += 1
                continue
            yield key, value
        if skipped:
            logger.debug("Keys disappeared during enumeration and were skipped.", skipped=skipped)

    def values(self) -> list[str]:  # type: ignore[override]
        """Return values of all keys in the map, one per key, in no particular order."""
        return [value for _, value in self._iter_entries()]

    def entry_set(self) -> set[tuple[str, str]]:
        """Return all `(key, value)` pairs in the map."""
        return set(self._iter_entries())

    def items(self) -> set[tuple[str, str]]:  # type: ignore[override]
        return self.entry_set()

    def size(self) -> int:
        if self.prefix:
            return len(self.key_set())
        return int(self._client.dbsize())

    def is_empty(self) -> bool:
        return self.size() == 0

    def contains_key(self, key: str) -> bool:
        return bool(self._client.exists(self._key(key)))

    def contains_value(self, value: str) -> bool:
        """Return whether any key maps to `value`.

        This enumerates and reads the whole map, use with care on large databases.
        """
        return value in self.values()

    def get(self, key: str, default: str | None = None) -> str | None:  # type: ignore[override]
        value = self._client.get(self._key(key))
        return default if value is None else value

    def put(self, key: str, value: str) -> str | None:
        """Set `key` to `value`, returning the previous value or None if the key did not exist."""
        return self._client.set(self._key(key), value, get=True)

    def remove(self, key: str) -> str | None:
        """Delete `key`, returning its previous value. Removing a missing key does nothing and returns None."""
        stored_key = self._key(key)
        value = self._client.get(stored_key)
        if value is not None:
            self._client.delete(stored_key)
        return value

    def put_all(self, entries: Mapping[str, str]) -> None:
        """Set every pair of `entries`, one command each.

        This is not atomic, if a command fails, pairs set before it stay set.
        """
        for key, value in entries.items():
            self._client.set(self._key(key), value)

    def clear(self) -> None:
        """Delete all keys in the map.

        Without a prefix this flushes the whole logical database, including keys that were never written
        through this map.
        """
        if self.prefix is None:
            logger.warning("Flushing the whole Redis database.")
            with LogTiming("flushdb", logger):
                self._client.flushdb()
            return
        with LogTiming("clear namespace", logger, prefix=self.prefix):
            for page in self.iter_pages():
                if page:
                    self._client.delete(*page)

    def __getitem__(self, key: str) -> str:
        if (value := self.get(key)) is None:
            raise KeyError(key)
        return value

    def __setitem__(self, key: str, value: str) -> None:
        self.put(key, value)

    def __delitem__(self, key: str) -> None:
        if self.remove(key) is None:
            raise KeyError(key)

    def __contains__(self, key: Any) -> bool:
        return isinstance(key, str) and self.contains_key(key)

    def __iter__(self) -> Iterator[str]:
        return iter(self.key_set())

    def __len__(self) -> int:
        return self.size()
