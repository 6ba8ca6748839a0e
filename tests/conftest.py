import shutil
import signal
import socket
import subprocess
import time
from collections.abc import Iterator
from contextlib import closing
from typing import cast

import fakeredis
import pytest
import redis

from redis_map import RedisMap, create_client


def _get_free_tcp_port() -> int:
    with closing(socket.socket(socket.AF_INET, socket.SOCK_STREAM)) as sock:
        sock.bind(("localhost", 0))
        return cast(int, sock.getsockname()[1])


def _wait_for_ping(client: redis.Redis, timeout: float = 10) -> None:
    deadline = time.monotonic() + timeout
    while True:
        try:
            client.ping()
            return
        except redis.ConnectionError:
            if time.monotonic() > deadline:
                raise
            time.sleep(0.1)


@pytest.fixture(scope="session")
def _redis_server_port() -> Iterator[int]:
    redis_server_path = shutil.which("redis-server")
    if not redis_server_path:
        pytest.skip("redis-server was not found in the PATH.")
    port = _get_free_tcp_port()
    with subprocess.Popen(  # noqa: S603
        ("redis-server", "--port", str(port), "--save", "", "--appendonly", "no"),
        executable=redis_server_path,
        stdout=subprocess.DEVNULL,
    ) as pipe:
        ping_client = create_client(port=port)
        try:
            _wait_for_ping(ping_client)
            yield port
        finally:
            ping_client.close()
            pipe.send_signal(signal.SIGTERM)
            try:
                pipe.communicate(timeout=10)
            except subprocess.TimeoutExpired:
                pipe.kill()


@pytest.fixture
def fake_client() -> redis.Redis:
    return fakeredis.FakeRedis(server=fakeredis.FakeServer(), decode_responses=True)


@pytest.fixture
def live_client(_redis_server_port: int) -> Iterator[redis.Redis]:
    client = create_client(port=_redis_server_port)
    try:
        yield client
    finally:
        client.flushdb()
        client.close()


@pytest.fixture
def fake_redis_map(fake_client: redis.Redis) -> RedisMap:
    return RedisMap(fake_client)


@pytest.fixture
def live_redis_map(live_client: redis.Redis) -> RedisMap:
    return RedisMap(live_client)


@pytest.fixture
def prefixed_redis_map(fake_client: redis.Redis) -> RedisMap:
    return RedisMap(fake_client, prefix="test", scan_count=3)


@pytest.fixture
def redis_map(request: pytest.FixtureRequest) -> Iterator[RedisMap]:
    instance = cast(RedisMap, request.getfixturevalue(request.param))
    instance.clear()
    yield instance
    instance.clear()
