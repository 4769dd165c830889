import json

import pytest

from conftest import FakeClock
from coderag.cache.embedding_cache import CacheEntry, EmbeddingCache


@pytest.mark.asyncio
async def test_set_then_get_returns_vector(tmp_path):
    cache = EmbeddingCache(tmp_path / "cache")
    await cache.set("k", [0.1, 0.2], ttl=60)
    assert await cache.get("k") == [0.1, 0.2]


@pytest.mark.asyncio
async def test_missing_key_is_a_miss(tmp_path):
    cache = EmbeddingCache(tmp_path / "cache")
    assert await cache.get("nope") is None


@pytest.mark.asyncio
async def test_entry_expires_after_ttl_and_file_is_removed(tmp_path):
    clock = FakeClock()
    cache = EmbeddingCache(tmp_path / "cache", clock=clock)
    await cache.set("k", [1.0], ttl=10)
    assert len(list((tmp_path / "cache").glob("*.json"))) == 1

    clock.advance(9)
    assert await cache.get("k") == [1.0]

    clock.advance(2)
    assert await cache.get("k") is None
    assert list((tmp_path / "cache").glob("*.json")) == []


@pytest.mark.asyncio
@pytest.mark.parametrize("ttl", [None, 0])
async def test_no_ttl_means_no_expiry(tmp_path, ttl):
    clock = FakeClock()
    cache = EmbeddingCache(tmp_path / "cache", clock=clock)
    await cache.set("k", [1.0], ttl=ttl)
    clock.advance(10 ** 9)
    assert await cache.get("k") == [1.0]


@pytest.mark.asyncio
async def test_entries_survive_a_new_instance(tmp_path):
    first = EmbeddingCache(tmp_path / "cache")
    await first.set("k", [3.0, 4.0], ttl=60)

    second = EmbeddingCache(tmp_path / "cache")
    assert await second.get("k") == [3.0, 4.0]


@pytest.mark.asyncio
async def test_expired_entry_on_disk_is_a_miss_for_a_new_instance(tmp_path):
    clock = FakeClock()
    await EmbeddingCache(tmp_path / "cache", clock=clock).set("k", [1.0], ttl=5)
    clock.advance(6)
    assert await EmbeddingCache(tmp_path / "cache", clock=clock).get("k") is None


@pytest.mark.asyncio
async def test_corrupt_entry_file_is_a_miss(tmp_path):
    cache = EmbeddingCache(tmp_path / "cache")
    await cache.set("k", [1.0], ttl=60)
    path = cache._path_for(cache._hash_key("k"))
    path.write_text("{not json", encoding="utf-8")

    fresh = EmbeddingCache(tmp_path / "cache")
    assert await fresh.get("k") is None


@pytest.mark.asyncio
async def test_sweep_removes_only_expired_entries(tmp_path):
    clock = FakeClock()
    cache = EmbeddingCache(tmp_path / "cache", clock=clock)
    await cache.set("short", [1.0], ttl=5)
    await cache.set("long", [2.0], ttl=500)
    await cache.set("forever", [3.0])

    clock.advance(10)
    removed = await cache.sweep()

    assert removed == 1
    assert await cache.get("long") == [2.0]
    assert await cache.get("forever") == [3.0]
    assert len(list((tmp_path / "cache").glob("*.json"))) == 2


@pytest.mark.asyncio
async def test_invalidate_and_clear(tmp_path):
    cache = EmbeddingCache(tmp_path / "cache")
    await cache.set("a", [1.0])
    await cache.set("b", [2.0])

    await cache.invalidate("a")
    assert await cache.get("a") is None
    assert await cache.get("b") == [2.0]

    await cache.clear()
    assert await cache.get("b") is None
    assert list((tmp_path / "cache").glob("*.json")) == []


@pytest.mark.asyncio
async def test_memory_layer_is_bounded_but_disk_keeps_everything(tmp_path):
    cache = EmbeddingCache(tmp_path / "cache", max_memory_entries=2)
    for i in range(3):
        await cache.set(f"k{i}", [float(i)])

    assert len(cache._memory) == 2
    assert await cache.get("k0") == [0.0]


@pytest.mark.asyncio
async def test_entry_file_layout(tmp_path):
    clock = FakeClock(start=100.0)
    cache = EmbeddingCache(tmp_path / "cache", clock=clock)
    await cache.set("k", [1.5], ttl=10)

    data = json.loads(cache._path_for(cache._hash_key("k")).read_text(encoding="utf-8"))
    assert data == {"key": "k", "vector": [1.5], "expiresAt": 110.0}
    assert CacheEntry.from_json(data).is_expired(110.0)


@pytest.mark.asyncio
async def test_periodic_sweep_can_be_stopped(tmp_path):
    cache = EmbeddingCache(tmp_path / "cache")
    cache.start_periodic_sweep(interval=3600)
    await cache.close()
    await cache.close()
