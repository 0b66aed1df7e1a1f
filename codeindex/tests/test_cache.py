from __future__ import annotations

"""Search cache tests driven by a manual clock."""

from codeindex.rag.types import CodeChunk, Language, SearchResult
from codeindex.vectorstore.cache import CacheKey, SearchCache, embedding_fingerprint


class ManualClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def make_key(name: str) -> CacheKey:
    return CacheKey(scope_id="cb", query_fingerprint=name, limit=10, threshold=0.5)


def make_results(content: str) -> list[SearchResult]:
    chunk = CodeChunk(
        file_id="f1",
        codebase_id="cb",
        file_path="a.swift",
        content=content,
        content_hash=content,
        start_line=1,
        end_line=1,
        chunk_type="block",
        language=Language.SWIFT,
    )
    return [SearchResult(chunk=chunk, score=0.9)]


def test_set_then_get_returns_results() -> None:
    cache = SearchCache()
    results = make_results("alpha")

    cache.set(make_key("k1"), results)

    assert cache.get(make_key("k1")) == results
    assert cache.get(make_key("missing")) is None


def test_entries_expire_after_ttl() -> None:
    clock = ManualClock()
    cache = SearchCache(default_ttl=300.0, clock=clock)
    cache.set(make_key("k1"), make_results("alpha"))
    cache.set(make_key("k2"), make_results("beta"), ttl=10.0)

    clock.now += 11.0
    assert cache.get(make_key("k2")) is None
    assert cache.get(make_key("k1")) is not None

    clock.now += 300.0
    assert cache.get(make_key("k1")) is None
    assert len(cache) == 0


def test_capacity_one_evicts_previous_key() -> None:
    clock = ManualClock()
    cache = SearchCache(max_entries=1, clock=clock)

    cache.set(make_key("k1"), make_results("alpha"))
    clock.now += 1.0
    cache.set(make_key("k2"), make_results("beta"))

    assert cache.get(make_key("k1")) is None
    assert cache.get(make_key("k2")) is not None


def test_eviction_prefers_expired_then_oldest() -> None:
    clock = ManualClock()
    cache = SearchCache(max_entries=3, clock=clock)
    cache.set(make_key("old"), make_results("a"))
    clock.now += 1.0
    cache.set(make_key("short"), make_results("b"), ttl=1.0)
    clock.now += 1.0
    cache.set(make_key("new"), make_results("c"))

    clock.now += 5.0
    cache.set(make_key("fourth"), make_results("d"))
    assert cache.get(make_key("old")) is not None
    assert cache.get(make_key("short")) is None

    cache.set(make_key("fifth"), make_results("e"))
    assert cache.get(make_key("old")) is None
    assert len(cache) == 3

    for index in range(10):
        cache.set(make_key(f"extra{index}"), make_results("x"))
        assert len(cache) <= 3


def test_overwriting_existing_key_does_not_evict() -> None:
    cache = SearchCache(max_entries=2)
    cache.set(make_key("k1"), make_results("a"))
    cache.set(make_key("k2"), make_results("b"))

    cache.set(make_key("k1"), make_results("c"))

    assert len(cache) == 2
    assert cache.get(make_key("k2")) is not None
    assert cache.get(make_key("k1"))[0].chunk.content == "c"


def test_stats_and_health() -> None:
    clock = ManualClock()
    cache = SearchCache(max_entries=10, clock=clock)
    for index in range(3):
        cache.set(make_key(f"k{index}"), make_results("a"), ttl=5.0)
    clock.now += 10.0
    cache.set(make_key("fresh"), make_results("b"))

    stats = cache.get_stats()

    assert stats.total_entries == 4
    assert stats.expired_entries == 3
    assert stats.active_entries == 1
    assert abs(stats.utilization_percent - 40.0) < 1e-9
    assert not stats.is_healthy
    assert cache.remove_expired() == 3
    assert cache.get_stats().is_healthy

    cache.clear()
    assert len(cache) == 0


def test_fingerprint_uses_leading_dimensions() -> None:
    embedding = [0.12345] * 25 + [9.0]

    fingerprint = embedding_fingerprint(embedding)

    assert fingerprint.split(",") == ["0.123"] * 20
    assert CacheKey.for_query("cb", embedding, 5, 0.5).query_fingerprint == fingerprint
