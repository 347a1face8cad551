from __future__ import annotations

import threading
from datetime import timedelta

from core.dedup import DedupCache, compute_fingerprint
from core.models import Message
from fakes import WHEN


def _message(**overrides) -> Message:
    values = dict(
        account_id=1,
        sender_id=42,
        sender_name="Alice",
        source_chat_id=500,
        source_chat_name="Newsroom",
        content="urgent",
        date=WHEN,
    )
    values.update(overrides)
    return Message(**values)


def test_fingerprint_ignores_account_and_sub_second_time() -> None:
    first = _message(account_id=1)
    second = _message(account_id=2, date=WHEN + timedelta(microseconds=900000), sender_name="Other")
    assert compute_fingerprint(first) == compute_fingerprint(second)


def test_fingerprint_changes_with_content_sender_chat_or_second() -> None:
    base = compute_fingerprint(_message())
    assert compute_fingerprint(_message(content="calm")) != base
    assert compute_fingerprint(_message(sender_id=7)) != base
    assert compute_fingerprint(_message(source_chat_id=501)) != base
    assert compute_fingerprint(_message(date=WHEN + timedelta(seconds=1))) != base


def test_observe_is_true_exactly_once() -> None:
    cache = DedupCache(clock=lambda: WHEN)
    fingerprint = compute_fingerprint(_message())
    assert cache.observe(fingerprint)
    assert not cache.observe(fingerprint)
    assert not cache.observe(fingerprint)
    assert fingerprint in cache


def test_purge_drops_only_expired_entries() -> None:
    now = {"value": WHEN}
    cache = DedupCache(retention=timedelta(hours=24), clock=lambda: now["value"])
    cache.observe("old")
    now["value"] = WHEN + timedelta(hours=20)
    cache.observe("recent")

    removed = cache.purge(WHEN + timedelta(hours=25))

    assert removed == 1
    assert "old" not in cache
    assert "recent" in cache
    # Once purged the fingerprint counts as new again.
    assert cache.observe("old")


def test_concurrent_observe_admits_one_winner() -> None:
    cache = DedupCache()
    results = []
    barrier = threading.Barrier(8)

    def worker() -> None:
        barrier.wait()
        results.append(cache.observe("same"))

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert results.count(True) == 1
    assert len(cache) == 1
