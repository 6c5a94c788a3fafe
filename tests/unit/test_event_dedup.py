import threading

import pytest

from services.event_dedup import (
    ProcessedEventCache,
    event_key,
    invoice_key,
    subscription_created_key,
    subscription_updated_key,
)

pytestmark = [pytest.mark.unit]


def test_check_and_add_reports_repeat():
    cache = ProcessedEventCache()
    assert cache.check_and_add("evt_1_invoice.payment_succeeded") is False
    assert cache.check_and_add("evt_1_invoice.payment_succeeded") is True
    assert len(cache) == 1


def test_eviction_drops_oldest_batch():
    cache = ProcessedEventCache(capacity=10, evict_count=3)
    for i in range(11):
        cache.add(f"k{i}")

    assert len(cache) == 8
    assert "k0" not in cache
    assert "k2" not in cache
    assert "k3" in cache
    assert "k10" in cache


def test_default_limits_keep_recent_keys():
    cache = ProcessedEventCache()
    for i in range(1001):
        cache.add(f"k{i}")
    assert len(cache) == 901
    assert "k99" not in cache
    assert "k100" in cache


def test_invalid_capacity_rejected():
    with pytest.raises(ValueError):
        ProcessedEventCache(capacity=0)


def test_clear():
    cache = ProcessedEventCache()
    cache.add("a")
    cache.clear()
    assert len(cache) == 0
    assert not cache.seen("a")


def test_concurrent_check_and_add_admits_one_winner():
    cache = ProcessedEventCache()
    results = []
    barrier = threading.Barrier(8)

    def worker():
        barrier.wait()
        results.append(cache.check_and_add("evt_race"))

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert results.count(False) == 1


def test_key_formats():
    assert event_key("evt_1", "customer.subscription.created") == "evt_1_customer.subscription.created"
    assert invoice_key("in_1", "cus_1") == "invoice_in_1_cus_1"
    assert subscription_created_key("sub_1", "cus_1") == "subscription_created_sub_1_cus_1"
    assert subscription_updated_key("sub_1", "cus_1", "active") == "subscription_updated_sub_1_cus_1_active"
