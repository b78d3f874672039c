from qbank.core.rate_limit import InMemoryRateLimitStore


def test_allows_requests_up_to_the_limit():
    store = InMemoryRateLimitStore(max_requests=2, window_seconds=60)

    first = store.hit("admin-1", now=1000.0)
    second = store.hit("admin-1", now=1001.0)
    third = store.hit("admin-1", now=1002.0)

    assert not first.limited and first.remaining == 1
    assert not second.limited and second.remaining == 0
    assert third.limited
    assert third.reset_at == 1060.0


def test_window_slides_forward():
    store = InMemoryRateLimitStore(max_requests=1, window_seconds=10)
    store.hit("admin-1", now=0.0)

    assert store.hit("admin-1", now=5.0).limited
    assert not store.hit("admin-1", now=10.5).limited


def test_keys_are_independent_and_resettable():
    store = InMemoryRateLimitStore(max_requests=1, window_seconds=60)
    store.hit("admin-1", now=0.0)

    assert not store.hit("admin-2", now=1.0).limited
    assert store.hit("admin-1", now=2.0).limited

    store.reset("admin-1")
    assert not store.hit("admin-1", now=3.0).limited


def test_idle_keys_are_forgotten():
    store = InMemoryRateLimitStore(max_requests=5, window_seconds=60)
    for index in range(3):
        store.hit(f"admin-{index}", now=100.0)

    store.hit("admin-late", now=200.0)

    assert set(store._hits) == {"admin-late"}
