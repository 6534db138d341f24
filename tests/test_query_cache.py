from query_cache import QueryClient


class Counter:
    def __init__(self):
        self.calls = 0

    def __call__(self):
        self.calls += 1
        return [self.calls]


def test_results_are_cached_until_invalidated():
    qc = QueryClient()
    fetch = Counter()

    assert qc.fetch_query(("products",), fetch) == [1]
    assert qc.fetch_query(("products",), fetch) == [1]
    assert fetch.calls == 1

    qc.invalidate_queries(("products",))
    assert qc.is_stale(("products",))
    assert qc.fetch_query(("products",), fetch) == [2]
    assert not qc.is_stale(("products",))


def test_invalidation_matches_key_prefix():
    qc = QueryClient()
    qc.set_query_data(("user_profiles",), ["all"])
    qc.set_query_data(("user_profiles", "u-1"), {"id": "u-1"})
    qc.set_query_data(("orders",), [])

    assert qc.invalidate_queries("user_profiles") == 2
    assert qc.is_stale(("user_profiles", "u-1"))
    assert not qc.is_stale(("orders",))
    assert qc.get_query_data(("user_profiles", "u-1")) == {"id": "u-1"}


def test_stale_time_expires_results(monkeypatch):
    clock = [100.0]
    monkeypatch.setattr("query_cache.time.monotonic", lambda: clock[0])
    qc = QueryClient(stale_time=5)
    fetch = Counter()

    qc.fetch_query("orders", fetch)
    clock[0] += 4
    qc.fetch_query("orders", fetch)
    assert fetch.calls == 1

    clock[0] += 2
    qc.fetch_query("orders", fetch)
    assert fetch.calls == 2


def test_remove_queries():
    qc = QueryClient()
    qc.set_query_data(("products",), [1])
    qc.remove_queries(["products"])
    assert qc.get_query_data(("products",)) is None
    assert qc.is_stale(("products",))


def test_invalidation_during_fetch_keeps_result_stale():
    qc = QueryClient()
    qc.set_query_data(("products",), ["old"])
    qc.invalidate_queries(("products",))

    def fetch_while_stock_changes():
        snapshot = ["before sale"]
        # a sale commits after the rows were read
        qc.invalidate_queries(("products",))
        return snapshot

    assert qc.fetch_query(("products",), fetch_while_stock_changes) == ["before sale"]
    assert qc.is_stale(("products",))
    assert qc.fetch_query(("products",), lambda: ["after sale"]) == ["after sale"]
    assert not qc.is_stale(("products",))


def test_invalidation_during_first_fetch_is_kept():
    qc = QueryClient()

    def fetch():
        qc.invalidate_queries(("orders",))
        return []

    qc.fetch_query(("orders",), fetch)
    assert qc.is_stale(("orders",))
