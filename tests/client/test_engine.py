"""Tests for ReconciliationEngine."""

from __future__ import annotations

import asyncio
import threading

import pytest

from storesync.client.api import APIError
from storesync.client.store import InMemoryStore
from storesync.client.sync.engine import ReconciliationEngine
from storesync.client.sync.types import ChangeEvent, SyncError, SyncKind
from tests.fakes import FakeClock, FakeGateway, envelope


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway(
        {
            "products": [envelope("p1", name="Mug"), envelope("p2", name="Cup"),
                         envelope("p3", name="Plate")],
            "orders": [envelope("o1", total=10)],
            "product_categories": [
                {"id": "new-arrivals", "name": "New Arrivals"},
                {"id": "sale", "name": "Sale"},
            ],
            "business_settings": [{"id": "business", "data": {"currency": "NGN"}}],
        }
    )


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(100.0)


@pytest.fixture
def engine(gateway: FakeGateway, store: InMemoryStore, clock: FakeClock) -> ReconciliationEngine:
    engine = ReconciliationEngine(gateway, store, "biz-1", clock=clock)
    engine.attach()
    yield engine
    engine.close()


def ids(items: list[dict[str, str]]) -> list[str]:
    return [item["id"] for item in items]


class TestFullSync:
    """Tests for full sync."""

    @pytest.mark.asyncio
    async def test_pulls_every_table(
        self, engine: ReconciliationEngine, gateway: FakeGateway, store: InMemoryStore
    ) -> None:
        """Should install every collection from the backend."""
        result = await engine.full_sync()

        assert result is not None
        assert result.kind is SyncKind.FULL
        assert result.counts["products"] == 3
        assert ids(store.get("products")) == ["p1", "p2", "p3"]
        assert store.get("categories") == ["New Arrivals", "Sale"]
        assert store.get("business_settings") == {"currency": "NGN"}
        assert store.get("expenses") == []
        assert engine.state.initialized
        assert not engine.state.syncing
        assert {call[1] for call in gateway.calls_of("fetch")} == {
            "products", "orders", "customers", "restock_logs", "procurements",
            "expenses", "audit_logs", "order_statuses", "sale_sources",
            "custom_services", "payment_methods", "logistics_carriers",
            "product_categories", "expense_categories", "business_settings",
        }

    @pytest.mark.asyncio
    async def test_idempotent(
        self, engine: ReconciliationEngine, gateway: FakeGateway, store: InMemoryStore
    ) -> None:
        """Two syncs without remote changes leave the same state and write nothing."""
        await engine.full_sync()
        first = store.snapshot()
        await engine.full_sync()
        await engine.wait_idle()

        assert store.snapshot() == first
        assert gateway.calls_of("upsert") == []
        assert gateway.calls_of("delete") == []

    @pytest.mark.asyncio
    async def test_records_snapshots(self, engine: ReconciliationEngine) -> None:
        """Snapshots hold the identifiers that were installed."""
        await engine.full_sync()

        assert engine.snapshots.get("products") == {"p1", "p2", "p3"}
        assert engine.snapshots.get("product_categories") == {"new-arrivals", "sale"}
        assert "business_settings" not in engine.snapshots

    @pytest.mark.asyncio
    async def test_remote_removal_is_not_pushed_back(
        self, engine: ReconciliationEngine, gateway: FakeGateway, store: InMemoryStore
    ) -> None:
        """Rows removed remotely disappear locally without any remote write."""
        await engine.full_sync()
        gateway.rows["products"] = [envelope("p1", name="Mug")]

        await engine.full_sync()
        await engine.wait_idle()

        assert ids(store.get("products")) == ["p1"]
        assert gateway.calls_of("delete") == []

    @pytest.mark.asyncio
    async def test_missing_singleton_cleared(
        self, engine: ReconciliationEngine, gateway: FakeGateway, store: InMemoryStore
    ) -> None:
        """A missing remote singleton replaces the local one with None."""
        store.set("business_settings", {"currency": "USD"})
        gateway.rows["business_settings"] = []

        await engine.full_sync()

        assert store.get("business_settings") is None

    @pytest.mark.asyncio
    async def test_failure_leaves_state_unchanged(
        self, engine: ReconciliationEngine, gateway: FakeGateway, store: InMemoryStore
    ) -> None:
        """A failed fetch applies nothing and releases the mutex."""
        store.set("products", [{"id": "local"}])
        gateway.fail["fetch:orders"] = APIError("boom", 500)

        result = await engine.full_sync()

        assert result is None
        assert store.get("products") == [{"id": "local"}]
        assert store.get("orders") is None
        assert not engine.state.initialized
        assert not engine.state.syncing
        assert engine.stats.failures == 1

    @pytest.mark.asyncio
    async def test_unexpected_error_releases_mutex(
        self, engine: ReconciliationEngine, gateway: FakeGateway
    ) -> None:
        """Non-gateway errors are caught as well."""
        gateway.fail["fetch"] = RuntimeError("bug")

        assert await engine.full_sync() is None
        assert not engine.state.syncing


class TestBootstrap:
    """Tests for the bootstrap rule."""

    @pytest.mark.asyncio
    async def test_seeds_empty_backend(self, store: InMemoryStore) -> None:
        """Local products are pushed when the backend has none."""
        gateway = FakeGateway()
        store.set("products", [{"id": "p1", "name": "Mug"}])
        engine = ReconciliationEngine(gateway, store, "biz-1")

        result = await engine.full_sync()

        assert result is not None
        assert result.bootstrapped
        assert gateway.calls_of("upsert") == [
            ("upsert", "products", [{"id": "p1", "data": {"id": "p1", "name": "Mug"}}])
        ]
        assert store.get("products") == [{"id": "p1", "name": "Mug"}]
        assert engine.snapshots.get("products") == {"p1"}
        assert engine.stats.bootstraps == 1

    @pytest.mark.asyncio
    async def test_second_sync_after_seed_is_noop(self, store: InMemoryStore) -> None:
        """Once seeded, the next full sync writes nothing and changes nothing."""
        gateway = FakeGateway()
        store.set("products", [{"id": "p1", "name": "Mug"}])
        engine = ReconciliationEngine(gateway, store, "biz-1")
        engine.attach()
        await engine.full_sync()
        seeded = store.snapshot()
        gateway.calls.clear()

        result = await engine.full_sync()
        await engine.wait_idle()

        assert result is not None
        assert not result.bootstrapped
        assert gateway.calls_of("upsert") == []
        assert gateway.calls_of("delete") == []
        assert store.snapshot() == seeded
        engine.close()

    @pytest.mark.asyncio
    async def test_nothing_to_seed(self, store: InMemoryStore) -> None:
        """Empty on both sides stays empty without writes."""
        gateway = FakeGateway()
        engine = ReconciliationEngine(gateway, store, "biz-1")

        result = await engine.full_sync()

        assert result is not None
        assert not result.bootstrapped
        assert gateway.calls_of("upsert") == []

    @pytest.mark.asyncio
    async def test_remote_data_wins(
        self, engine: ReconciliationEngine, gateway: FakeGateway, store: InMemoryStore
    ) -> None:
        """Non-empty remote products replace local ones."""
        store.set("products", [{"id": "stale"}])

        result = await engine.full_sync()

        assert result is not None
        assert not result.bootstrapped
        assert ids(store.get("products")) == ["p1", "p2", "p3"]
        assert gateway.calls_of("upsert") == []

    @pytest.mark.asyncio
    async def test_failed_seed_changes_nothing(self, store: InMemoryStore) -> None:
        """A failed seed upsert applies no fetched data."""
        gateway = FakeGateway({"orders": [envelope("o1")]})
        gateway.fail["upsert"] = APIError("boom", 500)
        store.set("products", [{"id": "p1"}])
        engine = ReconciliationEngine(gateway, store, "biz-1")

        assert await engine.full_sync() is None
        assert store.get("orders") is None
        assert not engine.state.initialized


class TestLocalDeletions:
    """Tests for propagation of local mutations."""

    @pytest.mark.asyncio
    async def test_selective_delete(
        self, engine: ReconciliationEngine, gateway: FakeGateway, store: InMemoryStore
    ) -> None:
        """Removing one record deletes exactly that id remotely."""
        await engine.full_sync()
        products = store.get("products")

        store.set("products", [products[0], products[2]])
        await engine.wait_idle()

        assert gateway.calls_of("delete") == [("delete", "products", ["p2"])]
        assert ids(store.get("products")) == ["p1", "p3"]

    @pytest.mark.asyncio
    async def test_bulk_wipe_guard(
        self, engine: ReconciliationEngine, gateway: FakeGateway, store: InMemoryStore
    ) -> None:
        """Emptying a collection never deletes remotely."""
        await engine.full_sync()

        store.set("products", [])
        await engine.wait_idle()

        assert gateway.calls_of("delete") == []
        assert engine.stats.deletions_suppressed == 3
        assert engine.snapshots.get("products") == frozenset()

        await engine.full_sync()
        assert ids(store.get("products")) == ["p1", "p2", "p3"]

    @pytest.mark.asyncio
    async def test_store_reset_is_safe(
        self, engine: ReconciliationEngine, gateway: FakeGateway, store: InMemoryStore
    ) -> None:
        """Clearing the whole store deletes nothing remotely."""
        await engine.full_sync()

        store.clear()
        await engine.wait_idle()

        assert gateway.calls_of("delete") == []
        assert len(gateway.rows["products"]) == 3

    @pytest.mark.asyncio
    async def test_category_removal_uses_slug(
        self, engine: ReconciliationEngine, gateway: FakeGateway, store: InMemoryStore
    ) -> None:
        """Removing a category name deletes its slug row."""
        await engine.full_sync()

        store.set("categories", ["Sale"])
        await engine.wait_idle()

        assert gateway.calls_of("delete") == [
            ("delete", "product_categories", ["new-arrivals"])
        ]

    @pytest.mark.asyncio
    async def test_push_on_create(
        self, engine: ReconciliationEngine, gateway: FakeGateway, store: InMemoryStore
    ) -> None:
        """New restock logs are pushed, new orders are not."""
        await engine.full_sync()

        store.set("restock_logs", [{"id": "r1", "qty": 5}])
        store.set("orders", [*store.get("orders"), {"id": "o2"}])
        await engine.wait_idle()

        assert gateway.calls_of("upsert") == [
            ("upsert", "restock_logs", [{"id": "r1", "data": {"id": "r1", "qty": 5}}])
        ]

    @pytest.mark.asyncio
    async def test_singleton_never_deleted(
        self, engine: ReconciliationEngine, gateway: FakeGateway, store: InMemoryStore
    ) -> None:
        """Unsetting business settings locally issues no remote call."""
        await engine.full_sync()

        store.set("business_settings", None)
        await engine.wait_idle()

        assert gateway.calls_of("delete") == []

    @pytest.mark.asyncio
    async def test_ignored_before_first_sync(
        self, engine: ReconciliationEngine, gateway: FakeGateway, store: InMemoryStore
    ) -> None:
        """Local changes before initialization are not propagated."""
        store.set("products", [{"id": "x"}])
        store.set("products", [])
        await engine.wait_idle()

        assert gateway.calls == []


class TestConcurrency:
    """Tests for the single sync mutex and teardown."""

    @pytest.mark.asyncio
    async def test_overlapping_requests_dropped(
        self, engine: ReconciliationEngine, gateway: FakeGateway
    ) -> None:
        """Requests arriving during a sync are dropped, not queued."""
        gateway.gate = asyncio.Event()
        first = asyncio.create_task(engine.full_sync())
        await asyncio.sleep(0)

        assert engine.state.syncing
        assert await engine.full_sync() is None
        assert await engine.sync_table("orders") is None
        assert engine.stats.dropped_requests == 2

        gateway.gate.set()
        assert await first is not None
        assert engine.stats.full_syncs == 1
        assert len(gateway.calls_of("fetch")) == 15

    @pytest.mark.asyncio
    async def test_result_discarded_after_close(
        self, engine: ReconciliationEngine, gateway: FakeGateway, store: InMemoryStore
    ) -> None:
        """A sync finishing after close leaves the store untouched."""
        gateway.gate = asyncio.Event()
        task = asyncio.create_task(engine.full_sync())
        await asyncio.sleep(0)

        engine.close()
        gateway.gate.set()

        assert await task is None
        assert store.get("products") is None
        assert engine.closed
        assert await engine.full_sync() is None


class TestTableSync:
    """Tests for table-scoped sync and change events."""

    @pytest.mark.asyncio
    async def test_sync_table_replaces_one_collection(
        self, engine: ReconciliationEngine, gateway: FakeGateway, store: InMemoryStore
    ) -> None:
        """Only the requested collection is fetched and replaced."""
        await engine.full_sync()
        gateway.rows["orders"].append(envelope("o2", total=5))
        gateway.rows["products"] = []
        gateway.calls.clear()

        result = await engine.sync_table("orders")

        assert result is not None
        assert result.kind is SyncKind.TABLE
        assert gateway.calls == [("fetch", "orders", "biz-1")]
        assert ids(store.get("orders")) == ["o1", "o2"]
        assert ids(store.get("products")) == ["p1", "p2", "p3"]
        assert engine.snapshots.get("orders") == {"o1", "o2"}

    @pytest.mark.asyncio
    async def test_unknown_table(
        self, engine: ReconciliationEngine, gateway: FakeGateway
    ) -> None:
        """Unknown tables are ignored."""
        assert await engine.sync_table("invoices") is None
        assert gateway.calls == []
        assert not engine.state.syncing

    @pytest.mark.asyncio
    async def test_sync_table_failure(
        self, engine: ReconciliationEngine, gateway: FakeGateway, store: InMemoryStore
    ) -> None:
        """A failed refresh keeps local data."""
        await engine.full_sync()
        gateway.fail["fetch:orders"] = APIError("boom", 503)

        assert await engine.sync_table("orders") is None
        assert ids(store.get("orders")) == ["o1"]
        assert not engine.state.syncing

    @pytest.mark.asyncio
    async def test_change_event_triggers_table_sync(
        self,
        engine: ReconciliationEngine,
        gateway: FakeGateway,
        store: InMemoryStore,
        clock: FakeClock,
    ) -> None:
        """A change event stamps the realtime clock and refreshes its table."""
        await engine.full_sync()
        gateway.rows["orders"].append(envelope("o2"))
        gateway.calls.clear()

        engine.on_change_event(ChangeEvent(table="orders"))
        await engine.wait_idle()

        assert engine.state.last_realtime_at == 100.0
        assert gateway.calls == [("fetch", "orders", "biz-1")]
        assert ids(store.get("orders")) == ["o1", "o2"]
        assert engine.stats.table_syncs == 1


class TestConstruction:
    """Tests for engine construction."""

    def test_unknown_primary_table(self, gateway: FakeGateway, store: InMemoryStore) -> None:
        """The bootstrap table must be part of the registry."""
        with pytest.raises(SyncError):
            ReconciliationEngine(gateway, store, "biz-1", primary_table="invoices")


class TestWithoutRunningLoop:
    """Tests for local changes made outside the engine's event loop."""

    @pytest.fixture
    def gateway(self) -> FakeGateway:
        return FakeGateway({"products": [envelope("a"), envelope("b"), envelope("c")]})

    def test_change_deferred_until_loop_runs(
        self, gateway: FakeGateway, store: InMemoryStore
    ) -> None:
        """A removal made with no loop is propagated by the next observation."""
        engine = ReconciliationEngine(gateway, store, "biz-1")
        engine.attach()
        asyncio.run(engine.full_sync())
        a, b, c = store.get("products")

        store.set("products", [a, c])

        assert gateway.calls_of("delete") == []
        assert engine.snapshots.get("products") == {"a", "b", "c"}

        async def remove_another() -> None:
            store.set("products", [a])
            await engine.wait_idle()

        asyncio.run(remove_another())

        assert gateway.calls_of("delete") == [("delete", "products", ["b", "c"])]
        engine.close()

    def test_change_from_another_thread(
        self, gateway: FakeGateway, store: InMemoryStore
    ) -> None:
        """A removal made off-loop is scheduled on the loop the engine runs on."""
        loop = asyncio.new_event_loop()
        thread = threading.Thread(target=loop.run_forever, daemon=True)
        thread.start()
        engine = ReconciliationEngine(gateway, store, "biz-1")
        engine.attach()
        try:
            asyncio.run_coroutine_threadsafe(engine.full_sync(), loop).result(timeout=5)
            a, b, c = store.get("products")

            store.set("products", [a, c])
            asyncio.run_coroutine_threadsafe(engine.wait_idle(), loop).result(timeout=5)

            assert gateway.calls_of("delete") == [("delete", "products", ["b"])]
        finally:
            engine.close()
            loop.call_soon_threadsafe(loop.stop)
            thread.join(timeout=5)
            loop.close()
