import pytest

from fakes import NOW, SERVICER_A, SERVICER_B, FakeSupabase, days_ago, task_row
from servicer_tracker.exceptions import StoreUnavailableError
from servicer_tracker.services.servicer_cache import ServicerCache
from servicer_tracker.services.task_service import SERVICER_PATH, TaskService, is_uuid


class TestTaskQueries:
    """Unit tests for task graph reads"""

    @pytest.mark.asyncio
    async def test_fetch_all_tasks(self, task_service, fake_client):
        """Test every task comes back parsed with its chain, ordered by id"""
        tasks = await task_service.fetch_all_tasks_with_relationships()

        assert [task.id for task in tasks] == ["t1", "t2", "t3", "t4", "t5"]
        assert tasks[0].customer.display_name == "Mitchell"
        query = fake_client.executed("tasks")[0]
        assert "sub_category:sub_categories!inner" in query.columns
        assert query.order_by == [("id", False)]

    @pytest.mark.asyncio
    async def test_query_pushes_filters_to_store(self, task_service, fake_client):
        """Test servicer and status filters are sent with the query"""
        result = await task_service.query_tasks(servicer_id=SERVICER_A, exclude_statuses=("Complete", "N/A"))

        assert result.ok
        assert [task.id for task in result.rows] == ["t2", "t3"]
        filters = fake_client.executed("tasks")[0].filters
        assert ("eq", SERVICER_PATH, SERVICER_A) in filters
        assert ("or", 'status.is.null,status.not.in.("Complete","N/A")', None) in filters

    @pytest.mark.asyncio
    async def test_excluding_statuses_keeps_rows_without_status(self, settings):
        """Test a task with no status survives a status exclusion, as in demo mode"""
        rows = [task_row("blank", status=None), task_row("done", "Complete"), task_row("open", "In Progress")]
        service = TaskService(client=FakeSupabase({"tasks": rows}), settings=settings, clock=lambda: NOW)

        result = await service.query_tasks(exclude_statuses=("Complete", "N/A"))

        assert [task.id for task in result.rows] == ["blank", "open"]

    @pytest.mark.asyncio
    async def test_fetch_failure_is_distinguishable(self, task_service, fake_client):
        """Test a failed query returns no rows but keeps the error"""
        fake_client.fail("tasks", message="connection refused", code="PGRST000")

        result = await task_service.query_tasks()

        assert result.rows == []
        assert not result.ok
        assert isinstance(result.error, StoreUnavailableError)
        assert result.error.code == "PGRST000"
        assert "connection refused" in result.error.message

    @pytest.mark.asyncio
    async def test_fetch_failure_degrades_to_empty(self, task_service, fake_client):
        """Test public fetches render an empty state instead of raising"""
        fake_client.fail("tasks")

        assert await task_service.fetch_all_tasks_with_relationships() == []
        stats = await task_service.get_dashboard_stats()
        assert stats.total_tasks == 0

    @pytest.mark.asyncio
    async def test_malformed_rows_are_skipped(self, settings):
        """Test a row that cannot be parsed does not sink the whole fetch"""
        client = FakeSupabase({"tasks": [task_row("ok"), {"status": "In Progress"}]})
        service = TaskService(client=client, settings=settings, clock=lambda: NOW)

        tasks = await service.fetch_all_tasks_with_relationships()

        assert [task.id for task in tasks] == ["ok"]

    @pytest.mark.asyncio
    async def test_fetch_customer_tasks_normalises_phone(self, task_service):
        """Test customer lookup ignores phone formatting"""
        tasks = await task_service.fetch_customer_tasks("+64-21-333-3333")

        assert [task.id for task in tasks] == ["t4", "t5"]

    @pytest.mark.asyncio
    async def test_fetch_stale_tasks(self, task_service):
        """Test stale tasks use the configured threshold and servicer filter"""
        stale = await task_service.fetch_stale_tasks()
        stale_b = await task_service.fetch_stale_tasks(servicer_id=SERVICER_B)
        overdue = await task_service.fetch_stale_tasks(threshold_days=15)

        assert [task.id for task in stale] == ["t2", "t3", "t5"]
        assert [task.id for task in stale_b] == ["t5"]
        assert [task.id for task in overdue] == ["t3", "t5"]

    @pytest.mark.asyncio
    async def test_urgent_tasks_exclude_terminal(self, task_service):
        """Test the urgent list holds open tasks only, oldest first"""
        urgent = await task_service.get_urgent_tasks()

        assert [task.id for task in urgent] == ["t3", "t2"]


class TestServicerLookup:
    """Unit tests for servicer resolution and caching"""

    def test_is_uuid(self):
        """Test UUID shape detection"""
        assert is_uuid(SERVICER_A)
        assert not is_uuid("Alice")
        assert not is_uuid("")
        assert not is_uuid(None)

    @pytest.mark.asyncio
    async def test_name_lookup_is_cached(self, task_service, fake_client):
        """Test a name is resolved once then served from the cache"""
        assert await task_service.get_servicer_uuid("Alice") == SERVICER_A
        assert await task_service.get_servicer_uuid("Alice") == SERVICER_A

        assert len(fake_client.executed("tbl_team_member")) == 1
        assert task_service.servicer_cache.stats["hits"] == 1

    @pytest.mark.asyncio
    async def test_cache_expiry_triggers_new_lookup(self, fake_client, settings):
        """Test an expired entry is looked up again"""
        clock = [0.0]
        cache = ServicerCache(ttl_seconds=10, clock=lambda: clock[0])
        service = TaskService(client=fake_client, settings=settings, servicer_cache=cache, clock=lambda: NOW)

        await service.get_servicer_uuid("Alice")
        clock[0] = 11.0
        await service.get_servicer_uuid("Alice")

        assert len(fake_client.executed("tbl_team_member")) == 2

    def test_empty_injected_cache_is_kept(self, fake_client, settings):
        """Test a freshly built (empty) cache is the one the service uses"""
        cache = ServicerCache(ttl_seconds=10)
        service = TaskService(client=fake_client, settings=settings, servicer_cache=cache, clock=lambda: NOW)

        assert len(cache) == 0
        assert service.servicer_cache is cache

    @pytest.mark.asyncio
    async def test_unknown_name(self, task_service):
        """Test an unknown servicer resolves to nothing and yields no tasks"""
        assert await task_service.get_servicer_uuid("Nobody") is None
        assert await task_service.fetch_servicer_tasks("Nobody") == []

    @pytest.mark.asyncio
    async def test_fetch_servicer_tasks_by_name_or_id(self, task_service, fake_client):
        """Test both identifiers give the same tasks and ids skip the lookup"""
        by_name = await task_service.fetch_servicer_tasks("Ben")
        lookups = len(fake_client.executed("tbl_team_member"))
        by_id = await task_service.fetch_servicer_tasks(SERVICER_B)

        assert [t.id for t in by_name] == [t.id for t in by_id] == ["t4", "t5"]
        assert len(fake_client.executed("tbl_team_member")) == lookups

    @pytest.mark.asyncio
    async def test_unresolved_chain_not_attributed(self, settings):
        """Test a task whose customer did not resolve is not given to the servicer"""
        rows = [task_row("mine", servicer_id=SERVICER_A), task_row("broken", servicer_id=SERVICER_A)]
        rows[1]["sub_category"]["category"]["customer"] = None
        service = TaskService(client=FakeSupabase({"tasks": rows}), settings=settings, clock=lambda: NOW)

        tasks = await service.fetch_servicer_tasks(SERVICER_A)

        assert [t.id for t in tasks] == ["mine"]


class TestAggregates:
    """Unit tests for the service-level aggregates"""

    @pytest.mark.asyncio
    async def test_dashboard_stats(self, task_service):
        """Test dashboard counts over the whole team"""
        stats = await task_service.get_dashboard_stats()

        assert stats.to_dict() == {
            "total_tasks": 5,
            "tasks_needing_update": 3,
            "overdue_tasks": 3,
            "customers_with_stale_tasks": 3,
        }

    @pytest.mark.asyncio
    async def test_recent_updates_default_limit(self, task_service):
        """Test the feed skips never-updated tasks"""
        feed = await task_service.get_recent_updates()

        assert [entry.id for entry in feed] == ["t4", "t1", "t2", "t5"]

    @pytest.mark.asyncio
    async def test_zero_limit_is_respected(self, task_service):
        """Test an explicit limit of zero returns nothing rather than the default"""
        assert await task_service.get_recent_updates(limit=0) == []
        assert await task_service.get_up_next(limit=0) == []

    @pytest.mark.asyncio
    async def test_up_next_by_name(self, task_service):
        """Test the queue resolves a servicer name"""
        queue = await task_service.get_up_next("Alice")

        assert [item.id for item in queue] == ["t2", "t3"]

    @pytest.mark.asyncio
    async def test_customer_stats(self, task_service):
        """Test single and batch customer stats agree"""
        single = await task_service.get_customer_stats("+64 21 111 1111")
        batch = await task_service.batch_get_customer_stats(["+64 21 111 1111", "+64 21 222 2222"])

        assert batch["+64 21 111 1111"] == single
        assert batch["+64 21 222 2222"].stale_tasks == 1
        assert await task_service.batch_get_customer_stats([]) == {}

    @pytest.mark.asyncio
    async def test_servicer_analytics(self, task_service):
        """Test analytics pick up the servicer's name and customers"""
        analytics = await task_service.get_servicer_analytics("Alice")

        assert analytics.servicer_name == "Alice"
        assert analytics.total_savings == 450.0
        assert analytics.total_customers == 2

    @pytest.mark.asyncio
    async def test_customer_rollups(self, task_service):
        """Test rollups are keyed by phone"""
        rollups = await task_service.get_customer_rollups(servicer_id=SERVICER_B)

        assert list(rollups) == ["+64 21 333 3333"]


class TestCustomers:
    """Unit tests for roster and customer reads"""

    @pytest.mark.asyncio
    async def test_fetch_team_members(self, task_service):
        """Test the roster is ordered by name"""
        members = await task_service.fetch_team_members()

        assert [m.name for m in members] == ["Alice", "Ben"]

    @pytest.mark.asyncio
    async def test_fetch_customers_for_servicer(self, task_service):
        """Test customers can be narrowed to one servicer"""
        customers = await task_service.fetch_customers(servicer_id=SERVICER_A)

        assert [c.display_name for c in customers] == ["Mitchell", "Thompson"]
        assert customers[0].flags == ["VIP"]
        assert customers[0].last_contact_at == days_ago(2)

    @pytest.mark.asyncio
    async def test_fetch_customer(self, task_service):
        """Test single customer lookup and miss"""
        assert (await task_service.fetch_customer("+64 21 333 3333")).display_name == "Chen"
        assert await task_service.fetch_customer("+1 000") is None


class TestDemoMode:
    """Unit tests for the unconfigured fallback"""

    def test_demo_settings(self, demo_settings):
        """Test missing credentials switch on demo mode"""
        assert demo_settings.demo_mode

    @pytest.mark.asyncio
    async def test_reads_serve_sample_data(self, demo_task_service):
        """Test every read works without a store"""
        tasks = await demo_task_service.fetch_all_tasks_with_relationships()
        members = await demo_task_service.fetch_team_members()
        customers = await demo_task_service.fetch_customers()

        assert demo_task_service.demo_mode
        assert len(tasks) > 0
        assert all(task.customer is not None for task in tasks)
        assert len(members) == 2
        assert len(customers) == 4

    @pytest.mark.asyncio
    async def test_demo_servicer_filter(self, demo_task_service):
        """Test servicer names resolve against the sample roster"""
        tasks = await demo_task_service.fetch_servicer_tasks("Ben Walker")
        queue = await demo_task_service.get_up_next("Ben Walker")

        assert tasks
        assert {task.customer.display_name for task in tasks} <= {"David & Lisa Chen", "Rachel & James Wilson"}
        assert all(item.status not in ("Complete", "N/A") for item in queue)

    @pytest.mark.asyncio
    async def test_demo_communications(self, demo_task_service):
        """Test the sample audit trail has a logged contact"""
        updates = await demo_task_service.fetch_customer_communications("+64 21 765 4321")

        assert [u.communication_method for u in updates] == ["WhatsApp"]
