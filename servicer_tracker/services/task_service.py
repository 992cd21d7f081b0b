"""
Task Service for the servicer tracker dashboard

Reads the task graph (task -> sub-category -> category -> customer) from
Supabase in one embedded query and hands it to the aggregation engine. Reads
never raise: a failed query is logged and comes back empty, with the error
kept on FetchResult for callers that need to tell "no data" from "store down".
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence, Type, TypeVar

from pydantic import BaseModel, ValidationError
from supabase import Client

from ..config import TABLES, Settings, get_settings
from ..exceptions import TrackerError
from ..logging_conf import ensure_logging_configured
from ..models import Customer, DailyUpdate, Task, TeamMember
from . import aggregation, demo_data
from .servicer_cache import ServicerCache
from .supabase_client import fetch_rows, get_supabase_client

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

# Every task with its full ownership chain; inner joins drop orphaned tasks
TASK_GRAPH_SELECT = (
    f"*, sub_category:{TABLES['sub_category']}!inner("
    f"*, category:{TABLES['category']}!inner("
    f"*, customer:{TABLES['customer']}!inner(*)))"
)

# Column path of the owning servicer inside TASK_GRAPH_SELECT
SERVICER_PATH = "sub_category.category.customer.assigned_to"

UPDATE_SELECT = (
    f"*, task:{TABLES['task']}!inner("
    f"*, sub_category:{TABLES['sub_category']}!inner("
    f"*, category:{TABLES['category']}!inner(*, customer:{TABLES['customer']}(*)))), "
    f"updater:{TABLES['team_member']}(*)"
)

_UUID_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE
)


def is_uuid(value: Optional[str]) -> bool:
    return bool(value) and bool(_UUID_RE.match(value))


def status_not_in_filter(statuses: Sequence[str]) -> str:
    """PostgREST `or` filter for "status not in statuses" that keeps rows with no status"""
    quoted = ",".join(f'"{status}"' for status in statuses)
    return f"status.is.null,status.not.in.({quoted})"


def parse_rows(model: Type[ModelT], rows: Sequence[Dict[str, Any]], label: str) -> List[ModelT]:
    """Validate store rows, skipping (and logging) any that do not fit the model."""
    parsed = []
    for row in rows:
        try:
            parsed.append(model.model_validate(row))
        except ValidationError as e:
            logger.warning(f"⚠️ Skipping malformed {label} row {row.get('id', row.get('phone'))}: {e}")
    return parsed


@dataclass
class FetchResult:
    """Tasks from one query plus the error, if the query failed"""
    rows: List[Task] = field(default_factory=list)
    error: Optional[TrackerError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class TaskService:
    """Read side of the tracker: task graph, roster and customers"""

    def __init__(self, client: Optional[Client] = None, settings: Optional[Settings] = None,
                 servicer_cache: Optional[ServicerCache] = None,
                 clock: Callable[[], datetime] = aggregation.utc_now):
        self.settings = settings or get_settings()
        self.client = client
        if servicer_cache is None:
            servicer_cache = ServicerCache(
                ttl_seconds=self.settings.SERVICER_CACHE_TTL_SECONDS,
                max_entries=self.settings.SERVICER_CACHE_MAX_ENTRIES,
            )
        self.servicer_cache = servicer_cache
        self._clock = clock
        if self.demo_mode:
            logger.warning("⚠️ TaskService running in demo mode (sample data, read-only)")

    @property
    def demo_mode(self) -> bool:
        return self.client is None

    def now(self) -> datetime:
        return self._clock()

    # ===== TASK GRAPH =====

    async def query_tasks(self, servicer_id: Optional[str] = None,
                          exclude_statuses: Sequence[str] = ()) -> FetchResult:
        """Task graph with the servicer and status filters applied by the store"""
        if self.demo_mode:
            tasks = aggregation.filter_by_servicer(demo_data.sample_tasks(self.now()), servicer_id)
            return FetchResult([task for task in tasks if task.status not in exclude_statuses])

        def build():
            query = self.client.table(TABLES["task"]).select(TASK_GRAPH_SELECT)
            if servicer_id:
                query = query.eq(SERVICER_PATH, servicer_id)
            if exclude_statuses:
                query = query.or_(status_not_in_filter(exclude_statuses))
            return query.order("id")

        rows, error = fetch_rows("Fetching tasks", build)
        tasks = parse_rows(Task, rows, "task")
        # Rows with an unresolved chain cannot prove ownership
        if servicer_id:
            tasks = aggregation.filter_by_servicer(tasks, servicer_id)
        return FetchResult(tasks, error)

    async def fetch_all_tasks_with_relationships(self) -> List[Task]:
        """Get every task with its sub-category, category and customer"""
        result = await self.query_tasks()
        logger.info(f"✅ Fetched {len(result.rows)} tasks with relationships")
        return result.rows

    async def get_servicer_uuid(self, name: str) -> Optional[str]:
        """Resolve a servicer name to its id (cached)"""
        cached = self.servicer_cache.get(name)
        if cached:
            return cached

        if self.demo_mode:
            members = [m for m in demo_data.sample_team_members() if m.name == name]
        else:
            rows, _ = fetch_rows(
                f"Looking up servicer {name}",
                lambda: self.client.table(TABLES["team_member"]).select("id, name").eq("name", name).limit(1),
            )
            members = parse_rows(TeamMember, rows, "team member")

        if not members:
            logger.warning(f"⚠️ No servicer named {name}")
            return None
        self.servicer_cache.set(name, members[0].id)
        return members[0].id

    async def resolve_servicer_id(self, identifier: Optional[str]) -> Optional[str]:
        if not identifier or is_uuid(identifier):
            return identifier
        return await self.get_servicer_uuid(identifier)

    async def fetch_servicer_tasks(self, identifier: str) -> List[Task]:
        """Tasks owned by a servicer, given either their id or their name"""
        servicer_id = await self.resolve_servicer_id(identifier)
        if not servicer_id:
            return []
        result = await self.query_tasks(servicer_id=servicer_id)
        return result.rows

    async def fetch_customer_tasks(self, phone: str) -> List[Task]:
        # Stored phones are formatted inconsistently, so match after normalising
        tasks = await self.fetch_all_tasks_with_relationships()
        return aggregation.filter_by_customer_phone(tasks, phone)

    async def fetch_stale_tasks(self, threshold_days: Optional[float] = None,
                                servicer_id: Optional[str] = None) -> List[Task]:
        """Incomplete tasks untouched for longer than the threshold"""
        if threshold_days is None:
            threshold_days = self.settings.STALE_THRESHOLD_DAYS
        result = await self.query_tasks(servicer_id=servicer_id)
        return aggregation.stale_tasks(result.rows, threshold_days, self.now())

    async def get_urgent_tasks(self, servicer_id: Optional[str] = None,
                               limit: Optional[int] = None) -> List[Task]:
        """Open tasks past the urgent threshold, oldest first"""
        result = await self.query_tasks(servicer_id=servicer_id, exclude_statuses=aggregation.TERMINAL_STATUSES)
        urgent = aggregation.stale_tasks(result.rows, self.settings.URGENT_THRESHOLD_DAYS, self.now())
        urgent.sort(key=lambda task: aggregation.days_since(task.last_updated, self.now()), reverse=True)
        return urgent[:limit] if limit is not None else urgent

    # ===== AGGREGATES =====

    async def get_dashboard_stats(self, servicer_id: Optional[str] = None) -> aggregation.DashboardStats:
        result = await self.query_tasks(servicer_id=servicer_id)
        return aggregation.get_dashboard_stats(
            result.rows,
            now=self.now(),
            stale_days=self.settings.STALE_THRESHOLD_DAYS,
            overdue_days=self.settings.OVERDUE_THRESHOLD_DAYS,
        )

    async def get_recent_updates(self, limit: Optional[int] = None,
                                 servicer_id: Optional[str] = None) -> List[aggregation.RecentUpdate]:
        result = await self.query_tasks(servicer_id=servicer_id)
        return aggregation.get_recent_updates(
            result.rows, self.settings.RECENT_UPDATES_LIMIT if limit is None else limit
        )

    async def get_customer_stats(self, phone: str) -> aggregation.CustomerStats:
        tasks = await self.fetch_customer_tasks(phone)
        return aggregation.get_customer_stats(tasks, phone, self.now(), self.settings.STALE_THRESHOLD_DAYS)

    async def batch_get_customer_stats(self, phones: Sequence[str]) -> Dict[str, aggregation.CustomerStats]:
        """Stats for many customers from a single fetch"""
        if not phones:
            return {}
        tasks = await self.fetch_all_tasks_with_relationships()
        stats = aggregation.batch_customer_stats(tasks, phones, self.now(), self.settings.STALE_THRESHOLD_DAYS)
        return {entry.customer_phone: entry for entry in stats}

    async def get_up_next(self, servicer_id: Optional[str] = None,
                          limit: Optional[int] = None) -> List[aggregation.UpNextItem]:
        """Priority work queue for one servicer, or for everyone"""
        if servicer_id:
            servicer_id = await self.resolve_servicer_id(servicer_id)
            if not servicer_id:
                return []
        result = await self.query_tasks(servicer_id=servicer_id, exclude_statuses=aggregation.TERMINAL_STATUSES)
        return aggregation.build_up_next(
            result.rows,
            now=self.now(),
            limit=self.settings.UP_NEXT_LIMIT if limit is None else limit,
            servicer_id=servicer_id,
        )

    async def get_customer_rollups(self, servicer_id: Optional[str] = None) -> Dict[str, aggregation.CustomerRollup]:
        result = await self.query_tasks(servicer_id=servicer_id)
        return aggregation.rollup_by_customer(result.rows)

    async def get_servicer_analytics(self, identifier: str) -> Optional[aggregation.ServicerAnalytics]:
        servicer_id = await self.resolve_servicer_id(identifier)
        if not servicer_id:
            return None
        members = {member.id: member.name for member in await self.fetch_team_members()}
        customers = await self.fetch_customers(servicer_id=servicer_id)
        result = await self.query_tasks(servicer_id=servicer_id)
        return aggregation.servicer_analytics(
            result.rows,
            servicer_id,
            servicer_name=members.get(servicer_id, "Selected Servicer"),
            customer_phones=[customer.phone for customer in customers],
        )

    # ===== ROSTER AND CUSTOMERS =====

    async def fetch_team_members(self) -> List[TeamMember]:
        if self.demo_mode:
            return demo_data.sample_team_members()
        rows, _ = fetch_rows(
            "Fetching team members",
            lambda: self.client.table(TABLES["team_member"]).select("id, name, email").order("name"),
        )
        return parse_rows(TeamMember, rows, "team member")

    async def fetch_customers(self, servicer_id: Optional[str] = None) -> List[Customer]:
        if self.demo_mode:
            customers = demo_data.sample_customers(self.now())
            return [c for c in customers if not servicer_id or c.assigned_to == servicer_id]

        def build():
            query = self.client.table(TABLES["customer"]).select("*")
            if servicer_id:
                query = query.eq("assigned_to", servicer_id)
            return query.order("display_name")

        rows, _ = fetch_rows("Fetching customers", build)
        return parse_rows(Customer, rows, "customer")

    async def fetch_customer(self, phone: str) -> Optional[Customer]:
        if self.demo_mode:
            wanted = aggregation.normalize_phone(phone)
            matches = [c for c in demo_data.sample_customers(self.now())
                       if aggregation.normalize_phone(c.phone) == wanted]
            return matches[0] if matches else None

        rows, _ = fetch_rows(
            f"Fetching customer {phone}",
            lambda: self.client.table(TABLES["customer"]).select("*").eq("phone", phone).limit(1),
        )
        customers = parse_rows(Customer, rows, "customer")
        return customers[0] if customers else None

    async def fetch_customer_communications(self, phone: str, limit: int = 10) -> List[DailyUpdate]:
        """Latest audit records where the servicer reached the customer"""
        if self.demo_mode:
            updates = [u for u in demo_data.sample_daily_updates(self.now())
                       if u.communicated and u.task is not None
                       and aggregation.normalize_phone(u.task.customer_phone) == aggregation.normalize_phone(phone)]
            return updates[:limit]

        rows, _ = fetch_rows(
            f"Fetching communications for {phone}",
            lambda: self.client.table(TABLES["daily_update"])
            .select(UPDATE_SELECT)
            .eq("task.sub_category.category.customer_phone", phone)
            .eq("communicated", True)
            .order("created_at", desc=True)
            .limit(limit),
        )
        return parse_rows(DailyUpdate, rows, "daily update")


# Global service instance
_task_service: Optional[TaskService] = None


def get_task_service() -> TaskService:
    """Get the global task service instance"""
    global _task_service
    if _task_service is None:
        ensure_logging_configured()
        _task_service = TaskService(client=get_supabase_client())
    return _task_service
