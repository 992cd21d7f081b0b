"""
Aggregation engine for the task graph.

Pure, in-memory reductions over tasks fetched by TaskService: staleness,
dashboard counts, the Up Next priority queue, urgency buckets, per-customer
and per-servicer rollups, bundle savings and the recent-updates feed.

Nothing here performs I/O and nothing raises for a broken ownership chain; a
task whose sub-category, category or customer did not resolve simply counts
as "unknown" for that field. Every function that depends on the clock takes
an optional ``now`` so callers and tests can pin it.
"""

import re
from collections import OrderedDict
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from ..models import (
    Bundle,
    BundleMember,
    Savings,
    Standalone,
    SubCategory,
    Task,
    TaskStatus,
    TERMINAL_STATUSES,
)

STALE_THRESHOLD_DAYS = 3
OVERDUE_THRESHOLD_DAYS = 7
RECENT_UPDATES_LIMIT = 10

# Stand-in day count for "never updated" / "never contacted"
NEVER_DAYS = 999

COMPLETE = TaskStatus.COMPLETE.value
NOT_STARTED = TaskStatus.NOT_STARTED.value

# Lower is more urgent
PRIORITY_SCORES: Dict[str, int] = {
    TaskStatus.WAITING_ON_INFO.value: 1,
    TaskStatus.WAITING_ON_PARTNER.value: 2,
    TaskStatus.IN_PROGRESS.value: 3,
    TaskStatus.SENT_INFO.value: 4,
    TaskStatus.FOLLOWED_UP.value: 5,
    TaskStatus.NOT_STARTED.value: 6,
}
DEFAULT_PRIORITY = 99

_PHONE_PUNCTUATION = re.compile(r"[\s\-()]")


class UrgencyBucket(str, Enum):
    FRESH = "fresh"
    AGING = "aging"
    WARNING = "warning"
    CRITICAL = "critical"


# Upper bounds in hours, checked in order
URGENCY_THRESHOLDS_HOURS: Tuple[Tuple[float, UrgencyBucket], ...] = (
    (24, UrgencyBucket.FRESH),
    (48, UrgencyBucket.AGING),
    (96, UrgencyBucket.WARNING),
)


# ===== RESULT RECORDS =====


@dataclass
class DashboardStats:
    total_tasks: int = 0
    tasks_needing_update: int = 0
    overdue_tasks: int = 0
    customers_with_stale_tasks: int = 0

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


@dataclass
class CustomerStats:
    customer_phone: str
    total_tasks: int = 0
    stale_tasks: int = 0
    last_update: Optional[datetime] = None
    needs_update: bool = False


@dataclass
class UpNextItem:
    id: str
    name: str
    status: str
    priority_score: int
    days_since_update: int
    subcategory_name: str = ""
    category_name: str = ""
    customer_name: str = ""
    customer_phone: str = ""
    servicer_id: Optional[str] = None
    started_at: Optional[datetime] = None
    last_updated: Optional[datetime] = None
    created_at: Optional[datetime] = None


@dataclass
class RecentUpdate:
    id: str
    task_name: str
    customer_name: str
    category_name: str
    subcategory_name: str
    status: str
    updated_at: datetime


@dataclass
class TaskCounts:
    total: int = 0
    in_progress: int = 0
    waiting: int = 0
    complete: int = 0

    def add(self, status: Optional[str]) -> None:
        self.total += 1
        if status == COMPLETE:
            self.complete += 1
        elif status == TaskStatus.IN_PROGRESS.value:
            self.in_progress += 1
        elif status and status.startswith("Waiting"):
            self.waiting += 1


@dataclass
class SubCategoryRollup:
    id: str
    name: str
    overall_status: Optional[str] = None
    bundle_id: Optional[str] = None
    money_saved: float = 0.0
    counts: TaskCounts = field(default_factory=TaskCounts)


@dataclass
class CategoryRollup:
    name: str
    money_saved: float = 0.0
    counts: TaskCounts = field(default_factory=TaskCounts)
    sub_categories: Dict[str, SubCategoryRollup] = field(default_factory=OrderedDict)


@dataclass
class CustomerRollup:
    phone: str
    name: str
    servicer_id: Optional[str] = None
    money_saved: float = 0.0
    counts: TaskCounts = field(default_factory=TaskCounts)
    categories: Dict[str, CategoryRollup] = field(default_factory=OrderedDict)
    bundles: Dict[str, Bundle] = field(default_factory=dict)


@dataclass
class ServicerAnalytics:
    servicer_id: str
    servicer_name: str
    total_savings: float = 0.0
    total_customers: int = 0
    completed_sub_categories: int = 0
    in_progress_sub_categories: int = 0
    total_sub_categories: int = 0


# ===== TIME HELPERS =====


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _resolve_now(now: Optional[datetime]) -> datetime:
    if now is None:
        return utc_now()
    if now.tzinfo is None:
        return now.replace(tzinfo=timezone.utc)
    return now


def days_since(timestamp: Optional[datetime], now: Optional[datetime] = None) -> int:
    """Whole days elapsed, NEVER_DAYS when there is no timestamp."""
    if timestamp is None:
        return NEVER_DAYS
    return (_resolve_now(now) - timestamp).days


def time_since(timestamp: Optional[datetime], now: Optional[datetime] = None) -> str:
    """Human readable age used next to last-contact times."""
    if timestamp is None:
        return "Never"
    seconds = int((_resolve_now(now) - timestamp).total_seconds())
    if seconds < 60:
        return "Just now"
    for unit, size, limit in (
        ("minute", 60, 3600),
        ("hour", 3600, 86400),
        ("day", 86400, 604800),
        ("week", 604800, 2592000),
        ("month", 2592000, 31536000),
    ):
        if seconds < limit:
            count = seconds // size
            return f"{count} {unit}{'' if count == 1 else 's'} ago"
    years = seconds // 31536000
    return f"{years} year{'' if years == 1 else 's'} ago"


def urgency_bucket(last_updated: Optional[datetime], now: Optional[datetime] = None) -> UrgencyBucket:
    if last_updated is None:
        return UrgencyBucket.CRITICAL
    hours = abs((_resolve_now(now) - last_updated).total_seconds()) / 3600
    for limit, bucket in URGENCY_THRESHOLDS_HOURS:
        if hours <= limit:
            return bucket
    return UrgencyBucket.CRITICAL


def days_color_bucket(days: int) -> UrgencyBucket:
    """Colouring for day counts in the queue and reports."""
    if days > OVERDUE_THRESHOLD_DAYS:
        return UrgencyBucket.CRITICAL
    if days > STALE_THRESHOLD_DAYS:
        return UrgencyBucket.WARNING
    return UrgencyBucket.FRESH


# ===== FILTERS =====


def as_tasks(rows: Iterable[Union[Task, Mapping[str, Any]]]) -> List[Task]:
    return [row if isinstance(row, Task) else Task.model_validate(row) for row in rows]


def normalize_phone(phone: Optional[str]) -> str:
    return _PHONE_PUNCTUATION.sub("", phone or "")


def filter_by_servicer(tasks: Iterable[Task], servicer_id: Optional[str]) -> List[Task]:
    if not servicer_id:
        return list(tasks)
    return [task for task in tasks if task.assigned_to == servicer_id]


def filter_by_customer_phone(tasks: Iterable[Task], phone: str) -> List[Task]:
    wanted = normalize_phone(phone)
    return [
        task for task in tasks
        if task.customer_phone is not None and normalize_phone(task.customer_phone) == wanted
    ]


def is_terminal(status: Optional[str]) -> bool:
    return status in TERMINAL_STATUSES


def is_stale(task: Task, threshold_days: float = STALE_THRESHOLD_DAYS,
             now: Optional[datetime] = None) -> bool:
    """Incomplete and not touched within the threshold (or never)."""
    if task.status == COMPLETE:
        return False
    if task.last_updated is None:
        return True
    return _resolve_now(now) - task.last_updated > timedelta(days=threshold_days)


def stale_tasks(tasks: Iterable[Task], threshold_days: float = STALE_THRESHOLD_DAYS,
                now: Optional[datetime] = None) -> List[Task]:
    now = _resolve_now(now)
    return [task for task in tasks if is_stale(task, threshold_days, now)]


# ===== DASHBOARD =====


def get_dashboard_stats(tasks: Sequence[Task], now: Optional[datetime] = None,
                        stale_days: float = STALE_THRESHOLD_DAYS,
                        overdue_days: float = OVERDUE_THRESHOLD_DAYS) -> DashboardStats:
    now = _resolve_now(now)
    needing_update = stale_tasks(tasks, stale_days, now)
    overdue = stale_tasks(tasks, overdue_days, now)
    customers = {task.customer_phone for task in needing_update if task.customer_phone}
    return DashboardStats(
        total_tasks=len(tasks),
        tasks_needing_update=len(needing_update),
        overdue_tasks=len(overdue),
        customers_with_stale_tasks=len(customers),
    )


def get_recent_updates(tasks: Iterable[Task], limit: int = RECENT_UPDATES_LIMIT) -> List[RecentUpdate]:
    updated = [task for task in tasks if task.last_updated is not None]
    updated.sort(key=lambda task: task.last_updated, reverse=True)
    feed = []
    for task in updated[:limit]:
        customer = task.customer
        category = task.category
        feed.append(RecentUpdate(
            id=task.id,
            task_name=task.name or "Unnamed Task",
            customer_name=(customer.display_name if customer else None) or "Unknown Customer",
            category_name=(category.name if category else None) or "Unknown Category",
            subcategory_name=(task.sub_category.name if task.sub_category else None) or "Unknown Subcategory",
            status=task.status or "pending",
            updated_at=task.last_updated,
        ))
    return feed


# ===== UP NEXT =====


def priority_score(status: Optional[str]) -> int:
    return PRIORITY_SCORES.get(status or "", DEFAULT_PRIORITY)


def up_next_sort_key(item: UpNextItem) -> Tuple[int, int]:
    return (item.priority_score, -item.days_since_update)


def to_up_next_item(task: Task, now: Optional[datetime] = None) -> UpNextItem:
    customer = task.customer
    category = task.category
    return UpNextItem(
        id=task.id,
        name=task.name or "",
        status=task.display_status,
        priority_score=priority_score(task.status),
        days_since_update=days_since(task.last_updated or task.created_at, now),
        subcategory_name=(task.sub_category.name if task.sub_category else None) or "",
        category_name=(category.name if category else None) or "",
        customer_name=(customer.display_name if customer else None) or "",
        customer_phone=task.customer_phone or "",
        servicer_id=task.assigned_to,
        started_at=task.started_at,
        last_updated=task.last_updated,
        created_at=task.created_at,
    )


def build_up_next(tasks: Iterable[Task], now: Optional[datetime] = None,
                  limit: Optional[int] = None, servicer_id: Optional[str] = None) -> List[UpNextItem]:
    """Non-terminal tasks, most urgent status first, oldest first within a status."""
    now = _resolve_now(now)
    items = [
        to_up_next_item(task, now)
        for task in filter_by_servicer(tasks, servicer_id)
        if not is_terminal(task.status)
    ]
    # sorted() is stable, equal keys keep fetch order
    items = sorted(items, key=up_next_sort_key)
    return items[:limit] if limit is not None else items


# ===== CUSTOMER STATS =====


def _latest_update(tasks: Iterable[Task]) -> Optional[datetime]:
    stamps = [task.last_updated for task in tasks if task.last_updated is not None]
    return max(stamps) if stamps else None


def get_customer_stats(tasks: Sequence[Task], customer_phone: str,
                       now: Optional[datetime] = None,
                       threshold_days: float = STALE_THRESHOLD_DAYS) -> CustomerStats:
    owned = filter_by_customer_phone(tasks, customer_phone)
    stale = stale_tasks(owned, threshold_days, now)
    return CustomerStats(
        customer_phone=customer_phone,
        total_tasks=len(owned),
        stale_tasks=len(stale),
        last_update=_latest_update(owned),
        needs_update=bool(stale),
    )


def batch_customer_stats(tasks: Iterable[Task], customer_phones: Sequence[str],
                         now: Optional[datetime] = None,
                         threshold_days: float = STALE_THRESHOLD_DAYS) -> List[CustomerStats]:
    """One pass over the task set for many customers, in the order asked."""
    now = _resolve_now(now)
    stats: Dict[str, CustomerStats] = OrderedDict(
        (phone, CustomerStats(customer_phone=phone)) for phone in customer_phones
    )
    # Several requested spellings of one number all get that customer's tasks
    by_normalized: Dict[str, List[str]] = {}
    for phone in stats:
        by_normalized.setdefault(normalize_phone(phone), []).append(phone)

    for task in tasks:
        if task.customer_phone is None:
            continue
        stale = is_stale(task, threshold_days, now)
        for phone in by_normalized.get(normalize_phone(task.customer_phone), ()):
            entry = stats[phone]
            entry.total_tasks += 1
            if stale:
                entry.stale_tasks += 1
                entry.needs_update = True
            if task.last_updated and (entry.last_update is None or task.last_updated > entry.last_update):
                entry.last_update = task.last_updated
    return list(stats.values())


# ===== BUNDLES =====


def unique_sub_categories(tasks: Iterable[Task]) -> List[SubCategory]:
    seen: Dict[str, SubCategory] = OrderedDict()
    for task in tasks:
        sub = task.sub_category
        if sub is not None and sub.id not in seen:
            seen[sub.id] = sub
    return list(seen.values())


def classify_savings(sub_categories: Iterable[SubCategory]) -> Tuple[Dict[str, Savings], Dict[str, Bundle]]:
    """Tag each sub-category as Standalone or BundleMember and total each bundle once."""
    savings: Dict[str, Savings] = {}
    bundles: Dict[str, Bundle] = {}
    for sub in sorted(sub_categories, key=lambda s: str(s.id)):
        amount = float(sub.money_saved or 0)
        if not sub.bundle_group:
            savings[sub.id] = Standalone(amount=amount)
            continue
        bundle = bundles.get(sub.bundle_group)
        if bundle is None:
            bundle = bundles[sub.bundle_group] = Bundle(bundle_id=sub.bundle_group, name=sub.bundle_name)
        elif bundle.name is None:
            bundle.name = sub.bundle_name
        # Members other than the holder carry 0, so the sum is the bundle total
        bundle.total += amount
        bundle.member_ids.append(sub.id)
        savings[sub.id] = BundleMember(bundle_id=sub.bundle_group)
    return savings, bundles


def total_money_saved(sub_categories: Iterable[SubCategory]) -> float:
    savings, bundles = classify_savings(sub_categories)
    standalone = sum(s.amount for s in savings.values() if isinstance(s, Standalone))
    return standalone + sum(bundle.total for bundle in bundles.values())


def split_bundle_total(member_ids: Iterable[str], total: float) -> Dict[str, float]:
    """Per-member money_saved for storage: the first id holds the total."""
    ordered = sorted({str(member_id) for member_id in member_ids})
    return {member_id: (float(total) if index == 0 else 0.0) for index, member_id in enumerate(ordered)}


# ===== ROLLUPS =====


def rollup_by_customer(tasks: Iterable[Task]) -> Dict[str, CustomerRollup]:
    """Customer -> category -> sub-category task counts and savings."""
    tasks = list(tasks)
    rollups: Dict[str, CustomerRollup] = OrderedDict()
    subs_by_customer: Dict[str, List[SubCategory]] = {}
    category_of: Dict[str, str] = {}

    for task in tasks:
        phone = task.customer_phone
        if not phone:
            continue
        customer = task.customer
        rollup = rollups.get(phone)
        if rollup is None:
            rollup = rollups[phone] = CustomerRollup(
                phone=phone,
                name=(customer.display_name if customer else None) or "Unknown Customer",
                servicer_id=task.assigned_to,
            )
        rollup.counts.add(task.status)

        category_name = (task.category.name if task.category else None) or "Uncategorized"
        category = rollup.categories.get(category_name)
        if category is None:
            category = rollup.categories[category_name] = CategoryRollup(name=category_name)
        category.counts.add(task.status)

        sub = task.sub_category
        if sub is None:
            continue
        sub_rollup = category.sub_categories.get(sub.id)
        if sub_rollup is None:
            sub_rollup = category.sub_categories[sub.id] = SubCategoryRollup(
                id=sub.id,
                name=sub.name or "Unknown Subcategory",
                overall_status=sub.overall_status,
                bundle_id=sub.bundle_group,
            )
            subs_by_customer.setdefault(phone, []).append(sub)
            category_of[sub.id] = category_name
        sub_rollup.counts.add(task.status)

    for phone, subs in subs_by_customer.items():
        rollup = rollups[phone]
        savings, bundles = classify_savings(subs)
        rollup.bundles = bundles
        for category in rollup.categories.values():
            for sub_rollup in category.sub_categories.values():
                saving = savings.get(sub_rollup.id)
                if isinstance(saving, Standalone):
                    sub_rollup.money_saved = saving.amount
                    category.money_saved += saving.amount
        # A bundle counts once, on the category of its first member
        for bundle in bundles.values():
            holder_category = category_of.get(bundle.member_ids[0]) if bundle.member_ids else None
            if holder_category in rollup.categories:
                rollup.categories[holder_category].money_saved += bundle.total
        rollup.money_saved = sum(category.money_saved for category in rollup.categories.values())
    return rollups


def sub_category_progress(tasks: Iterable[Task]) -> Tuple[int, int]:
    """(completed, total) for the tasks of one sub-category."""
    tasks = list(tasks)
    return sum(1 for task in tasks if task.status == COMPLETE), len(tasks)


def group_sub_categories_by_category(
    sub_categories: Iterable[SubCategory],
    category_names: Optional[Mapping[str, str]] = None,
) -> Dict[str, List[SubCategory]]:
    """Category name -> sub-categories, both sorted by name."""
    category_names = category_names or {}

    def category_name(sub: SubCategory) -> str:
        if sub.category is not None and sub.category.name:
            return sub.category.name
        return category_names.get(sub.category_id or "", "Uncategorized")

    ordered = sorted(sub_categories, key=lambda s: (category_name(s), s.name or ""))
    grouped: Dict[str, List[SubCategory]] = OrderedDict()
    for sub in ordered:
        grouped.setdefault(category_name(sub), []).append(sub)
    return grouped


def servicer_analytics(tasks: Iterable[Task], servicer_id: str, servicer_name: str = "Selected Servicer",
                       customer_phones: Optional[Iterable[str]] = None) -> ServicerAnalytics:
    """Savings and sub-category progress across one servicer's customers."""
    owned = filter_by_servicer(tasks, servicer_id)
    phones = set(customer_phones or ())
    phones.update(task.customer_phone for task in owned if task.customer_phone)

    by_sub: Dict[str, List[Task]] = OrderedDict()
    for task in owned:
        if task.sub_category is not None:
            by_sub.setdefault(task.sub_category.id, []).append(task)

    completed = in_progress = 0
    for sub_tasks in by_sub.values():
        done, total = sub_category_progress(sub_tasks)
        if total and done == total:
            completed += 1
        elif done > 0 or any(task.status != NOT_STARTED for task in sub_tasks):
            in_progress += 1

    return ServicerAnalytics(
        servicer_id=servicer_id,
        servicer_name=servicer_name,
        total_savings=total_money_saved(unique_sub_categories(owned)),
        total_customers=len(phones),
        completed_sub_categories=completed,
        in_progress_sub_categories=in_progress,
        total_sub_categories=len(by_sub),
    )
