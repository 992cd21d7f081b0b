"""
Static sample data for demo mode.

Served by every read when Supabase is not configured. Timestamps are relative
to the moment the sample is built so the dashboard shows a realistic spread
of fresh and stale work.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from ..models import Customer, DailyUpdate, Task, TeamMember

SERVICER_ALICE = "5d1f7a52-2c0e-4c55-9d0a-0c7a3f7e0a01"
SERVICER_BEN = "8b2e4c10-7f3d-4a9e-b1c2-3d4e5f6a7b02"

TEAM_MEMBERS = [
    {"id": SERVICER_ALICE, "name": "Alice Ngata", "email": "alice@example.com"},
    {"id": SERVICER_BEN, "name": "Ben Walker", "email": "ben@example.com"},
]

CUSTOMERS = [
    {
        "phone": "+64 21 123 4567",
        "display_name": "John & Sarah Mitchell",
        "email": "john.mitchell@email.com",
        "assigned_to": SERVICER_ALICE,
        "flags": ["VIP"],
        "last_contact_method": "Email",
        "_contact_days_ago": 2,
    },
    {
        "phone": "+64 21 765 4321",
        "display_name": "Emma Thompson",
        "email": "emma.thompson@email.com",
        "assigned_to": SERVICER_ALICE,
        "flags": [],
        "last_contact_method": "WhatsApp",
        "_contact_days_ago": 0,
    },
    {
        "phone": "+64 21 555 0123",
        "display_name": "David & Lisa Chen",
        "email": "david.chen@email.com",
        "assigned_to": SERVICER_BEN,
        "flags": ["Difficult"],
        "_contact_days_ago": None,
    },
    {
        "phone": "+64 21 999 8877",
        "display_name": "Rachel & James Wilson",
        "email": "rachel.wilson@email.com",
        "assigned_to": SERVICER_BEN,
        "flags": ["New"],
        "last_contact_method": "Phone",
        "_contact_days_ago": 9,
    },
]

CATEGORIES = [
    {"id": "cat-1", "customer_phone": "+64 21 123 4567", "name": "Insurance", "status": "Ongoing"},
    {"id": "cat-2", "customer_phone": "+64 21 123 4567", "name": "Investment", "status": "Waiting on Info"},
    {"id": "cat-3", "customer_phone": "+64 21 765 4321", "name": "Utilities", "status": "Ongoing"},
    {"id": "cat-4", "customer_phone": "+64 21 555 0123", "name": "Debt", "status": "Ongoing"},
    {"id": "cat-5", "customer_phone": "+64 21 999 8877", "name": "Housing", "status": "Not Started"},
]

SUB_CATEGORIES = [
    {"id": "sub-1", "category_id": "cat-1", "name": "Car Insurance", "overall_status": "Optimised",
     "money_saved": 420.0, "bundle_group": "bundle-mitchell", "bundle_name": "Car + House"},
    {"id": "sub-2", "category_id": "cat-1", "name": "House Insurance", "overall_status": "Optimised",
     "money_saved": 0.0, "bundle_group": "bundle-mitchell", "bundle_name": "Car + House"},
    {"id": "sub-3", "category_id": "cat-2", "name": "Optimising Investments", "overall_status": "In Progress",
     "money_saved": 0.0},
    {"id": "sub-4", "category_id": "cat-3", "name": "Power", "overall_status": "Optimised", "money_saved": 310.5},
    {"id": "sub-5", "category_id": "cat-4", "name": "Debt Consolidation", "overall_status": "In Progress",
     "money_saved": 1200.0},
    {"id": "sub-6", "category_id": "cat-5", "name": "Refinancing Mortgage", "overall_status": "Not Started",
     "money_saved": 0.0},
]

# (id, sub_category_id, name, status, last updated days ago or None, custom status)
TASKS = [
    ("task-01", "sub-1", "Collect vehicle details", "Complete", 6, None),
    ("task-02", "sub-1", "Compare quotes online", "Complete", 5, None),
    ("task-03", "sub-2", "Collect current policy", "Complete", 5, None),
    ("task-04", "sub-2", "Guide switch", "Followed Up", 1, None),
    ("task-05", "sub-3", "Review current portfolio", "Waiting on Info", 4, None),
    ("task-06", "sub-3", "Rebalance if needed", "Not Started", None, None),
    ("task-07", "sub-4", "Get recent bills", "Complete", 2, None),
    ("task-08", "sub-4", "Guide through switch", "In Progress", 0, None),
    ("task-09", "sub-5", "Collect loan statements and all debts", "Waiting on Partner", 9, None),
    ("task-10", "sub-5", "Compare consolidation options", "In Progress", 3, "Waiting on Meter Reading"),
    ("task-11", "sub-6", "Collect all documentation", "Not Started", None, None),
    ("task-12", "sub-6", "Send all information to mortgage partner", "N/A", 12, None),
]


def _ago(now: datetime, days: Optional[float]) -> Optional[str]:
    if days is None:
        return None
    return (now - timedelta(days=days)).isoformat()


def sample_team_members() -> List[TeamMember]:
    return [TeamMember.model_validate(member) for member in TEAM_MEMBERS]


def _customer_rows(now: datetime) -> Dict[str, Dict[str, Any]]:
    rows = {}
    for customer in CUSTOMERS:
        row = {key: value for key, value in customer.items() if not key.startswith("_")}
        row["last_contact_at"] = _ago(now, customer["_contact_days_ago"])
        row["created_at"] = _ago(now, 30)
        rows[row["phone"]] = row
    return rows


def sample_customers(now: Optional[datetime] = None) -> List[Customer]:
    now = now or datetime.now(timezone.utc)
    return [Customer.model_validate(row) for row in _customer_rows(now).values()]


def sample_tasks(now: Optional[datetime] = None) -> List[Task]:
    """Every task with its sub-category, category and customer embedded."""
    now = now or datetime.now(timezone.utc)
    customers = _customer_rows(now)
    categories = {
        category["id"]: dict(category, customer=customers[category["customer_phone"]], start_time=_ago(now, 30))
        for category in CATEGORIES
    }
    sub_categories = {
        sub["id"]: dict(sub, category=categories[sub["category_id"]], start_time=_ago(now, 28))
        for sub in SUB_CATEGORIES
    }
    tasks = []
    for task_id, sub_id, name, status, days_ago, custom_status in TASKS:
        started = None if status == "Not Started" else _ago(now, 20)
        tasks.append(Task.model_validate({
            "id": task_id,
            "sub_category_id": sub_id,
            "name": name,
            "status": status,
            "custom_status": custom_status,
            "created_at": _ago(now, 28),
            "started_at": started,
            "last_updated": _ago(now, days_ago),
            "completed_at": _ago(now, days_ago) if status == "Complete" else None,
            "communicated": status != "Not Started",
            "sub_category": sub_categories[sub_id],
        }))
    return tasks


def sample_daily_updates(now: Optional[datetime] = None) -> List[DailyUpdate]:
    """Today's audit trail: Alice worked two tasks, Ben none."""
    now = now or datetime.now(timezone.utc)
    by_id = {task.id: task for task in sample_tasks(now)}
    today = now.date()
    updates = [
        ("task-08", "Not Started", "In Progress", True, "WhatsApp"),
        ("task-04", "In Progress", "Followed Up", False, None),
    ]
    return [
        DailyUpdate(
            id=f"upd-{index}",
            task_id=task_id,
            update_date=today,
            previous_status=previous,
            new_status=new,
            communicated=communicated,
            communication_method=method,
            updated_by=SERVICER_ALICE,
            created_at=now - timedelta(hours=index + 1),
            task=by_id[task_id],
        )
        for index, (task_id, previous, new, communicated, method) in enumerate(updates)
    ]
