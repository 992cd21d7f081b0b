"""
Update Service for the servicer tracker

Every write the dashboard makes: task status changes (with the started /
completed timestamps that go with them), the servicer save flow, customer
notes and flags, sub-category savings and bundles, and the daily_updates audit
trail. Writes raise StoreWriteError when the store rejects them and
ReadOnlyModeError in demo mode. Concurrent edits are last-write-wins.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence

from supabase import Client

from ..config import TABLES, Settings, get_settings
from ..exceptions import NotFoundError, ReadOnlyModeError, StoreWriteError
from ..logging_conf import ensure_logging_configured
from ..models import (
    COMMUNICATION_METHODS,
    CUSTOM_STATUS_OPTION,
    CUSTOMER_FLAGS,
    PREDEFINED_TASKS_BY_SUB_CATEGORY,
    SUBCATEGORY_STATUSES,
    DailyUpdate,
    Task,
    TaskStatus,
    TaskUpdateDraft,
)
from .aggregation import split_bundle_total, utc_now
from .supabase_client import STORE_ERRORS, get_supabase_client

logger = logging.getLogger(__name__)

COMPLETE = TaskStatus.COMPLETE.value
NOT_STARTED = TaskStatus.NOT_STARTED.value

COMMUNICATION_LOGGED = "Communication Logged"


def build_status_patch(current_status: Optional[str], current_started_at: Optional[Any],
                       new_status: str, now: datetime) -> Dict[str, Any]:
    """
    Columns to write for a status change.

    started_at is stamped once, the first time the task leaves Not Started.
    completed_at is non-null exactly while the task is Complete: stamped on
    entering Complete, cleared on leaving it.
    """
    if not new_status or new_status == CUSTOM_STATUS_OPTION:
        raise ValueError(f"Invalid task status: {new_status!r}")

    stamp = now.isoformat()
    patch: Dict[str, Any] = {"status": new_status, "last_updated": stamp}
    if new_status != NOT_STARTED and not current_started_at:
        patch["started_at"] = stamp
    if new_status == COMPLETE:
        if current_status != COMPLETE:
            patch["completed_at"] = stamp
    else:
        patch["completed_at"] = None
    return patch


class UpdateService:
    """Write side of the tracker"""

    def __init__(self, client: Optional[Client] = None, settings: Optional[Settings] = None,
                 clock: Callable[[], datetime] = utc_now):
        self.client = client
        self.settings = settings or get_settings()
        self._clock = clock

    @property
    def demo_mode(self) -> bool:
        return self.client is None

    def now(self) -> datetime:
        return self._clock()

    def _run(self, action: str, build_query: Callable[[Client], Any]) -> List[Dict[str, Any]]:
        """Execute one statement; store failures surface as StoreWriteError"""
        if self.client is None:
            raise ReadOnlyModeError(f"{action} is not available in demo mode")
        try:
            response = build_query(self.client).execute()
        except STORE_ERRORS as e:
            error = StoreWriteError.from_api_error(e, action)
            logger.error(f"❌ {error.message}", extra=error.as_log_fields())
            raise error from e
        return list(response.data or [])

    # ===== TASKS =====

    async def get_task_state(self, task_id: str) -> Dict[str, Any]:
        rows = self._run(
            f"Reading task {task_id}",
            lambda c: c.table(TABLES["task"]).select("id, status, started_at, notes").eq("id", task_id).limit(1),
        )
        if not rows:
            raise NotFoundError(f"Task {task_id} not found")
        return rows[0]

    async def update_task_status(self, task_id: str, new_status: str, updated_by: Optional[str] = None,
                                 comment: Optional[str] = None) -> Dict[str, Any]:
        """Change a task's status and append the audit record"""
        current = await self.get_task_state(task_id)
        now = self.now()
        patch = build_status_patch(current.get("status"), current.get("started_at"), new_status, now)
        if updated_by:
            patch["updated_by"] = updated_by
        if comment:
            patch["notes"] = comment

        rows = self._run(
            f"Updating task {task_id}",
            lambda c: c.table(TABLES["task"]).update(patch).eq("id", task_id),
        )
        await self.record_daily_update(DailyUpdate(
            task_id=task_id,
            update_date=now.date(),
            previous_status=current.get("status"),
            new_status=new_status,
            previous_notes=current.get("notes") if comment else None,
            new_notes=comment,
            updated_by=updated_by,
        ))
        logger.info(f"✅ Task {task_id}: {current.get('status')} -> {new_status}")
        return rows[0] if rows else patch

    async def save_task_update(self, task: Task, draft: TaskUpdateDraft,
                               updated_by: Optional[str] = None) -> Dict[str, Any]:
        """Servicer save flow: status, notes and communication in one write"""
        if draft.communicated and draft.communication_method not in COMMUNICATION_METHODS:
            raise ValueError(f"Unknown communication method: {draft.communication_method!r}")

        status = draft.status
        if status == CUSTOM_STATUS_OPTION:
            if not draft.custom_status:
                raise ValueError("A custom status needs its text")
            status = task.status or NOT_STARTED

        now = self.now()
        patch = build_status_patch(task.status, task.started_at, status, now)
        patch.update({
            "custom_status": (draft.custom_status or None) if draft.status == CUSTOM_STATUS_OPTION else None,
            "notes": draft.notes,
            "updated_by": updated_by,
            "communicated": draft.communicated,
            "communication_method": draft.communication_method if draft.communicated else None,
            "no_comm_reason": draft.no_comm_reason if not draft.communicated else None,
        })

        rows = self._run(
            f"Saving task {task.id}",
            lambda c: c.table(TABLES["task"]).update(patch).eq("id", task.id),
        )
        await self.record_daily_update(DailyUpdate(
            task_id=task.id,
            update_date=now.date(),
            previous_status=task.status,
            new_status=status,
            previous_notes=task.notes,
            new_notes=draft.notes,
            communicated=draft.communicated,
            communication_method=patch["communication_method"],
            no_comm_reason=patch["no_comm_reason"],
            updated_by=updated_by,
        ))
        logger.info(f"✅ Saved task {task.id} ({status})")
        return rows[0] if rows else patch

    async def toggle_task_complete(self, task_id: str, current_status: Optional[str],
                                   updated_by: Optional[str] = None) -> Dict[str, Any]:
        new_status = NOT_STARTED if current_status == COMPLETE else COMPLETE
        return await self.update_task_status(task_id, new_status, updated_by=updated_by)

    async def set_task_completed_date(self, task_id: str, completed_at: Optional[datetime]) -> None:
        """Back-date (or clear) when a task was completed"""
        patch = {
            "completed_at": completed_at.isoformat() if completed_at else None,
            "last_updated": self.now().isoformat(),
        }
        self._run(f"Setting completed date on {task_id}",
                  lambda c: c.table(TABLES["task"]).update(patch).eq("id", task_id))

    async def touch_task_last_updated(self, task_id: str, when: Optional[datetime] = None) -> None:
        stamp = (when or self.now()).isoformat()
        self._run(f"Touching task {task_id}",
                  lambda c: c.table(TABLES["task"]).update({"last_updated": stamp}).eq("id", task_id))

    # ===== CUSTOMERS =====

    async def save_customer_notes(self, phone: str, notes: str) -> None:
        self._run(f"Saving notes for {phone}",
                  lambda c: c.table(TABLES["customer"]).update({"notes": notes}).eq("phone", phone))

    async def save_customer_description(self, phone: str, description: str) -> None:
        self._run(f"Saving description for {phone}",
                  lambda c: c.table(TABLES["customer"]).update({"description": description}).eq("phone", phone))

    async def toggle_customer_flag(self, phone: str, flag: str,
                                   current_flags: Optional[Sequence[str]] = None) -> List[str]:
        """Add the flag if absent, remove it if present; returns the new list"""
        if flag not in CUSTOMER_FLAGS:
            raise ValueError(f"Unknown customer flag: {flag!r}")
        if current_flags is None:
            rows = self._run(f"Reading flags for {phone}",
                             lambda c: c.table(TABLES["customer"]).select("flags").eq("phone", phone).limit(1))
            if not rows:
                raise NotFoundError(f"Customer {phone} not found")
            current_flags = rows[0].get("flags") or []

        flags = [f for f in current_flags if f != flag]
        if flag not in current_flags:
            flags.append(flag)
        self._run(f"Updating flags for {phone}",
                  lambda c: c.table(TABLES["customer"]).update({"flags": flags}).eq("phone", phone))
        return flags

    async def log_communication(self, phone: str, method: str, updated_by: Optional[str] = None) -> None:
        """Stamp the customer's last contact and leave a trace in the audit trail"""
        if method not in COMMUNICATION_METHODS:
            raise ValueError(f"Unknown communication method: {method!r}")
        now = self.now()
        rows = self._run(
            f"Logging communication with {phone}",
            lambda c: c.table(TABLES["customer"])
            .update({"last_contact_at": now.isoformat(), "last_contact_method": method})
            .eq("phone", phone),
        )
        servicer_id = updated_by or (rows[0].get("assigned_to") if rows else None)
        if not servicer_id:
            return

        # The audit trail is keyed by task, so pin the record on any of the customer's tasks
        tasks = self._run(
            f"Finding a task for {phone}",
            lambda c: c.table(TABLES["task"])
            .select(f"id, sub_category:{TABLES['sub_category']}!inner(category:{TABLES['category']}!inner(customer_phone))")
            .eq("sub_category.category.customer_phone", phone)
            .limit(1),
        )
        if not tasks:
            logger.info(f"No tasks for {phone}, communication not added to the audit trail")
            return
        await self.record_daily_update(DailyUpdate(
            task_id=tasks[0]["id"],
            update_date=now.date(),
            new_status=COMMUNICATION_LOGGED,
            communicated=True,
            communication_method=method,
            updated_by=servicer_id,
        ))

    # ===== SUB-CATEGORIES =====

    async def update_money_saved(self, sub_category_id: str, amount: float) -> None:
        patch = {"money_saved": float(amount), "last_update": self.now().isoformat()}
        self._run(f"Updating money saved on {sub_category_id}",
                  lambda c: c.table(TABLES["sub_category"]).update(patch).eq("id", sub_category_id))

    async def update_overall_status(self, sub_category_id: str, overall_status: str) -> None:
        if overall_status not in SUBCATEGORY_STATUSES:
            raise ValueError(f"Unknown overall status: {overall_status!r}")
        patch = {"overall_status": overall_status, "last_update": self.now().isoformat()}
        self._run(f"Updating overall status on {sub_category_id}",
                  lambda c: c.table(TABLES["sub_category"]).update(patch).eq("id", sub_category_id))

    async def set_bundle(self, sub_category_ids: Sequence[str], bundle_group: str,
                         bundle_name: Optional[str], total: float) -> Dict[str, float]:
        """Group sub-categories into a bundle; the first member by id holds the total"""
        if not sub_category_ids:
            raise ValueError("A bundle needs at least one sub-category")
        amounts = split_bundle_total(sub_category_ids, total)
        stamp = self.now().isoformat()
        for sub_id, amount in amounts.items():
            patch = {
                "bundle_group": bundle_group,
                "bundle_name": bundle_name,
                "money_saved": amount,
                "last_update": stamp,
            }
            self._run(f"Adding {sub_id} to bundle {bundle_group}",
                      lambda c, patch=patch, sub_id=sub_id:
                      c.table(TABLES["sub_category"]).update(patch).eq("id", sub_id))
        logger.info(f"✅ Bundle {bundle_group} saved with {len(amounts)} members, total {total}")
        return amounts

    async def add_sub_category(self, phone: str, category_name: str, name: str) -> Dict[str, Any]:
        """Create a sub-category (and its category if needed) seeded with its checklist"""
        name = name.strip()
        if not name or not category_name:
            raise ValueError("category_name and name are required")
        stamp = self.now().isoformat()

        existing = self._run(
            f"Looking up category {category_name} for {phone}",
            lambda c: c.table(TABLES["category"]).select("id")
            .eq("customer_phone", phone).eq("name", category_name).limit(1),
        )
        if existing:
            category_id = existing[0]["id"]
        else:
            created = self._run(
                f"Creating category {category_name} for {phone}",
                lambda c: c.table(TABLES["category"]).insert({
                    "customer_phone": phone,
                    "name": category_name,
                    "start_time": stamp,
                    "status": NOT_STARTED,
                }),
            )
            category_id = created[0]["id"]

        created = self._run(
            f"Creating sub-category {name}",
            lambda c: c.table(TABLES["sub_category"]).insert({
                "category_id": category_id,
                "name": name,
                "start_time": stamp,
                "status": NOT_STARTED,
            }),
        )
        sub_category = created[0]

        checklist = PREDEFINED_TASKS_BY_SUB_CATEGORY.get(name, [])
        if checklist:
            tasks = [
                {
                    "sub_category_id": sub_category["id"],
                    "name": task_name,
                    "status": NOT_STARTED,
                    "notes": "",
                    "communicated": False,
                    "money_saved": 0,
                }
                for task_name in checklist
            ]
            self._run(f"Seeding tasks for {name}", lambda c: c.table(TABLES["task"]).insert(tasks))
        logger.info(f"✅ Added {category_name} / {name} for {phone} with {len(checklist)} tasks")
        return sub_category

    async def delete_sub_category(self, sub_category_id: str) -> None:
        # Tasks reference the sub-category, so they go first
        self._run(f"Deleting tasks of {sub_category_id}",
                  lambda c: c.table(TABLES["task"]).delete().eq("sub_category_id", sub_category_id))
        self._run(f"Deleting sub-category {sub_category_id}",
                  lambda c: c.table(TABLES["sub_category"]).delete().eq("id", sub_category_id))
        logger.info(f"🗑️ Deleted sub-category {sub_category_id}")

    # ===== AUDIT TRAIL =====

    async def record_daily_update(self, update: DailyUpdate) -> Dict[str, Any]:
        """Append one audit record; existing records are never modified"""
        payload = update.to_insert()
        rows = self._run(f"Recording daily update for {update.task_id}",
                         lambda c: c.table(TABLES["daily_update"]).insert(payload))
        return rows[0] if rows else payload


# Global service instance
_update_service: Optional[UpdateService] = None


def get_update_service() -> UpdateService:
    """Get the global update service instance"""
    global _update_service
    if _update_service is None:
        ensure_logging_configured()
        _update_service = UpdateService(client=get_supabase_client())
    return _update_service
