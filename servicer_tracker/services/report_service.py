"""
Daily servicer report

Partitions one day's audit records by the servicer who made them and cross
references the customer roster: who was contacted, which customers with open
work were not, and what is still outstanding. The report is built over the
servicer roster, so a servicer with assigned customers shows up even on a day
with no updates.
"""

import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Dict, Iterable, List, Optional, Set

from ..config import TABLES
from ..models import Customer, DailyUpdate, Task, TaskStatus, TeamMember
from . import aggregation, demo_data
from .supabase_client import fetch_rows
from .task_service import UPDATE_SELECT, TaskService, get_task_service, parse_rows

logger = logging.getLogger(__name__)

UNKNOWN = "Unknown"
_OLDEST = datetime.min.replace(tzinfo=timezone.utc)


@dataclass
class TaskUpdateLine:
    task_id: str
    task_name: str
    customer_name: str
    customer_phone: str
    new_status: str
    previous_status: Optional[str] = None
    time: Optional[datetime] = None
    communicated: bool = False
    communication_method: Optional[str] = None
    comment: Optional[str] = None


@dataclass
class NotContactedCustomer:
    phone: str
    name: str
    days_since_contact: int
    last_contact_at: Optional[datetime] = None
    last_contact_method: Optional[str] = None


@dataclass
class RemainingTask:
    task_id: str
    task_name: str
    customer_name: str
    status: str
    days_since_update: int


@dataclass
class ServicerReport:
    servicer_id: str
    servicer_name: str
    tasks_updated: int = 0
    tasks_completed: int = 0
    tasks_in_progress: int = 0
    customers_contacted: Set[str] = field(default_factory=set)
    customers_not_contacted: List[NotContactedCustomer] = field(default_factory=list)
    task_updates: List[TaskUpdateLine] = field(default_factory=list)
    remaining_tasks: List[RemainingTask] = field(default_factory=list)


@dataclass
class ReportSummary:
    total_updates: int = 0
    total_completed: int = 0
    total_customers_contacted: int = 0
    total_customers_not_contacted: int = 0


def _update_line(update: DailyUpdate) -> TaskUpdateLine:
    task = update.task
    customer = task.customer if task else None
    return TaskUpdateLine(
        task_id=update.task_id,
        task_name=(task.name if task else None) or "Unknown Task",
        customer_name=(customer.display_name if customer else None) or UNKNOWN,
        customer_phone=(task.customer_phone if task else None) or "",
        new_status=update.new_status,
        previous_status=update.previous_status,
        time=update.created_at,
        communicated=update.communicated,
        communication_method=update.communication_method,
        comment=update.new_notes,
    )


def build_daily_report(updates: Iterable[DailyUpdate], customers: Iterable[Customer],
                       open_tasks: Iterable[Task], team_members: Iterable[TeamMember] = (),
                       now: Optional[datetime] = None) -> List[ServicerReport]:
    """
    Build one ServicerReport per servicer.

    ``open_tasks`` are the tasks whose status is neither Complete nor N/A; a
    customer owning at least one of them is active and needs contact.
    """
    customers = list(customers)
    open_tasks = [task for task in open_tasks if not aggregation.is_terminal(task.status)]
    names = {member.id: member.name for member in team_members}
    reports: Dict[str, ServicerReport] = OrderedDict()

    def report_for(servicer_id: str) -> ServicerReport:
        report = reports.get(servicer_id)
        if report is None:
            report = reports[servicer_id] = ServicerReport(
                servicer_id=servicer_id, servicer_name=names.get(servicer_id, UNKNOWN)
            )
        return report

    # Roster first: every servicer with an assigned customer
    for customer in customers:
        if customer.assigned_to:
            report_for(customer.assigned_to)

    for update in updates:
        servicer_id = update.updated_by or (update.task.assigned_to if update.task else None)
        if not servicer_id:
            continue
        report = report_for(servicer_id)
        if report.servicer_name == UNKNOWN and update.updater is not None:
            report.servicer_name = update.updater.name
        report.tasks_updated += 1
        if update.new_status == TaskStatus.COMPLETE.value:
            report.tasks_completed += 1
        elif update.new_status == TaskStatus.IN_PROGRESS.value:
            report.tasks_in_progress += 1
        phone = update.task.customer_phone if update.task else None
        if update.communicated and phone:
            report.customers_contacted.add(phone)
        report.task_updates.append(_update_line(update))

    active_phones = {
        aggregation.normalize_phone(task.customer_phone) for task in open_tasks if task.customer_phone
    }
    for customer in customers:
        report = reports.get(customer.assigned_to) if customer.assigned_to else None
        if report is None or aggregation.normalize_phone(customer.phone) not in active_phones:
            continue
        contacted = {aggregation.normalize_phone(phone) for phone in report.customers_contacted}
        if aggregation.normalize_phone(customer.phone) in contacted:
            continue
        report.customers_not_contacted.append(NotContactedCustomer(
            phone=customer.phone,
            name=customer.display_name or customer.phone,
            days_since_contact=aggregation.days_since(customer.last_contact_at, now),
            last_contact_at=customer.last_contact_at,
            last_contact_method=customer.last_contact_method,
        ))

    for task in open_tasks:
        report = reports.get(task.assigned_to) if task.assigned_to else None
        if report is None:
            continue
        customer = task.customer
        report.remaining_tasks.append(RemainingTask(
            task_id=task.id,
            task_name=task.name or "Unknown Task",
            customer_name=(customer.display_name if customer else None) or UNKNOWN,
            status=task.display_status,
            days_since_update=aggregation.days_since(task.last_updated, now),
        ))

    for report in reports.values():
        report.customers_not_contacted.sort(key=lambda c: c.days_since_contact, reverse=True)
        report.remaining_tasks.sort(key=lambda t: t.days_since_update, reverse=True)
        # Newest first; records without a timestamp sink to the bottom
        report.task_updates.sort(key=lambda u: u.time or _OLDEST, reverse=True)
    return list(reports.values())


def summarize_reports(reports: Iterable[ServicerReport]) -> ReportSummary:
    summary = ReportSummary()
    for report in reports:
        summary.total_updates += report.tasks_updated
        summary.total_completed += report.tasks_completed
        summary.total_customers_contacted += len(report.customers_contacted)
        summary.total_customers_not_contacted += len(report.customers_not_contacted)
    return summary


class ReportService:
    """Fetches a day's audit trail and roster, then builds the report"""

    def __init__(self, task_service: Optional[TaskService] = None):
        self.tasks = task_service or get_task_service()

    async def fetch_updates_for_date(self, report_date: date,
                                     servicer_id: Optional[str] = None) -> List[DailyUpdate]:
        """Audit records for one calendar day, newest first"""
        if self.tasks.demo_mode:
            updates = [
                u for u in demo_data.sample_daily_updates(self.tasks.now())
                if u.update_date == report_date and (not servicer_id or u.updated_by == servicer_id)
            ]
            return updates

        def build():
            query = self.tasks.client.table(TABLES["daily_update"]).select(UPDATE_SELECT)
            query = query.eq("update_date", report_date.isoformat())
            if servicer_id:
                query = query.eq("updated_by", servicer_id)
            return query.order("created_at", desc=True)

        rows, _ = fetch_rows(f"Fetching daily updates for {report_date}", build)
        return parse_rows(DailyUpdate, rows, "daily update")

    async def generate(self, report_date: Optional[date] = None) -> List[ServicerReport]:
        now = self.tasks.now()
        report_date = report_date or now.date()
        updates = await self.fetch_updates_for_date(report_date)
        customers = await self.tasks.fetch_customers()
        open_tasks = await self.tasks.query_tasks(exclude_statuses=aggregation.TERMINAL_STATUSES)
        if not open_tasks.ok:
            logger.warning(f"⚠️ Report for {report_date} built without open tasks: {open_tasks.error.message}")
        team = await self.tasks.fetch_team_members()

        reports = build_daily_report(updates, customers, open_tasks.rows, team, now)
        summary = summarize_reports(reports)
        logger.info(
            f"✅ Report for {report_date}: {len(reports)} servicers, {summary.total_updates} updates, "
            f"{summary.total_customers_not_contacted} customers not contacted"
        )
        return reports
