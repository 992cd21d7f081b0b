"""
Row models and fixed vocabularies for the servicer task tracker.

Rows come back from Supabase as plain dicts with nested joins
(task -> sub_category -> category -> customer). The models tolerate extra
columns and missing links so a partially resolved chain never blows up.
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from enum import Enum
from typing import Annotated, Dict, List, Optional, Union

from pydantic import AfterValidator, BaseModel, ConfigDict, Field


def _as_utc(value: datetime) -> datetime:
    # Date-only and naive strings from the store are UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


Timestamp = Annotated[datetime, AfterValidator(_as_utc)]


class TaskStatus(str, Enum):
    NOT_STARTED = "Not Started"
    IN_PROGRESS = "In Progress"
    CALL_ARRANGED = "Call Arranged"
    SENT_INFO = "Sent Info"
    WAITING_ON_INFO = "Waiting on Info"
    WAITING_ON_PARTNER = "Waiting on Partner"
    FOLLOWED_UP = "Followed Up"
    COMPLETE = "Complete"
    NOT_APPLICABLE = "N/A"


class OverallStatus(str, Enum):
    NOT_STARTED = "Not Started"
    IN_PROGRESS = "In Progress"
    CANT_OPTIMISE = "Can't Optimise"
    OPTIMISED = "Optimised"


# Statuses that close a task for reporting purposes
TERMINAL_STATUSES = (TaskStatus.COMPLETE.value, TaskStatus.NOT_APPLICABLE.value)

CUSTOM_STATUS_OPTION = "Custom..."

PREDEFINED_STATUSES: List[str] = [s.value for s in TaskStatus] + [CUSTOM_STATUS_OPTION]

SUBCATEGORY_STATUSES: List[str] = [s.value for s in OverallStatus]

PREDEFINED_CATEGORIES: List[str] = [
    "Banking/Saving",
    "Credit Card",
    "Debt",
    "Housing",
    "Insurance",
    "Investment",
    "IRD",
    "Tax",
    "Utilities",
]

CUSTOMER_FLAGS: List[str] = ["Difficult", "Slow", "VIP", "Priority", "New"]

COMMUNICATION_METHODS: List[str] = ["Email", "WhatsApp", "SMS", "Phone", "In-person", "Other"]

SUB_CATEGORIES: Dict[str, List[str]] = {
    "Banking/Saving": ["Banking Optimisation"],
    "Credit Card": ["Credit Card - Balance Transfer", "Credit Card - Rewards"],
    "Debt": ["Debt Consolidation", "New Loan", "Hardship", "Nga Tangata", "Good Shepherd"],
    "Housing": ["First Home Buyer", "Refinancing Mortgage", "Rent"],
    "Insurance": [
        "Car Insurance",
        "Health Insurance",
        "House Insurance",
        "Pet Insurance",
        "Contents Insurance",
        "Life Insurance",
    ],
    "Investment": ["Starting Investing", "Optimising Investments"],
    "IRD": ["Unclaimed Money"],
    "Tax": ["Tax - Optimisation"],
    "Utilities": ["Broadband", "Power", "Mobile", "Gas"],
}

_SWITCH_INSURANCE = [
    "Collect current policy",
    "Compare quotes online",
    "Review excess & value options",
    "Check multi-policy discounts",
    "Suggest optimisation",
    "Guide switch",
]
_PARTNER_INSURANCE = [
    "Collect relevant documents",
    "Send to health insurance partner",
    "Compare providers yourself",
    "Suggest optimisation",
]
_MORTGAGE = ["Collect all documentation", "Send all information to mortgage partner"]
_ENERGY = [
    "Get recent bills",
    "Check current rates",
    "Compare providers",
    "Check bundle options",
    "Suggest optimisation",
    "Guide through switch",
]

PREDEFINED_TASKS_BY_SUB_CATEGORY: Dict[str, List[str]] = {
    "Banking Optimisation": [
        "Review current situation",
        "Compare banking providers interest rates",
        "Suggest optimised savings plan",
    ],
    "Credit Card - Balance Transfer": [
        "Collect recent statements",
        "Calculate spend vs pay-off",
        "Compare against other cards on tool",
        "Suggest new card",
        "Guide how to switch",
    ],
    "Credit Card - Rewards": [
        "Review current rewards program",
        "Calculate annual expenditure",
        "Compare rewards cards on tool",
        "Calculate annual value",
        "Suggest optimisation",
        "Guide how to switch",
    ],
    "Nga Tangata": [
        "Check Eligibility (Income)",
        "Get last 2/3 months bank statement",
        "Create debt schedules",
        "Create current & proposed budget",
        "Collect loan statements and all debts",
        "ID verification",
        "Collect proof of income (payslip or MSD breakdown)",
        "Fill in application website",
        "Financial well-being questionnaire",
        "Signed by applicant",
    ],
    "Good Shepherd": [
        "Check Eligibility (Income)",
        "Get bank statement",
        "Create current & proposed budget",
        "Collect loan statements and all debts",
        "Create debt schedule",
        "ID verification",
        "Collect proof of income (payslip or MSD breakdown)",
        "Fill in application website",
        "Financial well-being questionnaire",
        "Signed by applicant",
    ],
    "Debt Consolidation": [
        "Collect loan statements and all debts",
        "Check credit score",
        "Calculate total debt amount",
        "Compare consolidation options",
        "Apply for consolidation loans",
    ],
    "New Loan": [
        "Determine loan amount needed",
        "Check credit score",
        "Compare lenders",
        "Gather income documents",
        "Submit loan applications",
        "Choose appropriate loan provider",
    ],
    "Hardship": [
        "Document financial situation",
        "Send templates for current lenders",
        "Request hardship variations",
        "Negotiate payment plans",
    ],
    "First Home Buyer": list(_MORTGAGE),
    "Refinancing Mortgage": list(_MORTGAGE),
    "Rent": [
        "Review current rental cost",
        "Research market rates",
        "Check tenancy agreement",
        "Negotiate with landlord",
        "Consider relocation options",
        "Update bond if moving",
        "Arrange utilities transfer",
    ],
    "Car Insurance": ["Collect vehicle details"] + _SWITCH_INSURANCE,
    "Health Insurance": list(_PARTNER_INSURANCE),
    "House Insurance": ["Collect house details"] + _SWITCH_INSURANCE,
    "Pet Insurance": [
        "Get pet details",
        "Compare coverage options",
        "Review exclusions",
        "Get quotes",
        "Suggest optimisation",
    ],
    "Contents Insurance": ["Collect contents details"] + _SWITCH_INSURANCE,
    "Life Insurance": list(_PARTNER_INSURANCE),
    "Starting Investing": [
        "Determine investment goals",
        "Assess risk tolerance",
        "Research investment options",
        "Choose platform/broker",
        "Open investment account",
        "Make initial deposit",
        "Select first investments",
        "Set up regular contributions",
    ],
    "Optimising Investments": [
        "Review current portfolio",
        "Assess performance",
        "Rebalance if needed",
        "Consider tax implications(optional)",
        "Update investment strategy",
        "Consolidate if beneficial",
    ],
    "Unclaimed Money": [
        "Check IRD unclaimed money database",
        "Submit claim forms",
        "Communicate with client",
    ],
    "Tax - Optimisation": ["Review income", "Send client A&A authority form", "Update client"],
    "Broadband": ["Get recent bill", "Compare providers", "Check bundle options", "Suggest optimisation"],
    "Power": list(_ENERGY),
    "Mobile": [
        "Get recent bill",
        "Compare plans",
        "Check coverage maps",
        "Suggest optimisation",
        "Guide through switch",
    ],
    "Gas": list(_ENERGY),
}


def status_options(current: Optional[str] = None) -> List[str]:
    """Selectable task statuses; a free-text status stays selectable."""
    options = list(PREDEFINED_STATUSES)
    if current and current not in options:
        options.insert(len(options) - 1, current)
    return options


class _Row(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True, coerce_numbers_to_str=True)


class TeamMember(_Row):
    id: str
    name: str
    email: Optional[str] = None


class Customer(_Row):
    phone: str
    display_name: Optional[str] = None
    email: Optional[str] = None
    assigned_to: Optional[str] = None
    customer_type: Optional[str] = None
    notes: Optional[str] = None
    description: Optional[str] = None
    flags: List[str] = Field(default_factory=list)
    last_contact_at: Optional[Timestamp] = None
    last_contact_method: Optional[str] = None
    last_email_contact: Optional[Timestamp] = None
    last_message_at: Optional[Timestamp] = None
    created_at: Optional[Timestamp] = None
    updated_at: Optional[Timestamp] = None


class Category(_Row):
    id: str
    customer_phone: Optional[str] = None
    name: Optional[str] = None
    status: Optional[str] = None
    start_time: Optional[Timestamp] = None
    last_update: Optional[Timestamp] = None
    created_at: Optional[Timestamp] = None
    customer: Optional[Customer] = None


class SubCategory(_Row):
    id: str
    category_id: Optional[str] = None
    name: Optional[str] = None
    status: Optional[str] = None
    overall_status: Optional[str] = None
    money_saved: Optional[float] = None
    bundle_group: Optional[str] = None
    bundle_name: Optional[str] = None
    is_complete: bool = False
    completed_at: Optional[Timestamp] = None
    start_time: Optional[Timestamp] = None
    last_update: Optional[Timestamp] = None
    created_at: Optional[Timestamp] = None
    category: Optional[Category] = None


class Task(_Row):
    id: str
    sub_category_id: Optional[str] = None
    name: Optional[str] = None
    status: Optional[str] = TaskStatus.NOT_STARTED.value
    custom_status: Optional[str] = None
    notes: Optional[str] = None
    created_at: Optional[Timestamp] = None
    started_at: Optional[Timestamp] = None
    last_updated: Optional[Timestamp] = None
    completed_at: Optional[Timestamp] = None
    communicated: bool = False
    communication_method: Optional[str] = None
    no_comm_reason: Optional[str] = None
    money_saved: Optional[float] = None
    updated_by: Optional[str] = None
    sub_category: Optional[SubCategory] = None

    # Ownership chain helpers, None when any link is missing

    @property
    def category(self) -> Optional[Category]:
        return self.sub_category.category if self.sub_category else None

    @property
    def customer(self) -> Optional[Customer]:
        category = self.category
        return category.customer if category else None

    @property
    def customer_phone(self) -> Optional[str]:
        customer = self.customer
        if customer:
            return customer.phone
        category = self.category
        return category.customer_phone if category else None

    @property
    def assigned_to(self) -> Optional[str]:
        customer = self.customer
        return customer.assigned_to if customer else None

    @property
    def display_status(self) -> str:
        """Status as shown to operators, custom text included."""
        return self.custom_status or self.status or ""


class DailyUpdate(_Row):
    id: Optional[str] = None
    task_id: str
    update_date: date
    previous_status: Optional[str] = None
    new_status: str
    previous_notes: Optional[str] = None
    new_notes: Optional[str] = None
    communicated: bool = False
    communication_method: Optional[str] = None
    no_comm_reason: Optional[str] = None
    updated_by: Optional[str] = None
    created_at: Optional[Timestamp] = None
    task: Optional[Task] = None
    updater: Optional[TeamMember] = None

    def to_insert(self) -> Dict[str, object]:
        """Column payload for an append-only insert."""
        return self.model_dump(
            mode="json",
            exclude={"id", "created_at", "task", "updater"},
            exclude_none=True,
        )


class TaskUpdateDraft(BaseModel):
    """Pending edits for a single task in the servicer work queue."""

    status: str
    custom_status: Optional[str] = None
    notes: Optional[str] = None
    communicated: bool = False
    communication_method: Optional[str] = None
    no_comm_reason: Optional[str] = None


# ===== SAVINGS =====


class Standalone(BaseModel):
    """Sub-category whose savings are reported on their own."""

    kind: str = "standalone"
    amount: float = 0.0


class BundleMember(BaseModel):
    """Sub-category whose savings live on its bundle."""

    kind: str = "bundle_member"
    bundle_id: str


Savings = Union[Standalone, BundleMember]


class Bundle(BaseModel):
    bundle_id: str
    name: Optional[str] = None
    total: float = 0.0
    member_ids: List[str] = Field(default_factory=list)
