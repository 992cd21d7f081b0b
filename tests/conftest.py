
import pytest

from fakes import NOW, SERVICER_A, SERVICER_B, FakeSupabase, days_ago, task_row
from servicer_tracker.config import Settings
from servicer_tracker.services.servicer_cache import ServicerCache
from servicer_tracker.services.task_service import TaskService
from servicer_tracker.services.update_service import UpdateService


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def settings():
    """Settings pointing at a (fake) configured store"""
    return Settings(
        SUPABASE_URL="https://example.supabase.co",
        SUPABASE_ANON_KEY="test-anon-key",
        _env_file=None,
    )


@pytest.fixture
def demo_settings():
    """Settings with no store configured"""
    return Settings(SUPABASE_URL=None, SUPABASE_ANON_KEY=None, _env_file=None)


@pytest.fixture
def task_rows():
    """Two servicers, three customers, one bundle"""
    return [
        task_row("t1", "Complete", days_ago(1), phone="+64 21 111 1111", servicer_id=SERVICER_A,
                 customer_name="Mitchell", sub_id="sub-car", sub_name="Car Insurance", category_id="cat-ins",
                 category_name="Insurance", money_saved=300.0, bundle_group="b1"),
        task_row("t2", "Waiting on Info", days_ago(11), phone="+64 21 111 1111", servicer_id=SERVICER_A,
                 customer_name="Mitchell", sub_id="sub-house", sub_name="House Insurance", category_id="cat-ins",
                 category_name="Insurance", money_saved=0.0, bundle_group="b1"),
        task_row("t3", "Not Started", None, phone="+64 21 222 2222", servicer_id=SERVICER_A,
                 customer_name="Thompson", sub_id="sub-power", sub_name="Power", money_saved=150.0),
        task_row("t4", "In Progress", days_ago(0.5), phone="+64 21 333 3333", servicer_id=SERVICER_B,
                 customer_name="Chen", sub_id="sub-debt", sub_name="Debt Consolidation", category_id="cat-debt",
                 category_name="Debt", money_saved=1000.0),
        task_row("t5", "N/A", days_ago(20), phone="+64 21 333 3333", servicer_id=SERVICER_B,
                 customer_name="Chen", sub_id="sub-debt", sub_name="Debt Consolidation", category_id="cat-debt",
                 category_name="Debt", money_saved=1000.0),
    ]


@pytest.fixture
def team_rows():
    return [
        {"id": SERVICER_A, "name": "Alice", "email": "alice@example.com"},
        {"id": SERVICER_B, "name": "Ben", "email": "ben@example.com"},
    ]


@pytest.fixture
def customer_rows():
    return [
        {"phone": "+64 21 111 1111", "display_name": "Mitchell", "assigned_to": SERVICER_A, "flags": ["VIP"],
         "last_contact_at": days_ago(2).isoformat()},
        {"phone": "+64 21 222 2222", "display_name": "Thompson", "assigned_to": SERVICER_A, "flags": []},
        {"phone": "+64 21 333 3333", "display_name": "Chen", "assigned_to": SERVICER_B, "flags": [],
         "last_contact_at": days_ago(5).isoformat()},
    ]


@pytest.fixture
def fake_client(task_rows, team_rows, customer_rows):
    return FakeSupabase({
        "tasks": task_rows,
        "tbl_team_member": team_rows,
        "tbl_customer": customer_rows,
        "daily_updates": [],
        "categories": [],
        "sub_categories": [],
    })


@pytest.fixture
def task_service(fake_client, settings):
    return TaskService(client=fake_client, settings=settings, servicer_cache=ServicerCache(),
                       clock=lambda: NOW)


@pytest.fixture
def demo_task_service(demo_settings):
    return TaskService(client=None, settings=demo_settings, clock=lambda: NOW)


@pytest.fixture
def update_service(fake_client, settings):
    return UpdateService(client=fake_client, settings=settings, clock=lambda: NOW)
