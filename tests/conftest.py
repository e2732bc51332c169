import os

os.environ.setdefault("DISABLE_FASTAPI_LIMITER_INIT_FOR_TESTS", "1")

import itertools
import pytest
from typing import Any, Dict, Generator, List, Optional
from fastapi.testclient import TestClient
from unittest.mock import MagicMock

from billing.app_setup.factory import create_app
from billing.utils.security import require_admin, require_user


# Marquage automatique selon le dossier
def pytest_collection_modifyitems(config, items):
    for item in items:
        nodeid = item.nodeid.replace("\\", "/")
        if "/unit/" in nodeid:
            item.add_marker(pytest.mark.unit)
        elif "/integration/" in nodeid:
            item.add_marker(pytest.mark.integration)


class _Resp:
    """Réponse PostgREST minimale (data / count)."""
    def __init__(self, data=None, count=None):
        self.data = data
        self.count = count


@pytest.fixture
def resp():
    return _Resp


@pytest.fixture(scope="session")
def app():
    return create_app()


@pytest.fixture()
def client(app) -> Generator[TestClient, None, None]:
    with TestClient(app) as c:
        yield c


@pytest.fixture
def admin_user() -> Dict[str, Any]:
    return {"id": "admin-user-id", "email": "admin@example.com", "role": "admin"}


@pytest.fixture
def authenticated_admin_client(app, client, admin_user):
    app.dependency_overrides[require_admin] = lambda: admin_user
    app.dependency_overrides[require_user] = lambda: admin_user
    yield client
    app.dependency_overrides.clear()


@pytest.fixture
def authenticated_user_client(app, client):
    fake_user = {"id": "user-1", "email": "buyer@example.com", "role": "user"}
    app.dependency_overrides[require_user] = lambda: fake_user
    yield client
    app.dependency_overrides.clear()


# Aucun test n'atteint Supabase: le client service est un MagicMock
@pytest.fixture(autouse=True)
def mock_db_dependency(monkeypatch):
    monkeypatch.setattr("billing.infra.supabase_client.get_supabase", lambda: MagicMock())
    monkeypatch.setattr("billing.infra.supabase_client.get_service_supabase", lambda: MagicMock())


class FakeLedger:
    """Tables orders / subscriptions en mémoire, mêmes signatures que billing.ledger.repository."""

    def __init__(self):
        self.orders: Dict[str, dict] = {}
        self.subscriptions: Dict[str, dict] = {}
        self._ids = itertools.count(1)

    # --- orders ---
    def get_order(self, order_id):
        row = self.orders.get(order_id)
        return dict(row) if row else None

    def find_order(self, provider_payment_id, product_id, provider):
        for row in self.orders.values():
            if (
                row.get("provider_payment_id") == provider_payment_id
                and row.get("payment_provider") == provider
                and row.get("product_id") == product_id
            ):
                return dict(row)
        return None

    def insert_order(self, row):
        """Contrainte unique (provider_payment_id, product_id, payment_provider): doublon ignoré -> None."""
        if self.find_order(row.get("provider_payment_id"), row.get("product_id"), row.get("payment_provider")):
            return None
        return self.add_order(**row)


    def update_order(self, order_id, fields):
        if order_id not in self.orders:
            return None
        self.orders[order_id].update(fields)
        return dict(self.orders[order_id])

    def list_orders(self, limit=100, offset=0, status=None):
        rows = [r for r in self.orders.values() if not status or r.get("status") == status]
        return [dict(r) for r in rows[offset:offset + limit]]

    def list_subscription_orders(self, subscription_id):
        return [dict(r) for r in self.orders.values() if r.get("subscription_id") == subscription_id]

    def unlink_subscription_orders(self, subscription_id):
        for row in self.orders.values():
            if row.get("subscription_id") == subscription_id:
                row["subscription_id"] = None
        return True

    def delete_order(self, order_id):
        return self.orders.pop(order_id, None) is not None

    def find_order_by_transaction(self, transaction_id, provider):
        for row in self.orders.values():
            if row.get("payment_provider") != provider:
                continue
            if transaction_id in (row.get("provider_payment_id"), row.get("provider_transaction_id")):
                return dict(row)
        return None

    def find_unresolved_subscription_order(self, subscription_id, provider_subscription_id):
        for row in self.orders.values():
            if (
                row.get("subscription_id") == subscription_id
                and row.get("provider_payment_id") == provider_subscription_id
                and row.get("provider_transaction_id") is None
            ):
                return dict(row)
        return None

    # --- subscriptions ---
    def get_subscription(self, subscription_id):
        row = self.subscriptions.get(subscription_id)
        return dict(row) if row else None

    def get_subscription_by_provider_id(self, provider_subscription_id):
        for row in self.subscriptions.values():
            if row.get("provider_subscription_id") == provider_subscription_id:
                return dict(row)
        return None

    def upsert_subscription(self, row):
        existing = self.get_subscription_by_provider_id(row.get("provider_subscription_id"))
        if existing:
            self.subscriptions[existing["id"]].update(row)
            return dict(self.subscriptions[existing["id"]])
        new = {"id": f"sub-{next(self._ids)}", "created_at": "2026-01-01T00:00:00+00:00", **row}
        self.subscriptions[new["id"]] = new
        return dict(new)

    def update_subscription(self, subscription_id, fields):
        if subscription_id not in self.subscriptions:
            return None
        self.subscriptions[subscription_id].update(fields)
        return dict(self.subscriptions[subscription_id])

    def list_subscriptions(self, statuses=None, limit=500, offset=0):
        wanted = set(statuses or [])
        rows = [r for r in self.subscriptions.values() if not wanted or r.get("status") in wanted]
        return [dict(r) for r in rows[offset:offset + limit]]

    def find_open_subscriptions(self, user_id, product_id):
        return [
            dict(r) for r in self.subscriptions.values()
            if r.get("user_id") == user_id and r.get("product_id") == product_id and r.get("status") != "cancelled"
        ]

    def delete_subscription(self, subscription_id):
        return self.subscriptions.pop(subscription_id, None) is not None

    def add_subscription(self, **fields):
        row = {"id": f"sub-{next(self._ids)}", "created_at": "2026-01-01T00:00:00+00:00", **fields}
        self.subscriptions[row["id"]] = row
        return dict(row)

    def add_order(self, **fields):
        new = {"id": f"ord-{next(self._ids)}", "created_at": "2026-01-01T00:00:00+00:00", **fields}
        self.orders[new["id"]] = new
        return dict(new)


LEDGER_FUNCTIONS = (
    "get_order", "find_order", "insert_order", "update_order", "list_orders", "list_subscription_orders",
    "unlink_subscription_orders", "delete_order", "find_order_by_transaction", "find_unresolved_subscription_order",
    "get_subscription", "get_subscription_by_provider_id", "upsert_subscription", "update_subscription",
    "list_subscriptions", "find_open_subscriptions", "delete_subscription",
)


@pytest.fixture
def fake_ledger(monkeypatch) -> FakeLedger:
    store = FakeLedger()
    for name in LEDGER_FUNCTIONS:
        monkeypatch.setattr(f"billing.ledger.repository.{name}", getattr(store, name))
    return store


class FakeEnrollments:
    """course_enrollments en mémoire (unicité user_id, course_id) + alias produit -> cours."""

    def __init__(self):
        self.rows: Dict[tuple, dict] = {}
        self.product_courses: Dict[str, str] = {}
        self.bundles: Dict[str, List[dict]] = {}
        self.groups: Dict[str, List[str]] = {}

    def get_product_course_id(self, product_id) -> Optional[str]:
        return self.product_courses.get(str(product_id))

    def get_bundle_items(self, product_id):
        return list(self.bundles.get(str(product_id), []))

    def get_group_course_ids(self, group_id):
        return list(self.groups.get(str(group_id), []))

    def upsert_enrollments(self, rows):
        for row in rows:
            self.rows[(row["user_id"], row["course_id"])] = dict(row)
        return len(rows)

    def set_enrollments_active(self, user_id, course_ids, is_active):
        count = 0
        for cid in course_ids:
            row = self.rows.get((user_id, cid))
            if row:
                row["is_active"] = is_active
                count += 1
        return count

    def active_for(self, user_id):
        return sorted(cid for (uid, cid), row in self.rows.items() if uid == user_id and row.get("is_active"))


@pytest.fixture
def fake_enrollments(monkeypatch) -> FakeEnrollments:
    store = FakeEnrollments()
    for name in ("get_product_course_id", "get_bundle_items", "get_group_course_ids", "upsert_enrollments", "set_enrollments_active"):
        monkeypatch.setattr(f"billing.entitlements.repository.{name}", getattr(store, name))
    return store
