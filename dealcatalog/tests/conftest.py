from __future__ import annotations

import copy
import itertools
import math
import threading
from collections import defaultdict
from typing import Any

import jwt
import pytest
from fastapi.testclient import TestClient
from postgrest.exceptions import APIError

from dealcatalog.app import app
from dealcatalog.store.client import Store, get_store

TEST_SIGNING_KEY = "unit-test-signing-key-0123456789abcdef"

# child table -> (fk column, parent table)
FOREIGN_KEYS = {
    "Deals": ("restaurant_id", "Restaurants"),
    "Restaurant_Categories": ("restaurant_id", "Restaurants"),
}


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)
    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    return 2 * 6371 * math.asin(math.sqrt(a))


def fk_error(message: str) -> APIError:
    return APIError({"code": "23503", "message": message, "details": None, "hint": None})


class FakeResponse:
    def __init__(self, data: list[dict[str, Any]]) -> None:
        self.data = data
        self.count = len(data)


class FakeQuery:
    """Mimics the supabase-py request builder for a single table."""

    def __init__(self, db: FakeSupabase, table: str) -> None:
        self.db = db
        self.table = table
        self.action = "select"
        self.payload: Any = None
        self.filters: list[tuple[str, Any]] = []
        self.order_by: tuple[str, bool] | None = None
        self.row_limit: int | None = None

    def select(self, columns: str = "*", count: str | None = None) -> FakeQuery:
        self.action = "select"
        return self

    def insert(self, rows: Any) -> FakeQuery:
        self.action = "insert"
        self.payload = rows
        return self

    def update(self, data: dict[str, Any]) -> FakeQuery:
        self.action = "update"
        self.payload = data
        return self

    def delete(self) -> FakeQuery:
        self.action = "delete"
        return self

    def eq(self, column: str, value: Any) -> FakeQuery:
        self.filters.append((column, value))
        return self

    def order(self, column: str, desc: bool = False) -> FakeQuery:
        self.order_by = (column, desc)
        return self

    def limit(self, size: int) -> FakeQuery:
        self.row_limit = size
        return self

    def execute(self) -> FakeResponse:
        return self.db.execute(self)


class FakeRpc:
    def __init__(self, db: FakeSupabase, name: str, params: dict[str, Any]) -> None:
        self.db = db
        self.name = name
        self.params = params

    def execute(self) -> FakeResponse:
        return self.db.execute_rpc(self)


class FakeSupabase:
    """In-memory stand-in for the Supabase client."""

    def __init__(self) -> None:
        self.tables: dict[str, list[dict[str, Any]]] = defaultdict(list)
        self.calls: list[tuple[str, str]] = []
        self.gates: dict[str, threading.Event] = {}
        self.failures: dict[tuple[str, str], Exception] = {}
        self.completed: list[tuple[str, str]] = []
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    # ── test helpers ─────────────────────────────────────────────────────

    def seed(self, table: str, **row: Any) -> dict[str, Any]:
        row.setdefault("id", next(self._ids))
        row.setdefault("created_at", "2024-01-01T00:00:00+00:00")
        self.tables[table].append(row)
        return row

    def stall(self, name: str) -> threading.Event:
        """Block calls against ``name`` until the returned event is set."""
        gate = threading.Event()
        self.gates[name] = gate
        return gate

    def fail(self, table: str, action: str, exc: Exception) -> None:
        self.failures[(table, action)] = exc

    def release_all(self) -> None:
        for gate in self.gates.values():
            gate.set()

    def writes(self) -> list[tuple[str, str]]:
        return [call for call in self.calls if call[1] in ("insert", "update", "delete")]

    # ── client surface ───────────────────────────────────────────────────

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def rpc(self, name: str, params: dict[str, Any]) -> FakeRpc:
        return FakeRpc(self, name, params)

    def _wait(self, name: str) -> None:
        gate = self.gates.get(name)
        if gate is not None:
            gate.wait(timeout=5)

    def execute(self, query: FakeQuery) -> FakeResponse:
        self.calls.append((query.table, query.action))
        self._wait(query.table)
        failure = self.failures.get((query.table, query.action))
        if failure is not None:
            raise failure
        with self._lock:
            response = getattr(self, f"_{query.action}")(query)
        self.completed.append((query.table, query.action))
        return response

    def execute_rpc(self, rpc: FakeRpc) -> FakeResponse:
        self.calls.append((rpc.name, "rpc"))
        self._wait(rpc.name)
        assert rpc.name == "restaurants_with_distance"
        ref_lat, ref_lon = rpc.params["ref_lat"], rpc.params["ref_lon"]
        rows = []
        for row in self.tables["Restaurants"]:
            out = copy.deepcopy(row)
            if row.get("latitude") is None or row.get("longitude") is None:
                out["distance"] = None
            else:
                out["distance"] = haversine_km(ref_lat, ref_lon, row["latitude"], row["longitude"])
            rows.append(out)
        self.completed.append((rpc.name, "rpc"))
        return FakeResponse(rows)

    # ── actions ──────────────────────────────────────────────────────────

    def _matching(self, query: FakeQuery) -> list[dict[str, Any]]:
        return [
            row
            for row in self.tables[query.table]
            if all(row.get(column) == value for column, value in query.filters)
        ]

    def _check_parent(self, table: str, row: dict[str, Any]) -> None:
        if table not in FOREIGN_KEYS:
            return
        column, parent = FOREIGN_KEYS[table]
        if column in row and not any(p["id"] == row[column] for p in self.tables[parent]):
            raise fk_error(f'insert or update on table "{table}" violates foreign key constraint')

    def _select(self, query: FakeQuery) -> FakeResponse:
        rows = [copy.deepcopy(row) for row in self._matching(query)]
        if query.order_by:
            column, desc = query.order_by
            rows.sort(key=lambda r: r.get(column) or "", reverse=desc)
        if query.row_limit is not None:
            rows = rows[: query.row_limit]
        return FakeResponse(rows)

    def _insert(self, query: FakeQuery) -> FakeResponse:
        rows = query.payload if isinstance(query.payload, list) else [query.payload]
        for row in rows:
            self._check_parent(query.table, row)
        inserted = []
        for row in rows:
            stored = dict(row)
            stored.setdefault("id", next(self._ids))
            if stored.get("created_at") is None:
                stored["created_at"] = "2024-01-01T00:00:00+00:00"
            self.tables[query.table].append(stored)
            inserted.append(copy.deepcopy(stored))
        return FakeResponse(inserted)

    def _update(self, query: FakeQuery) -> FakeResponse:
        self._check_parent(query.table, query.payload)
        updated = []
        for row in self._matching(query):
            row.update(query.payload)
            updated.append(copy.deepcopy(row))
        return FakeResponse(updated)

    def _delete(self, query: FakeQuery) -> FakeResponse:
        doomed = self._matching(query)
        for child, (column, parent) in FOREIGN_KEYS.items():
            if parent != query.table:
                continue
            ids = {row["id"] for row in doomed}
            if any(r.get(column) in ids for r in self.tables[child]):
                raise fk_error(f'update or delete on table "{parent}" violates foreign key constraint')
        self.tables[query.table] = [row for row in self.tables[query.table] if row not in doomed]
        return FakeResponse([copy.deepcopy(row) for row in doomed])


# ── fixtures ─────────────────────────────────────────────────────────────


@pytest.fixture
def fake_db() -> FakeSupabase:
    return FakeSupabase()


@pytest.fixture
def store(fake_db):
    handle = Store(client=fake_db, query_timeout_ms=2000, controller_timeout_ms=4000, max_workers=4)
    yield handle
    fake_db.release_all()
    handle.close()


@pytest.fixture
def client(store):
    app.dependency_overrides[get_store] = lambda: store
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def users(fake_db):
    fake_db.seed(
        "Users", id=101, email="admin@example.com", supabase_uid="auth-admin",
        role={"id": 1, "role_type": "Admin"},
    )
    fake_db.seed(
        "Users", id=102, email="member@example.com", supabase_uid="auth-member",
        role={"id": 2, "role_type": "User"},
    )
    return fake_db.tables["Users"]


@pytest.fixture
def bearer():
    def _headers(subject: str | None = "auth-admin", **claims: Any) -> dict[str, str]:
        payload = dict(claims)
        if subject is not None:
            payload["sub"] = subject
        token = jwt.encode(payload, TEST_SIGNING_KEY, algorithm="HS256")
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture
def admin_headers(users, bearer) -> dict[str, str]:
    return bearer("auth-admin")
