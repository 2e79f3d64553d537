import itertools
import re
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

import app as main_app
from app import app


# ---- FAKE SUPABASE ----
_BASE_TIME = datetime(2025, 3, 28, 6, 0, tzinfo=timezone.utc)


def _split_columns(columns):
    """Split a select string on top-level commas: "id, items(id,name)" -> ["id", "items(id,name)"]."""
    parts, depth, current = [], 0, ""
    for ch in columns:
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
        if ch == "," and depth == 0:
            parts.append(current.strip())
            current = ""
        else:
            current += ch
    if current.strip():
        parts.append(current.strip())
    return parts


def _same(a, b):
    if a is None or b is None:
        return a is b
    return str(a) == str(b)


class FakeResponse:
    def __init__(self, data, count=None):
        self.data = data
        self.count = count


class FakeQuery:
    def __init__(self, db, table):
        self.db = db
        self.table = table
        self.op = "select"
        self.columns = "*"
        self.count_mode = None
        self.payload = None
        self.on_conflict = None
        self.filters = []
        self.order_by = None
        self.limit_to = None

    # operations
    def select(self, columns="*", count=None):
        self.columns, self.count_mode = columns, count
        return self

    def insert(self, payload):
        self.op, self.payload = "insert", payload
        return self

    def upsert(self, payload, on_conflict=None):
        self.op, self.payload, self.on_conflict = "upsert", payload, on_conflict
        return self

    def update(self, payload):
        self.op, self.payload = "update", payload
        return self

    def delete(self):
        self.op = "delete"
        return self

    # filters
    def eq(self, column, value):
        self.filters.append(lambda r: _same(r.get(column), value))
        return self

    def neq(self, column, value):
        self.filters.append(lambda r: not _same(r.get(column), value))
        return self

    def lt(self, column, value):
        self.filters.append(lambda r: r.get(column) is not None and r.get(column) < value)
        return self

    def gt(self, column, value):
        self.filters.append(lambda r: r.get(column) is not None and r.get(column) > value)
        return self

    def in_(self, column, values):
        wanted = {str(v) for v in values}
        self.filters.append(lambda r: str(r.get(column)) in wanted)
        return self

    def ilike(self, column, pattern):
        regex = re.compile("^" + re.escape(pattern).replace("%", ".*") + "$", re.IGNORECASE)
        self.filters.append(lambda r: r.get(column) is not None and bool(regex.match(str(r.get(column)))))
        return self

    def order(self, column, desc=False):
        self.order_by = (column, desc)
        return self

    def limit(self, n):
        self.limit_to = n
        return self

    # execution
    def _rows(self):
        return self.db.tables.setdefault(self.table, [])

    def _matching(self):
        return [r for r in self._rows() if all(f(r) for f in self.filters)]

    def _project(self, row):
        columns = _split_columns(self.columns)
        out = {}
        for col in columns:
            embed = re.match(r"^(\w[\w-]*)\((.*)\)$", col)
            if embed:
                name, inner = embed.groups()
                fk = row.get(name[:-1] + "_id")
                target = next((t for t in self.db.tables.get(name, []) if _same(t.get("id"), fk)), None)
                if target is None:
                    out[name] = None
                elif inner.strip() == "*":
                    out[name] = dict(target)
                else:
                    out[name] = {c: target.get(c) for c in _split_columns(inner)}
            elif col == "*":
                out.update(row)
            else:
                out[col] = row.get(col)
        return out

    def execute(self):
        if self.table in self.db.failing_tables:
            raise Exception(f"simulated failure on {self.table}")
        self.db.calls.append((self.table, self.op))

        if self.op in ("insert", "upsert"):
            payloads = self.payload if isinstance(self.payload, list) else [self.payload]
            written = []
            for payload in payloads:
                existing = None
                if self.op == "upsert" and self.on_conflict:
                    existing = next((r for r in self._rows() if _same(r.get(self.on_conflict), payload.get(self.on_conflict))), None)
                if existing is not None:
                    existing.update(payload)
                    written.append(dict(existing))
                else:
                    written.append(dict(self.db.add(self.table, payload)))
            return FakeResponse(written)

        rows = self._matching()
        if self.op == "update":
            for r in rows:
                r.update(self.payload)
            return FakeResponse([dict(r) for r in rows])
        if self.op == "delete":
            doomed = {id(r) for r in rows}
            self.db.tables[self.table] = [r for r in self._rows() if id(r) not in doomed]
            return FakeResponse([dict(r) for r in rows])

        if self.order_by:
            column, desc = self.order_by
            rows = sorted(rows, key=lambda r: (r.get(column) is None, r.get(column) or ""), reverse=desc)
        count = len(rows) if self.count_mode else None
        if self.limit_to is not None:
            rows = rows[:self.limit_to]
        return FakeResponse([self._project(r) for r in rows], count=count)


class FakeBucket:
    def __init__(self, db, name):
        self.db, self.name = db, name

    def upload(self, path, data, options=None):
        if self.db.storage_fails:
            raise Exception("storage unavailable")
        self.db.uploads.append((self.name, path, data, options))
        return {"Key": f"{self.name}/{path}"}

    def get_public_url(self, path):
        return f"https://storage.test/{self.name}/{path}"


class FakeStorage:
    def __init__(self, db):
        self.db = db

    def from_(self, bucket):
        return FakeBucket(self.db, bucket)


class FakeAuth:
    def __init__(self):
        self.accounts = {}
        self.tokens = {}
        self.signed_out = 0
        self._ids = itertools.count(1)

    def _session(self, user):
        token = f"token-{user.id}"
        self.tokens[token] = user
        return SimpleNamespace(access_token=token, refresh_token="refresh", expires_in=3600,
                               expires_at=1900000000, token_type="bearer")

    def sign_up(self, credentials):
        email = credentials["email"]
        if email in self.accounts:
            raise Exception("User already registered")
        user = SimpleNamespace(id=f"auth-{next(self._ids)}", email=email)
        self.accounts[email] = (credentials["password"], user)
        return SimpleNamespace(user=user, session=self._session(user))

    def sign_in_with_password(self, credentials):
        password, user = self.accounts.get(credentials["email"], (None, None))
        if user is None or password != credentials["password"]:
            raise Exception("Invalid login credentials")
        return SimpleNamespace(user=user, session=self._session(user))

    def sign_out(self):
        self.signed_out += 1

    def get_user(self, token):
        if token not in self.tokens:
            raise Exception("invalid JWT")
        return SimpleNamespace(user=self.tokens[token])


class FakeSupabase:
    def __init__(self):
        self.tables = {}
        self.failing_tables = set()
        self.storage_fails = False
        self.uploads = []
        self.calls = []
        self.auth = FakeAuth()
        self.storage = FakeStorage(self)
        self._ids = itertools.count(1)

    def table(self, name):
        return FakeQuery(self, name)

    def add(self, table, row):
        """Insert a row directly, filling id and created_at like the database would."""
        n = next(self._ids)
        stored = {"id": f"{table}-{n}", "created_at": (_BASE_TIME + timedelta(seconds=n)).isoformat()}
        stored.update(row)
        self.tables.setdefault(table, []).append(stored)
        return stored

    def rows(self, table):
        return self.tables.get(table, [])


class FakeGeocoder:
    def __init__(self, regions=None):
        self.regions = regions or {}
        self.calls = []

    def region_for(self, lat, lng):
        self.calls.append((lat, lng))
        return self.regions.get((lat, lng))

    def display_name_for(self, lat, lng):
        self.calls.append((lat, lng))
        region = self.regions.get((lat, lng))
        return f"{region}, Myanmar" if region else None

    def reverse(self, lat, lng):
        region = self.regions.get((lat, lng)) or "Unknown location"
        return {"success": True, "results": [{"formatted_address": region}], "primary_address": region}


# ---- FIXTURES ----
@pytest.fixture
def fake_db():
    return FakeSupabase()


@pytest.fixture
def geocoder():
    return FakeGeocoder({
        (21.97, 96.08): "Mandalay, Mandalay Region",
        (16.84, 96.17): "Yangon, Yangon Region",
    })


@pytest.fixture
def client(fake_db, geocoder, monkeypatch):
    app.config["TESTING"] = True
    monkeypatch.setattr(main_app, "supabase", fake_db)
    monkeypatch.setitem(main_app.APP_STATE, "geocoder", geocoder)
    with app.test_client() as client:
        yield client
