"""
backend/tests/conftest.py

Purpose:
    Shared pytest bootstrap: import paths for backend and root-level tools,
    plus in-memory stand-ins for Motor collections/sessions and the external
    collaborators (simulation worker, blob store, alert webhook).
"""

from __future__ import annotations

import copy
import sys
from datetime import datetime, timezone
from pathlib import Path
from types import SimpleNamespace

import pytest

_THIS_FILE = Path(__file__).resolve()
_BACKEND_DIR = _THIS_FILE.parents[1]
_REPO_ROOT = _THIS_FILE.parents[2]

for candidate in (str(_BACKEND_DIR), str(_REPO_ROOT)):
    if candidate not in sys.path:
        sys.path.insert(0, candidate)

from pymongo import ReturnDocument  # noqa: E402
from pymongo.errors import DuplicateKeyError  # noqa: E402

from leagueops.config import Settings  # noqa: E402
from leagueops.services.container import build_services  # noqa: E402
from leagueops.services.errors import WorkerTriggerError  # noqa: E402

# 2025-05-01 19:00 Europe/Istanbul (UTC+3, no DST)
TONIGHT = "2025-05-01"
KICKOFF_UTC = datetime(2025, 5, 1, 16, 0, tzinfo=timezone.utc)
LOCK_NOW = datetime(2025, 5, 1, 15, 40, tzinfo=timezone.utc)
DISPATCH_NOW = datetime(2025, 5, 1, 16, 0, 5, tzinfo=timezone.utc)


# ---------- In-memory Motor ----------

_MISSING = object()


def _lookup(doc: dict, path: str):
    value = doc
    for part in path.split("."):
        if not isinstance(value, dict) or part not in value:
            return _MISSING
        value = value[part]
    return value


def _assign(doc: dict, path: str, value) -> None:
    parts = path.split(".")
    for part in parts[:-1]:
        doc = doc.setdefault(part, {})
    doc[parts[-1]] = value


def _cond_matches(value, cond) -> bool:
    current = None if value is _MISSING else value
    for op, arg in cond.items():
        if op == "$in":
            if current not in arg:
                return False
        elif op == "$nin":
            if current in arg:
                return False
        elif op == "$ne":
            if current == arg:
                return False
        elif op == "$exists":
            if (value is not _MISSING) != bool(arg):
                return False
        elif op in ("$gte", "$lte", "$gt", "$lt"):
            if current is None:
                return False
            if op == "$gte" and not current >= arg:
                return False
            if op == "$lte" and not current <= arg:
                return False
            if op == "$gt" and not current > arg:
                return False
            if op == "$lt" and not current < arg:
                return False
        else:
            raise NotImplementedError(op)
    return True


def matches(doc: dict, flt: dict | None) -> bool:
    for key, cond in (flt or {}).items():
        if key == "$or":
            if not any(matches(doc, clause) for clause in cond):
                return False
            continue
        value = _lookup(doc, key)
        if isinstance(cond, dict) and cond and all(k.startswith("$") for k in cond):
            if not _cond_matches(value, cond):
                return False
        elif (None if value is _MISSING else value) != cond:
            return False
    return True


def _sort_key(field: str):
    def key(doc):
        value = _lookup(doc, field)
        value = None if value is _MISSING else value
        return (value is None, value if value is not None else 0)
    return key


def _sorted(docs: list[dict], sort) -> list[dict]:
    if not sort:
        return docs
    if isinstance(sort, str):
        sort = [(sort, 1)]
    for field, direction in reversed(list(sort)):
        docs = sorted(docs, key=_sort_key(field), reverse=int(direction) < 0)
    return docs


def _project(doc: dict, projection: dict | None) -> dict:
    doc = copy.deepcopy(doc)
    if not projection:
        return doc
    keep = {k for k, v in projection.items() if v}
    return {k: v for k, v in doc.items() if k in keep or k == "_id"}


class FakeCursor:
    def __init__(self, docs: list[dict]):
        self._docs = docs
        self._sort = None
        self._limit = None

    def sort(self, key, direction: int = 1):
        self._sort = key if isinstance(key, list) else [(key, direction)]
        return self

    def limit(self, value: int):
        self._limit = int(value)
        return self

    async def to_list(self, length: int | None = None):
        rows = _sorted(self._docs, self._sort)
        if self._limit is not None:
            rows = rows[: self._limit]
        if length is not None:
            rows = rows[:length]
        return rows


class FakeCollection:
    def __init__(self, name: str):
        self.name = name
        self.docs: dict = {}

    def _matching(self, flt) -> list[dict]:
        return [doc for doc in self.docs.values() if matches(doc, flt)]

    async def find_one(self, flt=None, projection=None, *, session=None, sort=None):
        rows = _sorted(self._matching(flt), sort)
        return _project(rows[0], projection) if rows else None

    def find(self, flt=None, projection=None, *, session=None):
        return FakeCursor([_project(doc, projection) for doc in self._matching(flt)])

    async def count_documents(self, flt, *, session=None, **_kwargs):
        return len(self._matching(flt))

    async def insert_one(self, doc, *, session=None):
        if doc["_id"] in self.docs:
            raise DuplicateKeyError(f"E11000 duplicate key error collection: {self.name}")
        self.docs[doc["_id"]] = copy.deepcopy(doc)
        return SimpleNamespace(inserted_id=doc["_id"])

    def _apply(self, doc: dict, update: dict, inserting: bool) -> None:
        for path, value in (update.get("$set") or {}).items():
            _assign(doc, path, copy.deepcopy(value))
        if inserting:
            for path, value in (update.get("$setOnInsert") or {}).items():
                _assign(doc, path, copy.deepcopy(value))
        for path, value in (update.get("$inc") or {}).items():
            current = _lookup(doc, path)
            _assign(doc, path, (0 if current is _MISSING else current) + value)
        for path, value in (update.get("$push") or {}).items():
            current = _lookup(doc, path)
            _assign(doc, path, ([] if current is _MISSING else current) + [copy.deepcopy(value)])

    def _upsert_seed(self, flt: dict) -> dict:
        return {
            k: copy.deepcopy(v) for k, v in flt.items()
            if not k.startswith("$") and not (isinstance(v, dict) and any(x.startswith("$") for x in v))
        }

    async def update_one(self, flt, update, *, upsert=False, session=None):
        rows = self._matching(flt)
        if rows:
            before = copy.deepcopy(rows[0])
            self._apply(rows[0], update, inserting=False)
            modified = int(rows[0] != before)
            return SimpleNamespace(matched_count=1, modified_count=modified, upserted_id=None)
        if not upsert:
            return SimpleNamespace(matched_count=0, modified_count=0, upserted_id=None)
        doc = self._upsert_seed(flt)
        self._apply(doc, update, inserting=True)
        if doc["_id"] in self.docs:
            raise DuplicateKeyError(f"E11000 duplicate key error collection: {self.name}")
        self.docs[doc["_id"]] = doc
        return SimpleNamespace(matched_count=0, modified_count=0, upserted_id=doc["_id"])

    async def find_one_and_update(
        self, flt, update, *, sort=None, return_document=ReturnDocument.BEFORE, upsert=False, session=None,
    ):
        rows = _sorted(self._matching(flt), sort)
        if not rows:
            return None
        before = copy.deepcopy(rows[0])
        self._apply(rows[0], update, inserting=False)
        return copy.deepcopy(rows[0]) if return_document == ReturnDocument.AFTER else before

    async def create_index(self, *_args, **_kwargs):
        return "ok"


class FakeSession:
    """Snapshot-and-restore transaction over the whole fake database."""

    def __init__(self, db: "FakeDB"):
        self._db = db

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    async def with_transaction(self, callback):
        snapshot = {name: copy.deepcopy(col.docs) for name, col in self._db.collections.items()}
        try:
            return await callback(self)
        except BaseException:
            for name, docs in snapshot.items():
                self._db.collections[name].docs = docs
            for name in list(self._db.collections):
                if name not in snapshot:
                    self._db.collections[name].docs = {}
            raise


class FakeClient:
    def __init__(self, db: "FakeDB"):
        self._db = db

    async def start_session(self):
        return FakeSession(self._db)


class FakeDB:
    def __init__(self):
        self.collections: dict[str, FakeCollection] = {}
        self.client = FakeClient(self)

    def __getattr__(self, name: str) -> FakeCollection:
        if name.startswith("__"):
            raise AttributeError(name)
        collections = self.__dict__["collections"]
        if name not in collections:
            collections[name] = FakeCollection(name)
        return collections[name]

    async def command(self, name: str):
        return {"ok": 1.0}


# ---------- Collaborators ----------

class FakeWorker:
    def __init__(self):
        self.jobs: list[dict] = []
        self.fail = False

    async def trigger(self, payload: dict) -> None:
        if self.fail:
            raise WorkerTriggerError(f"worker rejected {payload['matchId']} with status 503")
        self.jobs.append(payload)

    async def aclose(self) -> None:
        return None


class FakeAlerts:
    def __init__(self):
        self.sent: list[str] = []

    async def send(self, text: str) -> bool:
        self.sent.append(text)
        return True

    async def aclose(self) -> None:
        return None


class FakeBlobStore:
    def __init__(self):
        self.objects: dict[str, dict] = {}

    async def signed_put_url(self, key: str, content_type: str = "application/json") -> str:
        return f"https://blobs.test/put/{key}?sig=x"

    async def signed_get_url(self, key: str) -> str:
        return f"https://blobs.test/get/{key}?sig=x"

    async def put_json(self, key: str, payload) -> None:
        self.objects[key] = copy.deepcopy(payload)

    async def get_json(self, key: str, bucket: str | None = None):
        return copy.deepcopy(self.objects.get(key))


# ---------- Fixtures ----------

def make_settings(**overrides) -> Settings:
    values = {
        "OPERATING_TZ": "Europe/Istanbul",
        "SCHEDULER_SECRET": "sched-secret",
        "RESULTS_SECRET": "results-secret",
        "TASKS_SECRET": "tasks-secret",
        "SIM_WORKER_URL": "http://worker.test/run",
        "RESULTS_CALLBACK_URL": "http://ops.test/results/report",
        "STORAGE_BUCKET": "",
        "DISPATCH_MODE": "serial",
        "FINALIZE_MAX_RETRIES": 3,
        "DAILY_CRON_ENABLED": False,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def fake_db():
    return FakeDB()


@pytest.fixture
def fake_worker():
    return FakeWorker()


@pytest.fixture
def fake_alerts():
    return FakeAlerts()


@pytest.fixture
def fake_storage():
    return FakeBlobStore()


@pytest.fixture
def services(settings, fake_db, fake_worker, fake_alerts):
    return build_services(settings, fake_db, worker=fake_worker, alerts=fake_alerts)


async def seed_team(db: FakeDB, team_id: str, name: str, starters=None, substitutes=None) -> None:
    await db.teams.insert_one({
        "_id": team_id,
        "name": name,
        "formation": "4-3-3",
        "tactics": {"mentality": "balanced", "pressing": 55},
        "starters": list(starters or [f"{team_id}-p{i}" for i in range(1, 12)]),
        "substitutes": list(substitutes or [f"{team_id}-s{i}" for i in range(1, 6)]),
    })


async def seed_fixture(
    db: FakeDB,
    league_id: str = "L1",
    match_id: str = "M1",
    home: str = "T1",
    away: str = "T2",
    *,
    kickoff_at: datetime = KICKOFF_UTC,
    status: str = "scheduled",
    **extra,
) -> dict:
    doc = {
        "_id": f"{league_id}:{match_id}",
        "league_id": league_id,
        "match_id": match_id,
        "season_id": "S1",
        "round": 1,
        "home_team_id": home,
        "away_team_id": away,
        "kickoff_at": kickoff_at,
        "status": status,
        "status_history": [],
        "dispatch_attempts": 0,
        "request_token": None,
    }
    doc.update(extra)
    await db.fixtures.insert_one(doc)
    return doc


async def seed_league(db: FakeDB, league_id: str = "L1", state: str = "scheduled") -> None:
    await db.leagues.insert_one({"_id": league_id, "state": state, "season_id": "S1"})
