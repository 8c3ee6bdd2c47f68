"""
Credential and activity stores.

Three backends share one interface and are picked by STORAGE_BACKEND:
memory (tests, throwaway runs), file (JSON documents on disk) and sqlite.
Each store serializes its own mutations with a lock, so replace_all never
interleaves with upsert or remove.
"""

import json
import os
import sqlite3
import tempfile
import threading
from abc import ABC, abstractmethod

from loguru import logger

from .errors import ConfigError, StorageFailedError
from .models import Activity, Credential


class CredentialStore(ABC):
    @abstractmethod
    def load(self):
        """Return the stored Credential, or None."""

    @abstractmethod
    def save(self, credential):
        pass

    @abstractmethod
    def load_subscription_id(self):
        """Return the stored subscription id, or None."""

    @abstractmethod
    def save_subscription_id(self, subscription_id):
        pass

    @abstractmethod
    def clear_subscription_id(self):
        pass


class ActivityStore(ABC):
    @abstractmethod
    def list(self):
        """Return every stored Activity."""

    @abstractmethod
    def upsert(self, activity):
        pass

    @abstractmethod
    def remove(self, activity_id):
        """Remove by id. Unknown ids are ignored."""

    @abstractmethod
    def replace_all(self, activities):
        """Swap the whole mirror for `activities` in one step."""


# --- In memory ---

class MemoryCredentialStore(CredentialStore):
    def __init__(self, credential=None, subscription_id=None):
        self._lock = threading.Lock()
        self._credential = credential
        self._subscription_id = subscription_id

    def load(self):
        with self._lock:
            return self._credential

    def save(self, credential):
        with self._lock:
            self._credential = credential

    def load_subscription_id(self):
        with self._lock:
            return self._subscription_id

    def save_subscription_id(self, subscription_id):
        with self._lock:
            self._subscription_id = subscription_id

    def clear_subscription_id(self):
        with self._lock:
            self._subscription_id = None


class MemoryActivityStore(ActivityStore):
    def __init__(self, activities=()):
        self._lock = threading.Lock()
        self._activities = {a.id: a for a in activities}

    def list(self):
        with self._lock:
            return list(self._activities.values())

    def upsert(self, activity):
        with self._lock:
            self._activities[activity.id] = activity

    def remove(self, activity_id):
        with self._lock:
            self._activities.pop(activity_id, None)

    def replace_all(self, activities):
        fresh = {a.id: a for a in activities}
        with self._lock:
            self._activities = fresh


# --- JSON files ---

def _read_json(path, default):
    if not os.path.isfile(path):
        return default
    try:
        with open(path) as f:
            content = f.read().strip()
        return json.loads(content) if content else default
    except (OSError, ValueError) as e:
        raise StorageFailedError(f"could not read {path}: {e}") from e


def _write_json(path, data):
    """Write to a temp file in the same directory, then rename over path."""
    directory = os.path.dirname(os.path.abspath(path))
    try:
        os.makedirs(directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix='.tmp-', suffix='.json')
        try:
            with os.fdopen(fd, 'w') as f:
                json.dump(data, f, indent=2)
            os.chmod(tmp_path, 0o600)
            os.replace(tmp_path, path)
        except BaseException:
            os.unlink(tmp_path)
            raise
    except OSError as e:
        raise StorageFailedError(f"could not write {path}: {e}") from e


class JsonCredentialStore(CredentialStore):
    """Keeps {"token": {...}, "subscription_id": n} in a single state file."""

    def __init__(self, path):
        self.path = path
        self._lock = threading.Lock()

    def _update(self, key, value):
        with self._lock:
            state = _read_json(self.path, {})
            if value is None:
                state.pop(key, None)
            else:
                state[key] = value
            _write_json(self.path, state)

    def load(self):
        token = _read_json(self.path, {}).get('token')
        if not token:
            return None
        try:
            return Credential.from_dict(token)
        except (KeyError, TypeError, ValueError) as e:
            raise StorageFailedError(f"corrupt token in {self.path}: {e}") from e

    def save(self, credential):
        self._update('token', credential.to_dict())

    def load_subscription_id(self):
        return _read_json(self.path, {}).get('subscription_id')

    def save_subscription_id(self, subscription_id):
        self._update('subscription_id', subscription_id)

    def clear_subscription_id(self):
        self._update('subscription_id', None)


class JsonActivityStore(ActivityStore):
    """Keeps the mirror as a JSON list in one file, rewritten on every change."""

    def __init__(self, path):
        self.path = path
        self._lock = threading.Lock()

    def _load(self):
        try:
            return {a['id']: Activity.from_dict(a) for a in _read_json(self.path, [])}
        except (KeyError, TypeError, ValueError) as e:
            raise StorageFailedError(f"corrupt activity in {self.path}: {e}") from e

    def _dump(self, activities):
        _write_json(self.path, [a.to_dict() for a in activities])

    def list(self):
        with self._lock:
            return list(self._load().values())

    def upsert(self, activity):
        with self._lock:
            activities = self._load()
            activities[activity.id] = activity
            self._dump(activities.values())

    def remove(self, activity_id):
        with self._lock:
            activities = self._load()
            if activities.pop(activity_id, None) is not None:
                self._dump(activities.values())

    def replace_all(self, activities):
        with self._lock:
            self._dump(activities)


# --- SQLite ---

SCHEMA = """
    CREATE TABLE IF NOT EXISTS token (
        id INTEGER PRIMARY KEY CHECK (id = 1),
        access_token TEXT NOT NULL,
        refresh_token TEXT NOT NULL,
        expires_at INTEGER NOT NULL
    );

    CREATE TABLE IF NOT EXISTS subscription (
        id INTEGER PRIMARY KEY CHECK (id = 1),
        subscription_id INTEGER NOT NULL
    );

    CREATE TABLE IF NOT EXISTS activities (
        id INTEGER PRIMARY KEY,
        name TEXT NOT NULL,
        activity_type TEXT NOT NULL,
        start_time TEXT NOT NULL,
        end_time TEXT NOT NULL,
        elapsed_time INTEGER NOT NULL,
        distance REAL NOT NULL,
        elevation_gain REAL NOT NULL,
        average_speed REAL NOT NULL,
        average_watts REAL NOT NULL,
        average_cadence REAL NOT NULL,
        timezone TEXT NOT NULL
    );
"""

ACTIVITY_COLUMNS = (
    'id', 'name', 'activity_type', 'start_time', 'end_time', 'elapsed_time', 'distance',
    'elevation_gain', 'average_speed', 'average_watts', 'average_cadence', 'timezone',
)


class SqliteDatabase:
    """Opens a short-lived connection per operation; one transaction each."""

    def __init__(self, db_path):
        self.db_path = db_path
        self.lock = threading.Lock()

        db_dir = os.path.dirname(db_path)
        if db_dir and not os.path.exists(db_dir):
            try:
                os.makedirs(db_dir)
            except OSError as e:
                raise StorageFailedError(f"could not create {db_dir}: {e}") from e
        self.run(lambda cursor: cursor.executescript(SCHEMA))

    def run(self, operation):
        """Run operation(cursor) inside a transaction and return its result."""
        with self.lock:
            try:
                conn = sqlite3.connect(self.db_path)
                try:
                    with conn:
                        return operation(conn.cursor())
                finally:
                    conn.close()
            except sqlite3.Error as e:
                logger.error(f"SQLite operation on {self.db_path} failed: {e}")
                raise StorageFailedError(f"sqlite error: {e}") from e


class SqliteCredentialStore(CredentialStore):
    def __init__(self, database):
        self.db = database

    def load(self):
        row = self.db.run(lambda c: c.execute(
            "SELECT access_token, refresh_token, expires_at FROM token WHERE id = 1").fetchone())
        if row is None:
            return None
        return Credential(access_token=row[0], refresh_token=row[1], expires_at=row[2])

    def save(self, credential):
        self.db.run(lambda c: c.execute(
            "INSERT OR REPLACE INTO token (id, access_token, refresh_token, expires_at) "
            "VALUES (1, ?, ?, ?)",
            (credential.access_token, credential.refresh_token, credential.expires_at)))

    def load_subscription_id(self):
        row = self.db.run(lambda c: c.execute(
            "SELECT subscription_id FROM subscription WHERE id = 1").fetchone())
        return row[0] if row else None

    def save_subscription_id(self, subscription_id):
        self.db.run(lambda c: c.execute(
            "INSERT OR REPLACE INTO subscription (id, subscription_id) VALUES (1, ?)",
            (subscription_id,)))

    def clear_subscription_id(self):
        self.db.run(lambda c: c.execute("DELETE FROM subscription"))


class SqliteActivityStore(ActivityStore):
    def __init__(self, database):
        self.db = database

    @staticmethod
    def _row(activity):
        data = activity.to_dict()
        return tuple(data[column] for column in ACTIVITY_COLUMNS)

    def list(self):
        rows = self.db.run(lambda c: c.execute(
            f"SELECT {', '.join(ACTIVITY_COLUMNS)} FROM activities").fetchall())
        return [Activity.from_dict(dict(zip(ACTIVITY_COLUMNS, row))) for row in rows]

    def upsert(self, activity):
        insert = (f"INSERT OR REPLACE INTO activities ({', '.join(ACTIVITY_COLUMNS)}) "
                  f"VALUES ({', '.join('?' * len(ACTIVITY_COLUMNS))})")
        self.db.run(lambda c: c.execute(insert, self._row(activity)))

    def remove(self, activity_id):
        self.db.run(lambda c: c.execute("DELETE FROM activities WHERE id = ?", (activity_id,)))

    def replace_all(self, activities):
        insert = (f"INSERT OR REPLACE INTO activities ({', '.join(ACTIVITY_COLUMNS)}) "
                  f"VALUES ({', '.join('?' * len(ACTIVITY_COLUMNS))})")
        rows = [self._row(a) for a in activities]

        def swap(cursor):
            cursor.execute("DELETE FROM activities")
            cursor.executemany(insert, rows)

        self.db.run(swap)


def build_stores(backend, path):
    """Return (credential_store, activity_store) for the configured backend."""
    if backend == 'memory':
        return MemoryCredentialStore(), MemoryActivityStore()
    if backend == 'file':
        return (JsonCredentialStore(os.path.join(path, 'state.json')),
                JsonActivityStore(os.path.join(path, 'activities.json')))
    if backend == 'sqlite':
        database = SqliteDatabase(os.path.join(path, 'strava_calendar.db'))
        return SqliteCredentialStore(database), SqliteActivityStore(database)
    raise ConfigError(f"unknown storage backend: {backend!r}")
