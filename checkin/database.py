from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Iterable, Iterator, Sequence
from urllib.parse import urlparse

import aiosqlite

from checkin.config import DATABASE_MAX_CONNECTIONS, DATABASE_PATH, DATABASE_URL, SEED_DEMO_PATIENTS
from checkin.errors import ConstraintViolation, StoreBusy

try:  # Optional: only required when DATABASE_URL is set (Postgres)
    import asyncpg  # type: ignore
except Exception:  # pragma: no cover - optional dependency
    asyncpg = None

logger = logging.getLogger(__name__)


@contextmanager
def _classify_sqlite_errors() -> Iterator[None]:
    try:
        yield
    except sqlite3.IntegrityError as exc:
        raise ConstraintViolation(
            "The provided data violates database constraints", details=[str(exc)]
        ) from exc
    except sqlite3.OperationalError as exc:
        text = str(exc).lower()
        if "locked" in text or "busy" in text:
            raise StoreBusy("Please try again in a moment") from exc
        raise


@contextmanager
def _classify_postgres_errors() -> Iterator[None]:
    if asyncpg is None:  # pragma: no cover - optional dependency
        yield
        return
    try:
        yield
    except asyncpg.IntegrityConstraintViolationError as exc:
        raise ConstraintViolation(
            "The provided data violates database constraints", details=[str(exc)]
        ) from exc
    except (
        asyncpg.TooManyConnectionsError,
        asyncpg.CannotConnectNowError,
        TimeoutError,
    ) as exc:
        raise StoreBusy("Please try again in a moment") from exc


class DatabaseAdapter:
    engine: str

    async def execute(self, query: str, params: Sequence | None = None) -> int:  # pragma: no cover - interface
        """Run a statement and return the number of affected rows."""
        raise NotImplementedError

    async def insert(self, query: str, params: Sequence | None = None) -> int:  # pragma: no cover - interface
        """Run an INSERT and return the new row's ``id``."""
        raise NotImplementedError

    async def executemany(self, query: str, seq_params: Iterable[Sequence]) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    async def fetch_one(self, query: str, params: Sequence | None = None):  # pragma: no cover - interface
        raise NotImplementedError

    async def fetch_all(self, query: str, params: Sequence | None = None):  # pragma: no cover - interface
        raise NotImplementedError

    async def commit(self) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    async def close(self) -> None:  # pragma: no cover - interface
        raise NotImplementedError


@dataclass
class SQLiteAdapter(DatabaseAdapter):
    conn: aiosqlite.Connection
    engine: str = "sqlite"

    async def execute(self, query: str, params: Sequence | None = None) -> int:
        with _classify_sqlite_errors():
            cursor = await self.conn.execute(query, params or ())
            return cursor.rowcount

    async def insert(self, query: str, params: Sequence | None = None) -> int:
        with _classify_sqlite_errors():
            cursor = await self.conn.execute(query, params or ())
            return cursor.lastrowid

    async def executemany(self, query: str, seq_params: Iterable[Sequence]) -> None:
        with _classify_sqlite_errors():
            await self.conn.executemany(query, seq_params)

    async def fetch_one(self, query: str, params: Sequence | None = None):
        with _classify_sqlite_errors():
            cursor = await self.conn.execute(query, params or ())
            return await cursor.fetchone()

    async def fetch_all(self, query: str, params: Sequence | None = None):
        with _classify_sqlite_errors():
            cursor = await self.conn.execute(query, params or ())
            return await cursor.fetchall()

    async def commit(self) -> None:
        with _classify_sqlite_errors():
            await self.conn.commit()

    async def close(self) -> None:
        await self.conn.close()


@dataclass
class PostgresAdapter(DatabaseAdapter):
    pool: "asyncpg.Pool"  # type: ignore[name-defined]
    engine: str = "postgres"

    @staticmethod
    def _translate_query(query: str) -> str:
        # Convert SQLite-style ? placeholders to asyncpg-style $1, $2, ...
        if "$1" in query:
            return query
        idx = 1
        out = []
        for ch in query:
            if ch == "?":
                out.append(f"${idx}")
                idx += 1
            else:
                out.append(ch)
        return "".join(out)

    async def execute(self, query: str, params: Sequence | None = None) -> int:
        q = self._translate_query(query)
        with _classify_postgres_errors():
            async with self.pool.acquire() as conn:
                status = await conn.execute(q, *(params or ()))
        # asyncpg returns a status tag such as "UPDATE 1"
        try:
            return int(status.rsplit(" ", 1)[-1])
        except (ValueError, AttributeError):
            return 0

    async def insert(self, query: str, params: Sequence | None = None) -> int:
        q = self._translate_query(query.rstrip().rstrip(";") + " RETURNING id")
        with _classify_postgres_errors():
            async with self.pool.acquire() as conn:
                return await conn.fetchval(q, *(params or ()))

    async def executemany(self, query: str, seq_params: Iterable[Sequence]) -> None:
        q = self._translate_query(query)
        with _classify_postgres_errors():
            async with self.pool.acquire() as conn:
                await conn.executemany(q, seq_params)

    async def fetch_one(self, query: str, params: Sequence | None = None):
        q = self._translate_query(query)
        with _classify_postgres_errors():
            async with self.pool.acquire() as conn:
                return await conn.fetchrow(q, *(params or ()))

    async def fetch_all(self, query: str, params: Sequence | None = None):
        q = self._translate_query(query)
        with _classify_postgres_errors():
            async with self.pool.acquire() as conn:
                return await conn.fetch(q, *(params or ()))

    async def commit(self) -> None:
        # asyncpg autocommits per statement unless an explicit transaction is used.
        return

    async def close(self) -> None:
        await self.pool.close()


_db: DatabaseAdapter | None = None


async def _connect_sqlite(path: str) -> SQLiteAdapter:
    conn = await aiosqlite.connect(path)
    conn.row_factory = aiosqlite.Row
    await conn.execute("PRAGMA foreign_keys = ON")
    logger.info("Connected to SQLite database at %s", path)
    return SQLiteAdapter(conn)


async def get_db() -> DatabaseAdapter:
    global _db
    if _db is None:
        if DATABASE_URL:
            if DATABASE_URL.startswith("sqlite"):
                _db = await _connect_sqlite(_sqlite_path_from_url(DATABASE_URL) or DATABASE_PATH)
            else:
                if asyncpg is None:
                    raise RuntimeError(
                        "DATABASE_URL is set but asyncpg is not installed. "
                        "Install asyncpg or unset DATABASE_URL."
                    )
                pool = await asyncpg.create_pool(
                    dsn=DATABASE_URL,
                    min_size=1,
                    max_size=DATABASE_MAX_CONNECTIONS,
                )
                _db = PostgresAdapter(pool)
                logger.info("Connected to Postgres database")
        else:
            _db = await _connect_sqlite(DATABASE_PATH)
    return _db


def _sqlite_path_from_url(url: str) -> str:
    parsed = urlparse(url)
    path = parsed.path or ""
    if not path or path == "/":
        return ""
    # sqlite:////absolute/path.db -> keep absolute path
    if url.startswith("sqlite:////"):
        return path
    # sqlite:///relative.db -> strip leading slash
    if path.startswith("/"):
        return path[1:]
    return path


# Timestamps are stored as ISO-8601 UTC text on both engines so the
# admin date filters can compare their first ten characters.
SQLITE_SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS patients (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        first_name TEXT NOT NULL,
        last_name TEXT NOT NULL,
        date_of_birth TEXT NOT NULL,
        address TEXT NOT NULL,
        phone TEXT NOT NULL,
        email TEXT NOT NULL,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS insurance (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        patient_id INTEGER NOT NULL,
        provider TEXT NOT NULL,
        policy_number TEXT NOT NULL,
        group_number TEXT,
        subscriber_name TEXT NOT NULL,
        card_image_path TEXT,
        created_at TEXT NOT NULL,
        FOREIGN KEY (patient_id) REFERENCES patients(id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS clinical_forms (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        patient_id INTEGER NOT NULL,
        medical_history TEXT NOT NULL,
        current_medications TEXT,
        allergies TEXT NOT NULL,
        symptoms TEXT,
        created_at TEXT NOT NULL,
        FOREIGN KEY (patient_id) REFERENCES patients(id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS check_in_completions (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        patient_id INTEGER NOT NULL UNIQUE,
        completed_at TEXT NOT NULL,
        confirmation_sent INTEGER NOT NULL DEFAULT 0,
        estimated_wait_time INTEGER NOT NULL DEFAULT 20
            CHECK (estimated_wait_time BETWEEN 0 AND 180),
        FOREIGN KEY (patient_id) REFERENCES patients(id)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_insurance_patient ON insurance(patient_id)",
    "CREATE INDEX IF NOT EXISTS idx_clinical_forms_patient ON clinical_forms(patient_id)",
]

POSTGRES_SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS patients (
        id BIGSERIAL PRIMARY KEY,
        first_name TEXT NOT NULL,
        last_name TEXT NOT NULL,
        date_of_birth TEXT NOT NULL,
        address TEXT NOT NULL,
        phone TEXT NOT NULL,
        email TEXT NOT NULL,
        created_at TEXT NOT NULL
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS insurance (
        id BIGSERIAL PRIMARY KEY,
        patient_id BIGINT NOT NULL REFERENCES patients(id),
        provider TEXT NOT NULL,
        policy_number TEXT NOT NULL,
        group_number TEXT,
        subscriber_name TEXT NOT NULL,
        card_image_path TEXT,
        created_at TEXT NOT NULL
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS clinical_forms (
        id BIGSERIAL PRIMARY KEY,
        patient_id BIGINT NOT NULL REFERENCES patients(id),
        medical_history TEXT NOT NULL,
        current_medications TEXT,
        allergies TEXT NOT NULL,
        symptoms TEXT,
        created_at TEXT NOT NULL
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS check_in_completions (
        id BIGSERIAL PRIMARY KEY,
        patient_id BIGINT NOT NULL UNIQUE REFERENCES patients(id),
        completed_at TEXT NOT NULL,
        confirmation_sent INTEGER NOT NULL DEFAULT 0,
        estimated_wait_time INTEGER NOT NULL DEFAULT 20
            CHECK (estimated_wait_time BETWEEN 0 AND 180)
    );
    """,
    "CREATE INDEX IF NOT EXISTS idx_insurance_patient ON insurance(patient_id)",
    "CREATE INDEX IF NOT EXISTS idx_clinical_forms_patient ON clinical_forms(patient_id)",
]


async def init_db() -> None:
    db = await get_db()

    schema = SQLITE_SCHEMA if db.engine == "sqlite" else POSTGRES_SCHEMA
    for stmt in schema:
        await db.execute(stmt)
    await db.commit()
    logger.info("Database schema ready (%s)", db.engine)

    if SEED_DEMO_PATIENTS:
        await _seed_demo_patients(db)


async def close_db() -> None:
    global _db
    if _db is not None:
        await _db.close()
        _db = None


async def _seed_demo_patients(db: DatabaseAdapter) -> None:
    """Seed three submissions in different states for admin previews."""
    existing = await db.fetch_one("SELECT COUNT(*) AS count FROM patients")
    if existing and existing["count"]:
        return

    now = datetime.now(UTC)
    demo = [
        ("John", "Doe", "1990-01-15", "123 Main St", "555-123-4567", "john@example.com", now - timedelta(days=2)),
        ("Maria", "Lopez", "1957-06-02", "229 Lakeview Drive", "555-987-6543", "maria@example.com", now - timedelta(days=1)),
        ("Ethan", "Brooks", "2001-11-30", "91 Riverbend Ave", "(555) 222-0101", "ethan@example.com", now),
    ]
    ids = []
    for first, last, dob, address, phone, email, created in demo:
        ids.append(await db.insert(
            "INSERT INTO patients (first_name, last_name, date_of_birth, address, phone, email, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            (first, last, dob, address, phone, email, created.isoformat()),
        ))

    john, maria, _ = ids
    stamp = now.isoformat()
    await db.insert(
        "INSERT INTO insurance (patient_id, provider, policy_number, group_number, subscriber_name, created_at) "
        "VALUES (?, ?, ?, ?, ?, ?)",
        (john, "Blue Cross", "BC123456", "GRP-77", "John Doe", stamp),
    )
    await db.insert(
        "INSERT INTO clinical_forms (patient_id, medical_history, current_medications, allergies, symptoms, created_at) "
        "VALUES (?, ?, ?, ?, ?, ?)",
        (john, "Hypertension", "Lisinopril 10mg", "None known", "Headache", stamp),
    )
    await db.insert(
        "INSERT INTO check_in_completions (patient_id, completed_at, confirmation_sent, estimated_wait_time) "
        "VALUES (?, ?, ?, ?)",
        (john, stamp, 1, 20),
    )
    await db.insert(
        "INSERT INTO insurance (patient_id, provider, policy_number, group_number, subscriber_name, created_at) "
        "VALUES (?, ?, ?, ?, ?, ?)",
        (maria, "Aetna", "AE-99812", None, "Maria Lopez", stamp),
    )
    await db.commit()
    logger.info("Seeded %d demo patients", len(ids))
