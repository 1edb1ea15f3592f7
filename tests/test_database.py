"""Tests for database initialization and operations."""

import pytest

import checkin.database as db_mod
from checkin.database import _seed_demo_patients, _sqlite_path_from_url
from checkin.errors import ConstraintViolation


async def _insert_patient(db, first="Jane", last="Smith", created_at="2026-01-01T00:00:00+00:00"):
    return await db.insert(
        "INSERT INTO patients (first_name, last_name, date_of_birth, address, phone, email, created_at) "
        "VALUES (?, ?, ?, ?, ?, ?, ?)",
        (first, last, "1985-03-02", "1 Elm St", "555-0000", "jane@example.com", created_at),
    )


async def test_init_creates_tables(db):
    """Test that init_db creates the four intake tables."""
    rows = await db.fetch_all(
        "SELECT name FROM sqlite_master WHERE type='table' ORDER BY name"
    )
    tables = [row[0] for row in rows]
    for name in ("patients", "insurance", "clinical_forms", "check_in_completions"):
        assert name in tables


async def test_init_is_idempotent(db):
    """Running init twice keeps the schema intact."""
    await db_mod.init_db()
    row = await db.fetch_one("SELECT COUNT(*) AS count FROM patients")
    assert row["count"] == 0


async def test_insert_returns_new_id(db):
    """Insert returns the id of the new row."""
    first = await _insert_patient(db)
    second = await _insert_patient(db, first="Tom")
    await db.commit()
    assert second == first + 1

    row = await db.fetch_one("SELECT * FROM patients WHERE id = ?", (second,))
    assert row["first_name"] == "Tom"


async def test_execute_returns_rowcount(db):
    """Execute reports how many rows changed."""
    pid = await _insert_patient(db)
    await db.commit()
    updated = await db.execute("UPDATE patients SET phone = ? WHERE id = ?", ("555-1111", pid))
    assert updated == 1
    assert await db.execute("DELETE FROM patients WHERE id = ?", (9999,)) == 0


async def test_completion_is_unique_per_patient(db):
    """The schema allows one completion per patient."""
    pid = await _insert_patient(db)
    await db.insert(
        "INSERT INTO check_in_completions (patient_id, completed_at, estimated_wait_time) VALUES (?, ?, ?)",
        (pid, "2026-01-01T00:00:00+00:00", 20),
    )
    with pytest.raises(ConstraintViolation):
        await db.insert(
            "INSERT INTO check_in_completions (patient_id, completed_at, estimated_wait_time) VALUES (?, ?, ?)",
            (pid, "2026-01-01T00:05:00+00:00", 20),
        )


async def test_wait_time_check_constraint(db):
    """Wait time outside 0 to 180 minutes breaks a CHECK constraint."""
    pid = await _insert_patient(db)
    with pytest.raises(ConstraintViolation):
        await db.insert(
            "INSERT INTO check_in_completions (patient_id, completed_at, estimated_wait_time) VALUES (?, ?, ?)",
            (pid, "2026-01-01T00:00:00+00:00", 181),
        )


async def test_foreign_keys_enforced(db):
    """Rows must point at an existing patient."""
    with pytest.raises(ConstraintViolation):
        await db.insert(
            "INSERT INTO insurance (patient_id, provider, policy_number, subscriber_name, created_at) "
            "VALUES (?, ?, ?, ?, ?)",
            (4242, "Aetna", "P-1", "Nobody", "2026-01-01T00:00:00+00:00"),
        )


async def test_seed_demo_patients(db):
    """Seeding fills an empty database with demo patients."""
    await _seed_demo_patients(db)
    patients = await db.fetch_all("SELECT first_name FROM patients ORDER BY id")
    assert [row["first_name"] for row in patients] == ["John", "Maria", "Ethan"]
    completions = await db.fetch_all("SELECT * FROM check_in_completions")
    assert len(completions) == 1
    assert completions[0]["confirmation_sent"] == 1


async def test_seed_skips_non_empty_database(db):
    """Seeding leaves a database with patients alone."""
    await _insert_patient(db)
    await db.commit()
    await _seed_demo_patients(db)
    row = await db.fetch_one("SELECT COUNT(*) AS count FROM patients")
    assert row["count"] == 1


def test_sqlite_path_from_url():
    """sqlite URLs map onto file paths."""
    assert _sqlite_path_from_url("sqlite:///checkin.db") == "checkin.db"
    assert _sqlite_path_from_url("sqlite:////var/data/checkin.db") == "/var/data/checkin.db"
    assert _sqlite_path_from_url("sqlite://") == ""
