"""Shared test fixtures for the billing ledger test suite."""

import os
from pathlib import Path

import pytest
from dotenv import load_dotenv

# Load .env file BEFORE any other imports that might use env vars
load_dotenv(Path(__file__).parent.parent / ".env", override=True)

# Reset vault client singleton to pick up env vars
import clients.vault_client as vault_module
vault_module._vault_client_instance = None
vault_module.clear_secret_cache()

from utils.user_context import user_context, clear_current_user_id

MIGRATIONS_DIR = Path(__file__).parent.parent / "migrations"


# =============================================================================
# TEST USER CONSTANTS
# =============================================================================

# Staff member recording payments and preparing invoices
STAFF_USER_ID = 7

# Parties in the directory
PATIENT_ID = 1
DOCTOR_ID = 2
OTHER_PATIENT_ID = 3

# Appointments
PATIENT_APPOINTMENT_ID = 10
OTHER_PATIENT_APPOINTMENT_ID = 11


# =============================================================================
# USER CONTEXT FIXTURES
# =============================================================================


@pytest.fixture(autouse=True)
def reset_user_context():
    """Ensure clean user context before and after each test."""
    clear_current_user_id()
    yield
    clear_current_user_id()


@pytest.fixture
def staff_user_id() -> int:
    return STAFF_USER_ID


@pytest.fixture
def as_staff(staff_user_id):
    """Run the test as the staff member."""
    with user_context(staff_user_id):
        yield staff_user_id


# =============================================================================
# DATABASE FIXTURES (integration tests only)
# =============================================================================


@pytest.fixture(scope="session")
def db():
    """
    Session-scoped PostgresClient against a disposable test database.

    Skipped unless BILLING_TEST_DATABASE_URL is set. Creates minimal
    users/appointments tables and applies the billing migrations.
    """
    url = os.getenv("BILLING_TEST_DATABASE_URL")
    if not url:
        pytest.skip("BILLING_TEST_DATABASE_URL not set")

    from clients.postgres_client import PostgresClient

    client = PostgresClient(url)
    client.execute("""
        CREATE TABLE IF NOT EXISTS users (
            id BIGINT PRIMARY KEY,
            role VARCHAR(20) NOT NULL
        )
    """)
    client.execute("""
        CREATE TABLE IF NOT EXISTS appointments (
            id BIGINT PRIMARY KEY,
            patient_user_id BIGINT NOT NULL
        )
    """)
    for migration in sorted(MIGRATIONS_DIR.glob("*.sql")):
        client.execute(migration.read_text())

    yield client
    client.close()


@pytest.fixture
def clean_db(db):
    """Empty ledger tables and a known directory before each integration test."""
    db.execute("""
        TRUNCATE invoices, invoice_items, payments, invoice_sequences, audit_log,
                 users, appointments
        RESTART IDENTITY CASCADE
    """)
    db.execute(
        "INSERT INTO users (id, role) VALUES (%s, 'patient'), (%s, 'doctor'), (%s, 'patient'), (%s, 'staff')",
        (PATIENT_ID, DOCTOR_ID, OTHER_PATIENT_ID, STAFF_USER_ID)
    )
    db.execute(
        "INSERT INTO appointments (id, patient_user_id) VALUES (%s, %s), (%s, %s)",
        (PATIENT_APPOINTMENT_ID, PATIENT_ID, OTHER_PATIENT_APPOINTMENT_ID, OTHER_PATIENT_ID)
    )
    yield db
