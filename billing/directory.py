"""
Read-only lookups into the party and appointment directories.

Both tables are owned by other parts of the platform; the ledger only
checks existence, role and ownership before it bills anyone.
"""

from clients.postgres_client import PostgresClient, Transaction
from billing.models import AppointmentRef, Party


class PartyDirectory:
    def __init__(self, postgres: PostgresClient):
        self.postgres = postgres

    def find_by_id(self, party_id: int, db: Transaction | None = None) -> Party | None:
        row = (db or self.postgres).execute_single(
            "SELECT id, role FROM users WHERE id = %s",
            (party_id,)
        )
        return Party.model_validate(row) if row else None


class AppointmentDirectory:
    def __init__(self, postgres: PostgresClient):
        self.postgres = postgres

    def find_by_id(self, appointment_id: int, db: Transaction | None = None) -> AppointmentRef | None:
        row = (db or self.postgres).execute_single(
            "SELECT id, patient_user_id AS party_id FROM appointments WHERE id = %s",
            (appointment_id,)
        )
        return AppointmentRef.model_validate(row) if row else None
