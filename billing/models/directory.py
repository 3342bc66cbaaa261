"""Records owned by other subsystems that the ledger only looks up."""

from pydantic import BaseModel

PATIENT_ROLE = "patient"


class Party(BaseModel):
    """A user from the party directory; only patients can be billed."""

    id: int
    role: str

    @property
    def is_patient(self) -> bool:
        return self.role == PATIENT_ROLE


class AppointmentRef(BaseModel):
    """Minimal appointment reference used to check invoice ownership."""

    id: int
    party_id: int
