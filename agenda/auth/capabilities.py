from dataclasses import dataclass

from agenda.models.appointment import Appointment
from agenda.models.user import ROLE_ADMIN, ROLE_PATIENT, ROLE_PROVIDER, User
from agenda.scheduling.state_machine import Capabilities


@dataclass(frozen=True)
class Actor:
    user_id: int
    role: str

    @classmethod
    def from_user(cls, user: User) -> "Actor":
        return cls(user_id=user.id, role=(user.role or "").strip().lower())

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN


def capabilities_for(actor: Actor, appointment: Appointment) -> Capabilities:
    return Capabilities(
        is_admin=actor.is_admin,
        is_owning_patient=actor.role == ROLE_PATIENT and actor.user_id == appointment.patient_id,
        is_associated_provider=actor.role == ROLE_PROVIDER and actor.user_id == appointment.provider_id,
    )
