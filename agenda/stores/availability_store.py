"""Persistence for providers' weekly availability blocks."""

from sqlalchemy.orm import Session

from agenda.models.availability import AvailabilityBlock


class AvailabilityStore:
    def __init__(self, db: Session):
        self.db = db

    def list_blocks(
        self,
        provider_id: int,
        modality: str | None = None,
        weekday: int | None = None,
        active_only: bool = True,
    ) -> list[AvailabilityBlock]:
        query = self.db.query(AvailabilityBlock).filter(AvailabilityBlock.provider_id == provider_id)
        if active_only:
            query = query.filter(AvailabilityBlock.active.is_(True))
        if modality is not None:
            query = query.filter(AvailabilityBlock.modality == modality)
        if weekday is not None:
            query = query.filter(AvailabilityBlock.weekday == weekday)
        return query.order_by(AvailabilityBlock.weekday.asc(), AvailabilityBlock.start_time.asc()).all()

    def replace_blocks(self, provider_id: int, blocks: list[dict]) -> list[AvailabilityBlock]:
        """Swap the provider's whole block set. The caller owns the transaction."""
        self.db.query(AvailabilityBlock).filter(
            AvailabilityBlock.provider_id == provider_id,
        ).delete(synchronize_session=False)

        created = [
            AvailabilityBlock(
                provider_id=provider_id,
                weekday=block['weekday'],
                start_time=block['start_time'],
                end_time=block['end_time'],
                modality=block['modality'],
                active=block.get('active', True),
            )
            for block in blocks
        ]
        self.db.add_all(created)
        self.db.flush()
        return created
