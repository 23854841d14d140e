import uuid
from datetime import datetime, timezone

from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.orm import Session

from app.models import Summary, User
from app.services.summarizer_service import SummaryResult


def record_summary(db: Session, user: User, inbound_event_id, result: SummaryResult) -> bool:
    """Store one summary per inbound event. Returns False on replay of the same event."""
    stmt = (
        insert(Summary)
        .values(
            id=uuid.uuid4(),
            user_id=user.id,
            inbound_event_id=inbound_event_id,
            input_chars=result.input_chars,
            summary_text=result.text,
            model=result.model,
            fingerprint=result.fingerprint,
            cost_estimate=result.cost_estimate,
            created_at=datetime.now(timezone.utc),
        )
        .on_conflict_do_nothing(index_elements=["inbound_event_id"])
    )
    created = db.execute(stmt).rowcount > 0
    db.commit()
    return created
