import uuid
import logging
from datetime import date
from sqlalchemy.ext.asyncio import AsyncSession
from assignment_engine.core.config import ScoringConfig
from assignment_engine.core.errors import NotFoundError
from assignment_engine.modules.attorneys.models import AttorneyExpertise, AttorneyProfile
from assignment_engine.modules.attorneys.repository import AttorneyRepository, ExpertiseRepository
from assignment_engine.modules.attorneys.schemas import AttorneyCreate, AttorneyUpdate, ExpertiseUpsert, CaseOutcome

logger = logging.getLogger(__name__)

def compute_expertise_score(record: AttorneyExpertise | None, scoring: ScoringConfig) -> float:
    """Proficiency base score plus experience and success bonuses, capped at ``scoring.max_score``.

    A missing record scores 0.
    """
    if record is None:
        return 0.0
    score = scoring.base_scores.get(record.proficiency_level, 0.0)
    if (record.years_experience or 0) > scoring.years_threshold:
        score += scoring.years_bonus
    if record.success_rate is not None and record.success_rate > scoring.success_threshold:
        score += scoring.success_bonus
    return max(0.0, min(score, scoring.max_score))

class AttorneyExpertiseStore:
    """Per-attorney proficiency records and the expertise score derived from them."""

    def __init__(self, session: AsyncSession, scoring: ScoringConfig | None = None):
        self.session = session
        self.scoring = scoring or ScoringConfig()
        self.attorneys = AttorneyRepository(session)
        self.expertise = ExpertiseRepository(session)

    # ---- Directory ----
    async def create_attorney(self, org_id: uuid.UUID, payload: AttorneyCreate) -> AttorneyProfile:
        data = payload.model_dump(exclude_unset=True)
        if data.get("id") is None:
            data.pop("id", None)
        obj = await self.attorneys.create(org_id, **data)
        await self.session.commit()
        return obj

    async def update_attorney(self, org_id: uuid.UUID, attorney_id: uuid.UUID, payload: AttorneyUpdate) -> AttorneyProfile:
        obj = await self.attorneys.update_fields(org_id, attorney_id, **payload.model_dump(exclude_unset=True))
        if not obj:
            raise NotFoundError("Attorney", attorney_id)
        await self.session.commit()
        return obj

    async def list_attorneys(self, org_id: uuid.UUID, **filters):
        return await self.attorneys.list_profiles(org_id, **filters)

    async def list_active_attorneys(self, org_id: uuid.UUID, practice_area: str | None = None) -> list[uuid.UUID]:
        return [a.id for a in await self.attorneys.list_active(org_id, practice_area)]

    # ---- Expertise ----
    async def upsert_expertise(self, org_id: uuid.UUID, attorney_id: uuid.UUID, payload: ExpertiseUpsert) -> AttorneyExpertise:
        if not await self.attorneys.get(org_id, attorney_id):
            raise NotFoundError("Attorney", attorney_id)
        data = payload.model_dump(exclude_unset=True)
        area = data.pop("expertise_area")
        obj = await self.expertise.upsert(org_id, attorney_id, area, **data)
        await self.session.commit()
        return obj

    async def list_expertise(self, org_id: uuid.UUID, attorney_id: uuid.UUID):
        return await self.expertise.list_for_attorney(org_id, attorney_id)

    async def expertise_score(self, org_id: uuid.UUID, attorney_id: uuid.UUID, practice_area: str) -> float:
        record = await self.expertise.get(org_id, attorney_id, practice_area)
        return compute_expertise_score(record, self.scoring)

    async def scores_for_area(self, org_id: uuid.UUID, attorney_ids: list[uuid.UUID], practice_area: str) -> dict[uuid.UUID, float]:
        records = {r.attorney_id: r for r in await self.expertise.list_for_area(org_id, practice_area, attorney_ids)}
        return {aid: compute_expertise_score(records.get(aid), self.scoring) for aid in attorney_ids}

    async def record_case_outcome(self, org_id: uuid.UUID, attorney_id: uuid.UUID, practice_area: str, outcome: CaseOutcome) -> AttorneyExpertise:
        record = await self.expertise.get(org_id, attorney_id, practice_area)
        if record is None:
            raise NotFoundError("Expertise", f"{attorney_id}/{practice_area}")
        handled = record.cases_handled or 0
        # success_rate is a running average over every closed case
        previous_rate = record.success_rate if record.success_rate is not None else 0.0
        won = 100.0 if outcome.successful else 0.0
        record.success_rate = round((previous_rate * handled + won) / (handled + 1), 2)
        record.cases_handled = handled + 1
        record.last_case_date = outcome.closed_on or date.today()
        await self.session.flush()
        await self.session.commit()
        logger.info(
            f"Recorded case outcome for attorney {attorney_id} in {practice_area}: "
            f"cases_handled={record.cases_handled} success_rate={record.success_rate}"
        )
        return record
