import uuid
from sqlalchemy.ext.asyncio import AsyncSession
from assignment_engine.core.errors import NotFoundError
from assignment_engine.modules.rules.models import AssignmentRule
from assignment_engine.modules.rules.repository import AssignmentRuleRepository
from assignment_engine.modules.rules.schemas import RuleCreate, RuleUpdate

# an explicit null on these clears them (case_type=None makes the rule a wildcard)
NULLABLE_FIELDS = {"case_type", "rule_conditions", "rule_actions"}

class RuleAdminService:
    """Administrator-facing rule maintenance. Rules are deactivated, never deleted."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.rules = AssignmentRuleRepository(session)

    async def create(self, org_id: uuid.UUID, payload: RuleCreate) -> AssignmentRule:
        data = payload.model_dump(exclude_unset=True)
        if payload.rule_actions is not None:
            data["rule_actions"] = payload.rule_actions.model_dump(exclude_none=True)
        obj = await self.rules.create(org_id, **data)
        await self.session.commit()
        return obj

    async def update(self, org_id: uuid.UUID, rule_id: uuid.UUID, payload: RuleUpdate) -> AssignmentRule:
        data = {
            k: v for k, v in payload.model_dump(exclude_unset=True).items()
            if v is not None or k in NULLABLE_FIELDS
        }
        if payload.rule_actions is not None:
            data["rule_actions"] = payload.rule_actions.model_dump(exclude_none=True)
        obj = await self.rules.update_fields(org_id, rule_id, **data)
        if not obj:
            raise NotFoundError("Rule", rule_id)
        await self.session.commit()
        return obj

    async def deactivate(self, org_id: uuid.UUID, rule_id: uuid.UUID) -> AssignmentRule:
        obj = await self.rules.update_fields(org_id, rule_id, active=False)
        if not obj:
            raise NotFoundError("Rule", rule_id)
        await self.session.commit()
        return obj

    async def get(self, org_id: uuid.UUID, rule_id: uuid.UUID) -> AssignmentRule:
        obj = await self.rules.get(org_id, rule_id)
        if not obj:
            raise NotFoundError("Rule", rule_id)
        return obj

    async def list(self, org_id: uuid.UUID, include_inactive: bool = False):
        return await self.rules.list(org_id, include_inactive=include_inactive)
