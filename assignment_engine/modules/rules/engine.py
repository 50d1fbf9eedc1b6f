import uuid
import logging
from dataclasses import dataclass
from typing import Iterable
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession
from assignment_engine.core.errors import RuleEvaluationError
from assignment_engine.modules.rules.conditions import parse_conditions, all_match
from assignment_engine.modules.rules.models import AssignmentRule
from assignment_engine.modules.rules.repository import AssignmentRuleRepository
from assignment_engine.modules.rules.schemas import RuleActions

logger = logging.getLogger(__name__)

@dataclass(frozen=True)
class RuleMatch:
    rule: AssignmentRule
    actions: RuleActions

    @property
    def rule_id(self) -> uuid.UUID:
        return self.rule.id

def parse_actions(raw) -> RuleActions:
    if raw is None:
        return RuleActions()
    if not isinstance(raw, dict):
        raise RuleEvaluationError("rule_actions must be a JSON object", {"type": type(raw).__name__})
    try:
        return RuleActions.model_validate(raw)
    except ValidationError as e:
        raise RuleEvaluationError("Invalid rule_actions", {"errors": e.errors(include_url=False)})

def _case_type_matches(rule: AssignmentRule, case_type) -> bool:
    if rule.case_type is None:
        return True
    return case_type is not None and str(case_type).upper() == rule.case_type.upper()

def evaluate_rules(rules: Iterable[AssignmentRule], attributes: dict) -> RuleMatch | None:
    """Return the first rule (in the given order) whose case type and conditions all match.

    Malformed rules are logged and skipped.
    """
    case_type = attributes.get("case_type")
    for rule in rules:
        if not _case_type_matches(rule, case_type):
            continue
        try:
            conditions = parse_conditions(rule.rule_conditions)
            if not all_match(conditions, attributes):
                continue
            actions = parse_actions(rule.rule_actions)
        except RuleEvaluationError as e:
            logger.warning(f"Skipping assignment rule {rule.id} ({rule.rule_name}): {e.message} {e.details}")
            continue
        return RuleMatch(rule=rule, actions=actions)
    return None

class AssignmentRuleEngine:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.rules = AssignmentRuleRepository(session)

    async def select_rule(self, org_id: uuid.UUID, attributes: dict) -> RuleMatch | None:
        rules = await self.rules.list_active(org_id)
        match = evaluate_rules(rules, attributes)
        if match is None:
            logger.info(f"No assignment rule matched case {attributes.get('case_id')} (org {org_id}, {len(rules)} active rules)")
        else:
            logger.info(f"Case {attributes.get('case_id')} matched rule {match.rule.id} ({match.rule.rule_name})")
        return match
