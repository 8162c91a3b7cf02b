import logging
from typing import Dict, Iterable, Optional

from app.core.errors import FlagMisconfigured, FlagNotFound
from app.core.hashing import flag_bucket
from app.models.schemas.flag import (
    AttributeRule,
    EvaluationContext,
    ExcludeUsersRule,
    FeatureFlag,
    FlagEvaluation,
    IncludeUsersRule,
    TargetingRule,
)
from app.repositories.store import ConfigReader

logger = logging.getLogger(__name__)

FLAG_DISABLED = "flag disabled"
ENVIRONMENT_NOT_ENABLED = "environment not enabled"
NOT_IN_ROLLOUT = "not in rollout percentage"
USER_INCLUDED = "user explicitly included"
USER_EXCLUDED = "user explicitly excluded"
ALL_CONDITIONS_MET = "all conditions met"
EVALUATION_ERROR = "evaluation error"
NOT_FOUND_OR_DISABLED = "flag not found or disabled"


def _disabled(reason: str) -> FlagEvaluation:
    return FlagEvaluation(enabled=False, reason=reason)


def _apply_rule(
    rule: TargetingRule, user_id: str, context: EvaluationContext
) -> Optional[FlagEvaluation]:
    """Returns a decision when the rule settles the outcome, otherwise None."""
    if isinstance(rule, IncludeUsersRule):
        if user_id in rule.user_ids:
            return FlagEvaluation(enabled=True, reason=USER_INCLUDED)
        return None
    if isinstance(rule, ExcludeUsersRule):
        if user_id in rule.user_ids:
            return _disabled(USER_EXCLUDED)
        return None
    if isinstance(rule, AttributeRule):
        attributes = context.user_attributes
        if rule.attribute in attributes and attributes[rule.attribute] not in rule.allowed_values:
            return _disabled(f"user attribute {rule.attribute} not matched")
        return None
    raise TypeError(f"Unsupported targeting rule: {rule!r}")


def _conditions_pass(flag: FeatureFlag, context: EvaluationContext) -> bool:
    # Reserved for future rule types.
    return True


def _evaluate(flag: FeatureFlag, user_id: str, context: EvaluationContext) -> FlagEvaluation:
    if not flag.is_enabled:
        return _disabled(FLAG_DISABLED)

    if context.environment not in flag.environments:
        return _disabled(ENVIRONMENT_NOT_ENABLED)

    # NOTE: the rollout gate runs before the explicit-include override, so an
    # included user outside the rollout window is still disabled.
    if flag.rollout_percentage < 100:
        if flag_bucket(flag.key, user_id) >= flag.rollout_percentage:
            return _disabled(NOT_IN_ROLLOUT)

    for rule in flag.targeting.rules():
        decision = _apply_rule(rule, user_id, context)
        if decision is not None:
            return decision

    if not _conditions_pass(flag, context):
        return _disabled("conditions not met")

    return FlagEvaluation(enabled=True, reason=ALL_CONDITIONS_MET)


def evaluate(
    flag: FeatureFlag, user_id: str, context: Optional[EvaluationContext] = None
) -> FlagEvaluation:
    """
    Decides whether ``flag`` is on for ``user_id``.

    Pure: the result depends only on the flag, the user and the context.
    Unexpected failures fail closed (disabled) instead of raising.
    """
    context = context or EvaluationContext()
    try:
        return _evaluate(flag, user_id, context)
    except Exception:
        logger.exception("Evaluation of flag %s failed for user %s", flag.key, user_id)
        return _disabled(EVALUATION_ERROR)


class FlagService:
    def __init__(self, config: ConfigReader):
        self.config = config

    def evaluate_flag(
        self, flag_key: str, user_id: str, context: Optional[EvaluationContext] = None
    ) -> FlagEvaluation:
        try:
            flag = self.config.get_flag(flag_key)
        except FlagMisconfigured:
            logger.exception("Flag %s could not be loaded; failing closed", flag_key)
            return _disabled(EVALUATION_ERROR)
        if flag is None:
            raise FlagNotFound(flag_key)
        return evaluate(flag, user_id, context)

    def evaluate_flags(
        self,
        flag_keys: Iterable[str],
        user_id: str,
        context: Optional[EvaluationContext] = None,
    ) -> Dict[str, FlagEvaluation]:
        """Evaluates each flag independently, keyed by flag key."""
        context = context or EvaluationContext()
        results: Dict[str, FlagEvaluation] = {}
        for flag_key in flag_keys:
            if flag_key in results:
                continue
            try:
                flag = self.config.get_flag(flag_key)
            except FlagMisconfigured:
                logger.exception("Flag %s could not be loaded; failing closed", flag_key)
                results[flag_key] = _disabled(EVALUATION_ERROR)
                continue
            if flag is None or not flag.is_enabled:
                results[flag_key] = _disabled(NOT_FOUND_OR_DISABLED)
                continue
            results[flag_key] = evaluate(flag, user_id, context)
        return results
