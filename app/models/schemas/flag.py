from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from app.core.settings import config_settings


# --- Targeting rules ---


class IncludeUsersRule(BaseModel):
    """Users that are explicitly switched on."""

    kind: Literal["include_users"] = "include_users"
    user_ids: frozenset[str] = frozenset()


class ExcludeUsersRule(BaseModel):
    """Users that are explicitly switched off."""

    kind: Literal["exclude_users"] = "exclude_users"
    user_ids: frozenset[str] = frozenset()


class AttributeRule(BaseModel):
    """A user attribute that, when present, must hold one of the allowed values."""

    kind: Literal["attribute"] = "attribute"
    attribute: str
    allowed_values: List[Any] = Field(default_factory=list)


TargetingRule = Annotated[
    Union[IncludeUsersRule, ExcludeUsersRule, AttributeRule],
    Field(discriminator="kind"),
]


class Targeting(BaseModel):
    included_users: set[str] = Field(default_factory=set)
    excluded_users: set[str] = Field(default_factory=set)
    user_attribute_rules: Dict[str, List[Any]] = Field(
        default_factory=dict,
        description="Attribute name mapped to the values allowed for it.",
    )

    def rules(self) -> List[TargetingRule]:
        """Targeting expressed as rules, in the order they are evaluated."""
        rules: List[TargetingRule] = [
            IncludeUsersRule(user_ids=frozenset(self.included_users)),
            ExcludeUsersRule(user_ids=frozenset(self.excluded_users)),
        ]
        rules.extend(
            AttributeRule(attribute=attribute, allowed_values=list(allowed))
            for attribute, allowed in self.user_attribute_rules.items()
        )
        return rules


# --- Flags ---


class FeatureFlag(BaseModel):
    """Read-only flag configuration as seen by the evaluator."""

    key: str
    name: Optional[str] = None
    description: Optional[str] = None
    is_enabled: bool = False
    environments: set[str] = Field(default_factory=set)
    rollout_percentage: int = Field(100, ge=0, le=100)
    targeting: Targeting = Field(default_factory=Targeting)
    # Reserved for future rule types, always passes.
    conditions: Dict[str, Any] = Field(default_factory=dict)


class EvaluationContext(BaseModel):
    model_config = ConfigDict(extra="allow")

    environment: str = Field(
        default_factory=lambda: config_settings.DEFAULT_ENVIRONMENT
    )
    user_attributes: Dict[str, Any] = Field(default_factory=dict)


class FlagEvaluation(BaseModel):
    enabled: bool
    reason: str


# --- API models ---


class FlagEvaluationRequest(BaseModel):
    user_id: str
    context: EvaluationContext = Field(default_factory=EvaluationContext)


class BulkFlagEvaluationRequest(BaseModel):
    flag_keys: List[str] = Field(..., min_length=1)
    user_id: str
    context: EvaluationContext = Field(default_factory=EvaluationContext)


class FlagEvaluationModel(FlagEvaluation):
    flag_key: str
