from typing import Optional

from sqlalchemy.orm import Session

from app.core.errors import FlagMisconfigured
from app.models.orm.flag import FeatureFlagORM
from app.models.schemas.flag import FeatureFlag, Targeting
from app.repositories.base import store_errors


def _to_flag(flag_orm: FeatureFlagORM) -> FeatureFlag:
    try:
        return _build_flag(flag_orm)
    # pydantic.ValidationError is a ValueError
    except (TypeError, ValueError) as e:
        raise FlagMisconfigured(flag_orm.key, str(e)) from e


def _build_flag(flag_orm: FeatureFlagORM) -> FeatureFlag:
    return FeatureFlag(
        key=flag_orm.key,
        name=flag_orm.name,
        description=flag_orm.description,
        is_enabled=flag_orm.is_enabled,
        environments=set(flag_orm.environments or []),
        rollout_percentage=flag_orm.rollout_percentage,
        targeting=Targeting.model_validate(flag_orm.targeting or {}),
        conditions=flag_orm.conditions or {},
    )


class FlagRepository:
    def __init__(self, db: Session):
        self.db = db

    def get_flag(self, flag_key: str) -> Optional[FeatureFlag]:
        with store_errors(self.db, "flag lookup"):
            flag_orm = self.db.get(FeatureFlagORM, flag_key)
        return _to_flag(flag_orm) if flag_orm is not None else None

    def save_flag(self, flag: FeatureFlag) -> FeatureFlag:
        """Inserts or replaces a flag; used to seed configuration."""
        targeting = flag.targeting
        with store_errors(self.db, "flag save"):
            flag_orm = self.db.merge(
                FeatureFlagORM(
                    key=flag.key,
                    name=flag.name,
                    description=flag.description,
                    is_enabled=flag.is_enabled,
                    environments=sorted(flag.environments),
                    rollout_percentage=flag.rollout_percentage,
                    targeting={
                        "included_users": sorted(targeting.included_users),
                        "excluded_users": sorted(targeting.excluded_users),
                        "user_attribute_rules": targeting.user_attribute_rules,
                    },
                    conditions=flag.conditions,
                )
            )
            self.db.commit()
            self.db.refresh(flag_orm)
        return _to_flag(flag_orm)
