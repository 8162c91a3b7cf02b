from sqlalchemy import JSON
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base

# JSONB on PostgreSQL, plain JSON elsewhere (e.g. SQLite in tests)
JSON_TYPE = JSON().with_variant(JSONB(), "postgresql")


class CustomBase:
    def __repr__(self) -> str:
        class_name = self.__class__.__name__

        columns = [(c.key, getattr(self, c.key)) for c in self.__mapper__.column_attrs]

        column_str = ", ".join(f"{name}={repr(value)}" for name, value in columns)

        return f"{class_name}({column_str})"

    def to_dict(self) -> dict:
        """Converts the ORM object to a dictionary keyed by mapped attribute name."""
        return {c.key: getattr(self, c.key) for c in self.__mapper__.column_attrs}


Base = declarative_base(cls=CustomBase)
