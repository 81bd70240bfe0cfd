"""Column types shared by the models.

PostgreSQL gets JSONB, every other backend (SQLite in tests) plain JSON.
"""

import enum
from typing import Type

from sqlalchemy import JSON, Enum
from sqlalchemy.dialects.postgresql import JSONB

JSONType = JSON().with_variant(JSONB(), "postgresql")


def enum_column(enum_cls: Type[enum.Enum], name: str) -> Enum:
    """Enum column persisted by member value rather than member name."""
    return Enum(
        enum_cls,
        name=name,
        values_callable=lambda members: [member.value for member in members],
        validate_strings=True,
    )
