"""Key/value settings model."""

from typing import Any

from sqlalchemy import JSON, String
from sqlalchemy.orm import Mapped, mapped_column

from relaychat.models.base import BaseModel


class Setting(BaseModel):
    """A single user setting; last write wins."""

    __tablename__ = "settings"

    key: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        nullable=False,
        index=True,
    )
    value: Mapped[Any] = mapped_column(
        JSON,
        nullable=True,
    )

    def __repr__(self) -> str:
        return f"<Setting {self.key}>"
