from datetime import UTC, datetime

from sqlalchemy import Column, DateTime
from sqlmodel import Field, SQLModel


def _utc_now() -> datetime:
    return datetime.now(UTC)


class Contact(SQLModel, table=True):
    __tablename__ = "contacts"
    id: int | None = Field(default=None, primary_key=True)
    owner_id: int = Field(index=True)
    first_name: str
    last_name: str
    email: str | None = Field(default=None, index=True)
    phone: str | None = None
    source: str | None = None
    created_at: datetime = Field(
        default_factory=_utc_now, sa_column=Column(DateTime(timezone=True), nullable=False)
    )
    updated_at: datetime = Field(
        default_factory=_utc_now, sa_column=Column(DateTime(timezone=True), nullable=False)
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()
