from datetime import UTC, datetime
from uuid import uuid4

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel


def new_id() -> str:
    return uuid4().hex


class ThreadBase(SQLModel):
    """Base thread fields."""

    bounty_id: str = Field(index=True, max_length=64)
    client_id: str = Field(index=True, max_length=64)
    freelancer_id: str = Field(index=True, max_length=64)


class Thread(ThreadBase, table=True):
    """
    Two-participant conversation around one bounty.
    The participant pair is fixed at creation.
    """

    __table_args__ = (
        UniqueConstraint("bounty_id", "client_id", "freelancer_id"),
    )

    id: str = Field(default_factory=new_id, primary_key=True, max_length=32)

    # Highest message sequence number handed out in this thread
    last_seq: int = 0
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    last_message_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC), index=True
    )

    @property
    def participants(self) -> tuple[str, str]:
        return self.client_id, self.freelancer_id

    def is_participant(self, user_id: str) -> bool:
        return user_id in self.participants

    def counterpart_of(self, user_id: str) -> str | None:
        """The other participant, or None when user_id is not in the thread."""
        if user_id == self.client_id:
            return self.freelancer_id
        if user_id == self.freelancer_id:
            return self.client_id
        return None


class ThreadRead(ThreadBase):
    """Thread read schema."""

    id: str
    created_at: datetime
    last_message_at: datetime
