"""
SQLAlchemy models for the querykit sample schema.

Members belong to at most one team. Used by the test suite and as the
reference shape for query definitions:

    Member{id, username: optional, age, team}
    Team{id, name, members}
"""
from typing import Optional, List
from sqlalchemy import Integer, String, ForeignKey
from sqlalchemy.orm import DeclarativeBase, relationship, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


class Team(Base):
    """A named team of members."""
    __tablename__ = 'teams'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False, index=True)

    members: Mapped[List["Member"]] = relationship("Member", back_populates="team")

    def __init__(self, name: str):
        self.name = name

    def __repr__(self):
        return f"<Team(id={self.id}, name='{self.name}')>"


class Member(Base):
    """
    A member with an optional username.

    Attributes:
        id: Primary key
        username: Display name; may be null
        age: Age in years; never null
        team: Team the member belongs to, if any
    """
    __tablename__ = 'members'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    username: Mapped[Optional[str]] = mapped_column(String(128), nullable=True, index=True)
    age: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    team_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey('teams.id', ondelete='SET NULL'), nullable=True, index=True
    )

    team: Mapped[Optional["Team"]] = relationship("Team", back_populates="members")

    def __init__(self, username: Optional[str], age: int = 0, team: Optional[Team] = None):
        self.username = username
        self.age = age
        if team is not None:
            self.change_team(team)

    def change_team(self, team: Team) -> None:
        """Move this member to a team, keeping both sides of the relation in sync."""
        self.team = team

    def __repr__(self):
        return f"<Member(id={self.id}, username={self.username!r}, age={self.age})>"
