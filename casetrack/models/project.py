"""
CaseTrack — Test Execution Service
Ownership-root models.

Models:
    - User:     tester / reviewer identity (display fields only; auth is external)
    - Project:  top-level container for packages and scenarios

Architecture ref:
    Project ──1:N──▶ TestPackage ──1:N──▶ TestScenario ──1:N──▶ ScenarioStep
    Project ──1:N──▶ TestScenario  (scenarios may live outside any package)
"""

from datetime import datetime, timezone

from casetrack.models import db


class User(db.Model):
    """Acting user for bugs, comments and execution history."""

    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(150), nullable=False)
    email = db.Column(db.String(255), nullable=False, unique=True, index=True)
    avatar_url = db.Column(db.String(500), nullable=True)

    created_at = db.Column(
        db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
    )

    def to_summary(self):
        """Denormalized display fields embedded in bug/comment/history payloads."""
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "avatar_url": self.avatar_url,
        }

    def to_dict(self):
        return {
            **self.to_summary(),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<User {self.id}: {self.email}>"


class Project(db.Model):
    """Top-level container; deleting a project cascades to its packages and scenarios."""

    __tablename__ = "projects"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, default="")

    created_at = db.Column(
        db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    packages = db.relationship(
        "TestPackage", backref="project", lazy="select",
        cascade="all, delete-orphan", passive_deletes=True,
    )
    scenarios = db.relationship(
        "TestScenario", backref="project", lazy="select",
        cascade="all, delete-orphan", passive_deletes=True,
    )

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<Project {self.id}: {self.name}>"
