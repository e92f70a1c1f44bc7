"""
CaseTrack — Test Execution Service
Execution domain models.

Models:
    - TestPackage:       group of scenarios released for testing together
    - TestScenario:      executable scenario with an ordered list of steps
    - ScenarioStep:      atomic step; carries the execution outcome
    - Bug:               defect raised against a scenario (optionally one step)
    - StepComment:       discussion thread on a step
    - ExecutionHistory:  append-only audit trail per scenario

Architecture ref:
    TestPackage ──1:N──▶ TestScenario ──1:N──▶ ScenarioStep ──1:N──▶ StepComment
    TestScenario ──1:N──▶ Bug ──N:1──▶ ScenarioStep (optional)
    TestScenario ──1:N──▶ ExecutionHistory

Scenario and package rows are versioned (``version_id_col``) so that two
writers racing on the same aggregate cannot silently overwrite each other.
"""

import json
from datetime import datetime, timezone
from enum import Enum

from casetrack.models import db


# ═════════════════════════════════════════════════════════════════════════════
# Enums
# ═════════════════════════════════════════════════════════════════════════════

class StepStatus(str, Enum):
    PENDING = "PENDING"
    PASSED = "PASSED"
    FAILED = "FAILED"
    BLOCKED = "BLOCKED"


class ScenarioStatus(str, Enum):
    CREATED = "CREATED"
    EXECUTED = "EXECUTED"
    PASSED = "PASSED"
    FAILED = "FAILED"
    APPROVED = "APPROVED"
    REPROVED = "REPROVED"
    BLOCKED = "BLOCKED"


class PackageStatus(str, Enum):
    CREATED = "CREATED"
    IN_TEST = "IN_TEST"
    COMPLETED = "COMPLETED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    BLOCKED = "BLOCKED"


class BugSeverity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class BugStatus(str, Enum):
    OPEN = "OPEN"
    IN_PROGRESS = "IN_PROGRESS"
    RESOLVED = "RESOLVED"
    CLOSED = "CLOSED"


# Status a blocked aggregate falls back to once it is no longer fully blocked.
SCENARIO_RESUMED_STATUS = ScenarioStatus.EXECUTED
PACKAGE_RESUMED_STATUS = PackageStatus.IN_TEST

# ── Package review lifecycle ─────────────────────────────────────────────
PACKAGE_TRANSITIONS = {
    PackageStatus.CREATED:   [PackageStatus.IN_TEST],
    PackageStatus.IN_TEST:   [PackageStatus.COMPLETED, PackageStatus.REJECTED],
    PackageStatus.REJECTED:  [PackageStatus.IN_TEST],
    PackageStatus.COMPLETED: [PackageStatus.APPROVED],
    PackageStatus.APPROVED:  [],
    PackageStatus.BLOCKED:   [],
}


def validate_package_transition(old_status, new_status):
    """Return True if a review-lifecycle transition is valid, False otherwise."""
    return new_status in PACKAGE_TRANSITIONS.get(old_status, [])


def _enum_column(enum_cls, name):
    return db.Enum(
        enum_cls, name=name, native_enum=False, length=20,
        validate_strings=True,
    )


def _iso(value):
    return value.isoformat() if value else None


# ═════════════════════════════════════════════════════════════════════════════
# TEST PACKAGE
# ═════════════════════════════════════════════════════════════════════════════

class TestPackage(db.Model):
    """
    A release-scoped group of scenarios.

    ``status`` follows the review lifecycle (PACKAGE_TRANSITIONS) and is
    additionally driven into / out of BLOCKED by status propagation.
    """

    __tablename__ = "test_packages"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )

    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, default="")
    release = db.Column(db.String(30), default="", comment="Release tag, e.g. 2024-01")
    status = db.Column(
        _enum_column(PackageStatus, "package_status"),
        nullable=False, default=PackageStatus.CREATED,
    )
    version = db.Column(db.Integer, nullable=False, default=1)

    rejection_reason = db.Column(db.Text, nullable=True)
    reviewed_by_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )
    reviewed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # ── Audit
    created_at = db.Column(
        db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    scenarios = db.relationship(
        "TestScenario", backref="package", lazy="select",
        order_by="TestScenario.id", cascade="all", passive_deletes=True,
    )

    __mapper_args__ = {"version_id_col": version}

    def to_dict(self, include_scenarios=False):
        d = {
            "id": self.id,
            "project_id": self.project_id,
            "title": self.title,
            "description": self.description,
            "release": self.release,
            "status": self.status.value if self.status else None,
            "version": self.version,
            "rejection_reason": self.rejection_reason,
            "reviewed_by_id": self.reviewed_by_id,
            "reviewed_at": _iso(self.reviewed_at),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }
        if include_scenarios:
            d["scenarios"] = [s.to_dict(include_steps=True) for s in self.scenarios]
        return d

    def __repr__(self):
        return f"<TestPackage {self.id}: {self.title} [{self.status}]>"


# ═════════════════════════════════════════════════════════════════════════════
# TEST SCENARIO
# ═════════════════════════════════════════════════════════════════════════════

class TestScenario(db.Model):
    """
    Executable test scenario.

    Invariant maintained by status propagation: ``status == BLOCKED`` iff the
    scenario has at least one step and every step is BLOCKED.
    """

    __tablename__ = "test_scenarios"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    package_id = db.Column(
        db.Integer, db.ForeignKey("test_packages.id", ondelete="CASCADE"),
        nullable=True, index=True,
    )

    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, default="")
    status = db.Column(
        _enum_column(ScenarioStatus, "scenario_status"),
        nullable=False, default=ScenarioStatus.CREATED,
    )
    version = db.Column(db.Integer, nullable=False, default=1)

    # ── Audit
    created_at = db.Column(
        db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    steps = db.relationship(
        "ScenarioStep", backref="scenario", lazy="select",
        order_by="ScenarioStep.step_order",
        cascade="all, delete-orphan", passive_deletes=True,
    )

    __mapper_args__ = {"version_id_col": version}

    def to_dict(self, include_steps=False):
        d = {
            "id": self.id,
            "project_id": self.project_id,
            "package_id": self.package_id,
            "title": self.title,
            "description": self.description,
            "status": self.status.value if self.status else None,
            "version": self.version,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }
        if include_steps:
            d["steps"] = [s.to_dict() for s in self.steps]
        return d

    def __repr__(self):
        return f"<TestScenario {self.id}: {self.title} [{self.status}]>"


# ═════════════════════════════════════════════════════════════════════════════
# SCENARIO STEP
# ═════════════════════════════════════════════════════════════════════════════

class ScenarioStep(db.Model):
    """Atomic step within a scenario; ``step_order`` is 1-based and contiguous."""

    __tablename__ = "scenario_steps"
    __table_args__ = (
        db.UniqueConstraint("scenario_id", "step_order", name="uq_step_scenario_order"),
    )

    id = db.Column(db.Integer, primary_key=True)
    scenario_id = db.Column(
        db.Integer, db.ForeignKey("test_scenarios.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )

    step_order = db.Column(db.Integer, nullable=False, comment="1-based position")
    action = db.Column(db.Text, nullable=False, comment="Action to perform")
    expected = db.Column(db.Text, default="", comment="Expected outcome")
    actual_result = db.Column(db.Text, nullable=True, comment="Observed outcome")
    status = db.Column(
        _enum_column(StepStatus, "step_status"),
        nullable=False, default=StepStatus.PENDING,
    )

    # ── Audit
    created_at = db.Column(
        db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "scenario_id": self.scenario_id,
            "step_order": self.step_order,
            "action": self.action,
            "expected": self.expected,
            "actual_result": self.actual_result,
            "status": self.status.value if self.status else None,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<ScenarioStep {self.id}: scenario#{self.scenario_id} step#{self.step_order} → {self.status}>"


# ═════════════════════════════════════════════════════════════════════════════
# BUG
# ═════════════════════════════════════════════════════════════════════════════

class Bug(db.Model):
    """Defect raised during execution of a scenario."""

    __tablename__ = "bugs"

    id = db.Column(db.Integer, primary_key=True)
    scenario_id = db.Column(
        db.Integer, db.ForeignKey("test_scenarios.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    related_step_id = db.Column(
        db.Integer, db.ForeignKey("scenario_steps.id", ondelete="SET NULL"),
        nullable=True, index=True,
    )

    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    severity = db.Column(_enum_column(BugSeverity, "bug_severity"), nullable=False)
    status = db.Column(
        _enum_column(BugStatus, "bug_status"),
        nullable=False, default=BugStatus.OPEN,
    )
    created_by = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )

    # ── Audit
    created_at = db.Column(
        db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    scenario = db.relationship("TestScenario", lazy="joined")
    creator = db.relationship("User", lazy="joined")

    def to_dict(self):
        return {
            "id": self.id,
            "scenario_id": self.scenario_id,
            "project_id": self.project_id,
            "related_step_id": self.related_step_id,
            "title": self.title,
            "description": self.description,
            "severity": self.severity.value if self.severity else None,
            "status": self.status.value if self.status else None,
            "created_by": self.created_by,
            "creator": self.creator.to_summary() if self.creator else None,
            "scenario": {"id": self.scenario.id, "title": self.scenario.title} if self.scenario else None,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<Bug {self.id}: scenario#{self.scenario_id} {self.severity}>"


# ═════════════════════════════════════════════════════════════════════════════
# STEP COMMENT
# ═════════════════════════════════════════════════════════════════════════════

class StepComment(db.Model):
    """Comment on a step; ``mentions_json`` holds a list of mentioned user ids."""

    __tablename__ = "step_comments"

    id = db.Column(db.Integer, primary_key=True)
    step_id = db.Column(
        db.Integer, db.ForeignKey("scenario_steps.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )

    text = db.Column(db.Text, nullable=False)
    mentions_json = db.Column(db.Text, nullable=True)

    created_at = db.Column(
        db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
    )

    user = db.relationship("User", lazy="joined")

    @property
    def mentions(self) -> list:
        try:
            return json.loads(self.mentions_json) if self.mentions_json else []
        except (json.JSONDecodeError, TypeError):
            return []

    def to_dict(self):
        return {
            "id": self.id,
            "step_id": self.step_id,
            "user_id": self.user_id,
            "user": self.user.to_summary() if self.user else None,
            "text": self.text,
            "mentions": self.mentions,
            "created_at": _iso(self.created_at),
        }

    def __repr__(self):
        return f"<StepComment {self.id}: step#{self.step_id}>"


# ═════════════════════════════════════════════════════════════════════════════
# EXECUTION HISTORY
# ═════════════════════════════════════════════════════════════════════════════

class ExecutionHistory(db.Model):
    """
    Immutable, append-only audit entry for a scenario.

    ``action`` is a free-form tag (STARTED, COMPLETED, BUG_CREATED, …);
    ``metadata_json`` is an opaque JSON payload supplied by the caller.
    """

    __tablename__ = "execution_history"
    __table_args__ = (
        db.Index("idx_history_scenario_ts", "scenario_id", "created_at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    scenario_id = db.Column(
        db.Integer, db.ForeignKey("test_scenarios.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )

    action = db.Column(db.String(60), nullable=False)
    description = db.Column(db.Text, nullable=True)
    metadata_json = db.Column(db.Text, nullable=True)

    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    user = db.relationship("User", lazy="joined")

    @property
    def payload(self):
        """Deserialise *metadata_json*; None when absent or unreadable."""
        if not self.metadata_json:
            return None
        try:
            return json.loads(self.metadata_json)
        except (json.JSONDecodeError, TypeError):
            return None

    def to_dict(self):
        return {
            "id": self.id,
            "scenario_id": self.scenario_id,
            "user_id": self.user_id,
            "user": self.user.to_summary() if self.user else None,
            "action": self.action,
            "description": self.description,
            "metadata": self.payload,
            "created_at": _iso(self.created_at),
        }

    def __repr__(self):
        return f"<ExecutionHistory {self.id}: {self.action} on scenario#{self.scenario_id}>"
