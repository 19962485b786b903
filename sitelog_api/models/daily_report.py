from sitelog_api.common.timeutil import utcnow
from sitelog_api.extensions import db

REPORT_STATUSES = ("draft", "submitted", "approved", "rejected")

class DailyReport(db.Model):
    __tablename__ = "daily_reports"

    id          = db.Column(db.Integer, primary_key=True)
    site_id     = db.Column(db.Integer, db.ForeignKey("sites.id", ondelete="RESTRICT"), nullable=False, index=True)
    work_date   = db.Column(db.Date, nullable=False, index=True)
    creator_id  = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True)

    # explicit status is the source of truth; timestamps are audit metadata
    status      = db.Column(db.String(20), nullable=False, default="draft", index=True)  # draft|submitted|approved|rejected
    version     = db.Column(db.Integer, nullable=False, default=1)

    # editable content
    work_content      = db.Column(db.Text, nullable=True)
    process_type      = db.Column(db.String(100), nullable=True)
    member_name       = db.Column(db.String(100), nullable=True)
    total_workers     = db.Column(db.Integer, nullable=True)
    npc1000_incoming  = db.Column(db.Numeric(10, 2), nullable=True)
    npc1000_used      = db.Column(db.Numeric(10, 2), nullable=True)
    npc1000_remaining = db.Column(db.Numeric(10, 2), nullable=True)
    issues            = db.Column(db.Text, nullable=True)

    approver_id      = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    submitted_at     = db.Column(db.DateTime, nullable=True)
    approved_at      = db.Column(db.DateTime, nullable=True)
    rejected_at      = db.Column(db.DateTime, nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)

    created_at  = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at  = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        db.UniqueConstraint("site_id", "work_date", "creator_id", name="uq_daily_report_site_date_creator"),
    )

    site = db.relationship("Site")
    creator = db.relationship("User", foreign_keys=[creator_id])
    approver = db.relationship("User", foreign_keys=[approver_id])
    attendance = db.relationship("AttendanceRecord", back_populates="daily_report", lazy="select")


class ReportTransition(db.Model):
    __tablename__ = "daily_report_transitions"

    id          = db.Column(db.Integer, primary_key=True)
    report_id   = db.Column(db.Integer, db.ForeignKey("daily_reports.id", ondelete="CASCADE"), nullable=False, index=True)
    from_status = db.Column(db.String(20), nullable=False)
    to_status   = db.Column(db.String(20), nullable=False)
    actor_id    = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    comment     = db.Column(db.Text, nullable=True)
    created_at  = db.Column(db.DateTime, nullable=False, default=utcnow)

    def as_event(self) -> dict:
        return {
            "report_id": self.report_id,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "actor_id": self.actor_id,
            "timestamp": self.created_at.isoformat() if self.created_at else None,
        }
