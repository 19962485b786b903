from sitelog_api.common.timeutil import utcnow
from sitelog_api.extensions import db

ATTENDANCE_STATUSES = ("present", "absent", "leave")

class AttendanceRecord(db.Model):
    """
    One row per (user, site, work_date). A worker splitting a day across
    sites has one row per site; daily totals sum them.
    """
    __tablename__ = "attendance_records"

    id          = db.Column(db.Integer, primary_key=True)
    user_id     = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    site_id     = db.Column(db.Integer, db.ForeignKey("sites.id", ondelete="RESTRICT"), nullable=False, index=True)
    work_date   = db.Column(db.Date, nullable=False, index=True)
    check_in    = db.Column(db.DateTime, nullable=True)
    check_out   = db.Column(db.DateTime, nullable=True)
    labor_hours = db.Column(db.Numeric(4, 2), nullable=False, default=0)  # 공수, 1.0 = 8h
    status      = db.Column(db.String(20), nullable=False, default="present")  # present|absent|leave
    notes       = db.Column(db.Text, nullable=True)

    daily_report_id = db.Column(db.Integer, db.ForeignKey("daily_reports.id", ondelete="SET NULL"), nullable=True, index=True)

    created_at  = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at  = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        db.UniqueConstraint("user_id", "site_id", "work_date", name="uq_attendance_user_site_date"),
        db.Index("ix_attendance_user_date", "user_id", "work_date"),
        db.CheckConstraint("labor_hours >= 0 AND labor_hours <= 2.0", name="ck_attendance_labor_range"),
    )

    user = db.relationship("User")
    site = db.relationship("Site")
    daily_report = db.relationship("DailyReport", back_populates="attendance")
