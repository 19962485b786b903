from sitelog_api.common.timeutil import utcnow
from sitelog_api.extensions import db

LOCAL_ROLES = ("worker", "site_manager", "customer_manager")

class SiteAssignment(db.Model):
    """
    Time-bounded grant of a local role on a site: [start_date, end_date).
    end_date NULL = current. Rows are closed, never deleted.
    """
    __tablename__ = "site_assignments"

    id          = db.Column(db.Integer, primary_key=True)
    user_id     = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    site_id     = db.Column(db.Integer, db.ForeignKey("sites.id", ondelete="RESTRICT"), nullable=False, index=True)
    local_role  = db.Column(db.String(30), nullable=False)

    start_date  = db.Column(db.Date, nullable=False, index=True)
    end_date    = db.Column(db.Date, nullable=True, index=True)  # null = open-ended, exclusive when set

    assigned_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at  = db.Column(db.DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        db.Index("ix_site_assign_range", "user_id", "site_id", "start_date", "end_date"),
        db.CheckConstraint("end_date IS NULL OR end_date >= start_date", name="ck_site_assign_range"),
        # at most one open interval per (user, site); backs concurrent assign()
        db.Index(
            "uq_site_assign_open",
            "user_id", "site_id",
            unique=True,
            sqlite_where=db.text("end_date IS NULL"),
            postgresql_where=db.text("end_date IS NULL"),
        ),
    )

    user = db.relationship("User", foreign_keys=[user_id])
    site = db.relationship("Site")


class AssignmentAudit(db.Model):
    __tablename__ = "site_assignment_audit"

    id             = db.Column(db.Integer, primary_key=True)
    actor_id       = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    user_id        = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    site_id        = db.Column(db.Integer, db.ForeignKey("sites.id", ondelete="CASCADE"), nullable=False, index=True)
    assignment_id  = db.Column(db.Integer, db.ForeignKey("site_assignments.id", ondelete="SET NULL"), nullable=True)
    action         = db.Column(db.String(20), nullable=False)  # assign|unassign
    local_role     = db.Column(db.String(30), nullable=True)
    effective_date = db.Column(db.Date, nullable=False)
    created_at     = db.Column(db.DateTime, nullable=False, default=utcnow)
