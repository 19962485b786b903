from sitelog_api.common.timeutil import utcnow

from sitelog_api.extensions import db

SITE_STATUSES = ("active", "inactive")


class Organization(db.Model):
    __tablename__ = "organizations"

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(50), unique=True, nullable=False)
    name = db.Column(db.String(255), nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)


class Site(db.Model):
    """
    A construction site. Visibility and every workflow action on a site is
    decided by the access resolver from the user's site assignments.
    """

    __tablename__ = "sites"

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(
        db.Integer,
        db.ForeignKey("organizations.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    code = db.Column(db.String(50), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    address = db.Column(db.String(500), nullable=True)
    status = db.Column(db.String(20), nullable=False, default="active")  # active|inactive
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        db.UniqueConstraint("organization_id", "code", name="uq_site_org_code"),
    )

    organization = db.relationship(
        "Organization", backref=db.backref("sites", lazy="dynamic")
    )

    @property
    def is_active(self) -> bool:
        return self.status == "active"
