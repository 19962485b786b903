from sitelog_api.common.timeutil import utcnow
from sitelog_api.extensions import db

# Organization-wide ceiling; site-local roles live on SiteAssignment.
GLOBAL_ROLES = ("worker", "site_manager", "customer_manager", "admin", "system_admin")
ADMIN_ROLES = ("admin", "system_admin")

class User(db.Model):
    __tablename__ = "users"

    id              = db.Column(db.Integer, primary_key=True)
    email           = db.Column(db.String(255), unique=True, index=True, nullable=False)
    full_name       = db.Column(db.String(255), nullable=False)
    global_role     = db.Column(db.String(30), nullable=False, default="worker")
    organization_id = db.Column(db.Integer, db.ForeignKey("organizations.id", ondelete="SET NULL"), nullable=True, index=True)
    status          = db.Column(db.String(20), default="active")
    created_at      = db.Column(db.DateTime, default=utcnow)

    organization = db.relationship("Organization")

    @property
    def is_admin(self) -> bool:
        return self.global_role in ADMIN_ROLES

    def __repr__(self) -> str:
        return f"<User id={self.id} email={self.email!r} role={self.global_role!r}>"
