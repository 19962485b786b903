import os
from datetime import date

import pytest
from flask_jwt_extended import create_access_token

from sitelog_api import create_app
from sitelog_api.extensions import db, notifier
from sitelog_api.models.master import Organization, Site
from sitelog_api.models.site_assignment import SiteAssignment
from sitelog_api.models.user import User

D0 = date(2024, 1, 1)


class RecordingDispatcher:
    def __init__(self):
        self.events = []

    def dispatch(self, event):
        self.events.append(event)


class FailingDispatcher:
    def __init__(self):
        self.calls = 0

    def dispatch(self, event):
        self.calls += 1
        raise RuntimeError("transport down")


@pytest.fixture(scope="function")
def app():
    os.environ["DATABASE_URL"] = "sqlite:///:memory:"
    app = create_app()
    app.config["TESTING"] = True
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope="function")
def session(app):
    with app.app_context():
        yield db.session


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def events(app):
    rec = RecordingDispatcher()
    notifier.dispatcher = rec
    return rec.events


@pytest.fixture
def world(session):
    """
    One organization with two sites, and one user per role:

      manager   site_manager on s1
      customer  customer_manager on s1
      w1        worker on s1 and s2
      w2        worker on s2
      outsider  worker with no assignment
      admin     admin of org
      sysadmin  system_admin (no organization)
    """
    org = Organization(code="ORG", name="Org")
    other = Organization(code="OTHER", name="Other Org")
    session.add_all([org, other])
    session.commit()

    s1 = Site(organization_id=org.id, code="S1", name="Site One", status="active")
    s2 = Site(organization_id=org.id, code="S2", name="Site Two", status="active")
    s3 = Site(organization_id=other.id, code="S3", name="Other Site", status="active")
    session.add_all([s1, s2, s3])
    session.commit()

    def mk(email, role, org_id=org.id):
        u = User(email=email, full_name=email.split("@")[0], global_role=role,
                 organization_id=org_id, status="active")
        session.add(u)
        return u

    users = {
        "manager": mk("manager@t.local", "site_manager"),
        "customer": mk("customer@t.local", "customer_manager"),
        "w1": mk("w1@t.local", "worker"),
        "w2": mk("w2@t.local", "worker"),
        "outsider": mk("outsider@t.local", "worker"),
        "admin": mk("admin@t.local", "admin"),
        "sysadmin": mk("sys@t.local", "system_admin", org_id=None),
    }
    session.commit()

    place(session, users["manager"], s1, "site_manager")
    place(session, users["customer"], s1, "customer_manager")
    place(session, users["w1"], s1, "worker")
    place(session, users["w1"], s2, "worker")
    place(session, users["w2"], s2, "worker")

    out = dict(users)
    out.update({"org": org, "other_org": other, "s1": s1, "s2": s2, "s3": s3})
    return out


def place(session, user, site, local_role, start=D0, end=None):
    """Insert an assignment row directly, bypassing the registry."""
    a = SiteAssignment(user_id=user.id, site_id=site.id, local_role=local_role,
                       start_date=start, end_date=end)
    session.add(a)
    session.commit()
    return a


def auth(user):
    return {"Authorization": f"Bearer {create_access_token(identity=str(user.id))}"}
