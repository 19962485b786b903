from datetime import date

import pytest

from sitelog_api.common.errors import AccessDenied
from sitelog_api.extensions import db
from sitelog_api.models.daily_report import DailyReport
from sitelog_api.services.access_resolver import (
    Action,
    Capability,
    DenyReason,
    authorize,
    capabilities_for,
    report_visibility_clause,
    require,
    scope_deny_reason,
    site_capabilities,
    visible_site_ids,
)

from conftest import place

C = Capability


def _report(session, site, creator, status="draft", day=date(2024, 3, 1)):
    r = DailyReport(site_id=site.id, work_date=day, creator_id=creator.id, status=status, version=1)
    session.add(r)
    session.commit()
    return r


@pytest.mark.parametrize("who,expected", [
    ("w1", C.VIEW_OWN | C.EDIT_OWN_DRAFT),
    ("manager", C.VIEW_OWN | C.EDIT_OWN_DRAFT | C.VIEW_SITE | C.APPROVE_SITE),
    ("customer", C.VIEW_SITE),
    ("admin", C.ADMIN_ALL),
    ("sysadmin", C.ADMIN_ALL),
])
def test_role_matrix_on_assigned_site(world, who, expected):
    d = capabilities_for(world[who], world["s1"])
    assert d.allowed
    assert d.capabilities == expected


def test_unassigned_user_is_denied(world):
    d = capabilities_for(world["outsider"], world["s1"])
    assert not d
    assert d.reason is DenyReason.NOT_ASSIGNED
    # a worker assigned elsewhere gets nothing on s1 either
    assert capabilities_for(world["w2"], world["s1"]).reason is DenyReason.NOT_ASSIGNED


def test_global_role_caps_local_role(world, session):
    # worker globally, site_manager locally: the global ceiling wins
    w2, s1 = world["w2"], world["s1"]
    place(session, w2, s1, "site_manager")
    assert capabilities_for(w2, s1).capabilities == C.VIEW_OWN | C.EDIT_OWN_DRAFT

    # site_manager globally, worker locally: the local role wins
    mgr, s2 = world["manager"], world["s2"]
    place(session, mgr, s2, "worker")
    assert capabilities_for(mgr, s2).capabilities == C.VIEW_OWN | C.EDIT_OWN_DRAFT


def test_admin_outside_own_organization_cannot_manage_assignments(world):
    d = capabilities_for(world["admin"], world["s3"])
    assert d.allowed
    assert not d.capabilities & C.MANAGE_ASSIGNMENTS
    assert d.capabilities & C.APPROVE_SITE

    assert authorize(world["admin"], Action.MANAGE_ASSIGNMENTS, world["s1"]).allowed
    assert authorize(world["admin"], Action.MANAGE_ASSIGNMENTS, world["s3"]).reason is DenyReason.INSUFFICIENT_ROLE
    assert authorize(world["sysadmin"], Action.MANAGE_ASSIGNMENTS, world["s3"]).allowed


def test_assignment_window_is_respected(world, session):
    u, s1 = world["outsider"], world["s1"]
    place(session, u, s1, "worker", start=date(2024, 3, 1), end=date(2024, 4, 1))
    assert capabilities_for(u, s1, as_of=date(2024, 2, 29)).reason is DenyReason.NOT_ASSIGNED
    assert capabilities_for(u, s1, as_of=date(2024, 3, 1)).allowed
    assert capabilities_for(u, s1, as_of=date(2024, 3, 31)).allowed
    assert capabilities_for(u, s1, as_of=date(2024, 4, 1)).reason is DenyReason.NOT_ASSIGNED


def test_object_level_reasons(world, session):
    w1, manager, s1 = world["w1"], world["manager"], world["s1"]
    mine = _report(session, s1, w1)
    theirs = _report(session, s1, manager, day=date(2024, 3, 2))

    assert authorize(w1, Action.EDIT_REPORT, s1, report=mine).allowed
    assert authorize(w1, Action.EDIT_REPORT, s1, report=theirs).reason is DenyReason.NOT_OWNER
    assert authorize(w1, Action.VIEW_REPORT, s1, report=theirs).reason is DenyReason.NOT_OWNER
    assert authorize(manager, Action.VIEW_REPORT, s1, report=mine).allowed

    mine.status = "submitted"
    session.commit()
    assert authorize(w1, Action.EDIT_REPORT, s1, report=mine).reason is DenyReason.WRONG_STATE
    assert authorize(w1, Action.APPROVE_REPORT, s1, report=mine).reason is DenyReason.INSUFFICIENT_ROLE
    assert authorize(manager, Action.APPROVE_REPORT, s1, report=mine).allowed
    assert authorize(world["customer"], Action.APPROVE_REPORT, s1, report=mine).reason is DenyReason.INSUFFICIENT_ROLE


def test_ownership_is_checked_before_state(world, session):
    w1, manager, s1 = world["w1"], world["manager"], world["s1"]
    theirs = _report(session, s1, manager, status="submitted")
    assert authorize(w1, Action.EDIT_REPORT, s1, report=theirs).reason is DenyReason.NOT_OWNER


def test_revise_is_creator_only_even_for_admins(world, session):
    w1, s1 = world["w1"], world["s1"]
    r = _report(session, s1, w1, status="rejected")
    assert authorize(w1, Action.REVISE_REPORT, s1, report=r).allowed
    assert authorize(world["admin"], Action.REVISE_REPORT, s1, report=r).reason is DenyReason.NOT_OWNER


def test_attendance_actions(world):
    w1, w2, manager, customer, s1, s2 = (
        world["w1"], world["w2"], world["manager"], world["customer"], world["s1"], world["s2"]
    )
    assert authorize(w1, Action.RECORD_ATTENDANCE, s2, subject_user_id=w1.id).allowed
    assert authorize(w1, Action.RECORD_ATTENDANCE, s2, subject_user_id=w2.id).reason is DenyReason.NOT_OWNER
    assert authorize(manager, Action.RECORD_ATTENDANCE, s1, subject_user_id=w1.id).allowed
    assert authorize(customer, Action.RECORD_ATTENDANCE, s1, subject_user_id=w1.id).reason is DenyReason.INSUFFICIENT_ROLE
    assert authorize(customer, Action.VIEW_ATTENDANCE, s1, subject_user_id=w1.id).allowed
    assert authorize(customer, Action.VIEW_PAYROLL, s1, subject_user_id=w1.id).reason is DenyReason.INSUFFICIENT_ROLE


def test_require_raises_with_reason(world):
    with pytest.raises(AccessDenied) as ei:
        require(world["outsider"], Action.LIST_REPORTS, world["s1"])
    assert ei.value.reason is DenyReason.NOT_ASSIGNED
    assert ei.value.status_code == 403
    assert ei.value.payload["reason"] == "NotAssigned"


def test_site_level_sets(world):
    w1, customer = world["w1"], world["customer"]
    assert set(site_capabilities(w1)) == {world["s1"].id, world["s2"].id}
    assert visible_site_ids(w1, C.VIEW_SITE) == set()
    assert visible_site_ids(customer, C.VIEW_SITE) == {world["s1"].id}
    assert set(site_capabilities(world["admin"])) == {world["s1"].id, world["s2"].id, world["s3"].id}

    assert scope_deny_reason(world["outsider"]) is DenyReason.NOT_ASSIGNED
    assert scope_deny_reason(w1) is DenyReason.NOT_OWNER


def test_list_filter_matches_per_object_check(world, session):
    """Query-level visibility must agree with authorize(VIEW_REPORT) for every user and report."""
    creators = ["w1", "w2", "manager"]
    sites = ["s1", "s2", "s3"]
    day = date(2024, 3, 1)
    for i, who in enumerate(creators):
        for j, s in enumerate(sites):
            session.add(DailyReport(site_id=world[s].id, work_date=date(2024, 3, 1 + i * 3 + j),
                                    creator_id=world[who].id, status="draft", version=1))
    session.commit()
    reports = DailyReport.query.all()
    assert len(reports) == 9

    for who in ("w1", "w2", "manager", "customer", "outsider", "admin", "sysadmin"):
        user = world[who]
        via_query = {
            r.id for r in db.session.query(DailyReport).filter(report_visibility_clause(user, day)).all()
        }
        via_object = {
            r.id for r in reports
            if authorize(user, Action.VIEW_REPORT, r.site_id, report=r, as_of=day).allowed
        }
        assert via_query == via_object, who
