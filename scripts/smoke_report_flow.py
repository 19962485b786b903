"""
Walk one daily report through draft → submitted → approved against a running
server seeded with `flask seed-demo`.

    BASE_URL=http://localhost:5001/api/v1 python scripts/smoke_report_flow.py

Tokens are minted locally with the server's JWT_SECRET_KEY; credential
issuance is not part of this API.
"""
import os
import sys
from datetime import date, datetime

import requests
from flask_jwt_extended import create_access_token

from sitelog_api import create_app
from sitelog_api.models.master import Site
from sitelog_api.models.user import User

BASE_URL = os.getenv("BASE_URL", "http://localhost:5001/api/v1")


def _tokens():
    app = create_app()
    with app.app_context():
        worker = User.query.filter_by(email="worker1@demo.local").first()
        manager = User.query.filter_by(email="manager@demo.local").first()
        site = Site.query.filter_by(code="SITE-A").first()
        if not (worker and manager and site):
            print("Demo data missing. Run: flask seed-demo")
            sys.exit(1)
        return (
            create_access_token(identity=str(worker.id)),
            create_access_token(identity=str(manager.id)),
            site.id,
        )


def _check(resp, label, expect=(200, 201)):
    if resp.status_code not in expect:
        print(f"{label} failed [{resp.status_code}]:", resp.text)
        sys.exit(1)
    print(f"{label}: OK")
    return resp.json()["data"]


def main():
    worker_tok, manager_tok, site_id = _tokens()
    session = requests.Session()
    w = {"Authorization": f"Bearer {worker_tok}"}
    m = {"Authorization": f"Bearer {manager_tok}"}
    today = date.today()

    att = _check(session.post(f"{BASE_URL}/attendance", headers=w, json={
        "site_id": site_id,
        "work_date": today.isoformat(),
        "check_in": datetime.combine(today, datetime.min.time()).replace(hour=8).isoformat(),
        "check_out": datetime.combine(today, datetime.min.time()).replace(hour=17).isoformat(),
    }), "record attendance")
    print("  labor hours:", att["labor_hours_label"])

    report = _check(session.post(f"{BASE_URL}/daily-reports", headers=w, json={
        "site_id": site_id,
        "work_date": today.isoformat(),
        "work_content": "Formwork, level 3",
    }), "create report")
    rid = report["id"]

    _check(session.patch(f"{BASE_URL}/daily-reports/{rid}", headers=w,
                         json={"attendance_ids": [att["id"]]}), "link attendance")
    _check(session.post(f"{BASE_URL}/daily-reports/{rid}/submit", headers=w), "submit")
    done = _check(session.post(f"{BASE_URL}/daily-reports/{rid}/approve", headers=m), "approve")
    print("  final status:", done["status"], "version:", done["version"])

    for t in _check(session.get(f"{BASE_URL}/daily-reports/{rid}/transitions", headers=w), "transitions"):
        print(f"  {t['from_status']} -> {t['to_status']} by {t['actor_id']}")


if __name__ == "__main__":
    main()
