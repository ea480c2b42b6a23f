from datetime import date

from app import models
from .conftest import client, create_equipment, create_user

MISSING_ID = "00000000-0000-0000-0000-000000000000"


def _report(client, headers, equipment_id, *, title="Écran noir", priority="Haute"):
    return client.post(
        "/api/issues",
        json={
            "title": title,
            "description": "Le vidéoprojecteur ne s'allume plus.",
            "equipment_id": equipment_id,
            "priority": priority,
        },
        headers=headers,
    )


def test_trainer_reports_issue(client):
    trainer, trainer_id = create_user()
    eq_id = create_equipment()

    resp = _report(client, trainer, eq_id)
    assert resp.status_code == 201
    data = resp.json()
    assert data["status"] == "Ouvert"
    assert data["priority"] == "Haute"
    assert data["reported_by"] == trainer_id
    assert data["assigned_to"] is None
    assert data["reported_date"] == date.today().isoformat()
    assert data["equipment"]["id"] == eq_id

    unknown = _report(client, trainer, MISSING_ID)
    assert unknown.status_code == 422
    assert "equipment_id" in unknown.json()["detail"]["errors"]


def test_trainers_only_see_their_own_reports(client):
    staff, _ = create_user(models.Role.MANAGER)
    alice, _ = create_user()
    bob, _ = create_user()
    eq_id = create_equipment()

    mine = _report(client, alice, eq_id, title="Clavier cassé").json()
    theirs = _report(client, bob, eq_id, title="Souris absente").json()

    listed = client.get("/api/issues", headers=alice).json()
    assert [i["id"] for i in listed["data"]] == [mine["id"]]
    assert listed["total"] == 1

    assert client.get(f"/api/issues/{theirs['id']}", headers=alice).status_code == 403
    assert client.get(f"/api/issues/{mine['id']}", headers=alice).status_code == 200
    assert client.get(f"/api/issues/{MISSING_ID}", headers=alice).status_code == 404

    by_equipment = client.get(
        "/api/issues", params={"equipment_id": eq_id}, headers=staff
    ).json()
    assert {i["id"] for i in by_equipment["data"]} == {mine["id"], theirs["id"]}

    searched = client.get(
        "/api/issues", params={"equipment_id": eq_id, "search": "souris"}, headers=staff
    ).json()
    assert [i["id"] for i in searched["data"]] == [theirs["id"]]


def test_reporter_edits_until_taken_in_charge(client):
    staff, staff_id = create_user(models.Role.MANAGER)
    trainer, _ = create_user()
    issue = _report(client, trainer, create_equipment()).json()

    edited = client.put(
        f"/api/issues/{issue['id']}", json={"priority": "Critique"}, headers=trainer
    )
    assert edited.status_code == 200
    assert edited.json()["priority"] == "Critique"

    own_status = client.put(
        f"/api/issues/{issue['id']}", json={"status": "Résolu"}, headers=trainer
    )
    assert own_status.status_code == 403

    assert client.post(f"/api/issues/{issue['id']}/take-charge", headers=trainer).status_code == 403
    taken = client.post(f"/api/issues/{issue['id']}/take-charge", headers=staff)
    assert taken.status_code == 200
    assert taken.json()["status"] == "En cours"
    assert taken.json()["assignee"]["id"] == staff_id

    locked = client.put(
        f"/api/issues/{issue['id']}", json={"title": "Écran noir (salle 2)"}, headers=trainer
    )
    assert locked.status_code == 403
    assert locked.json()["detail"] == "Cannot update an assigned issue"
    assert client.delete(f"/api/issues/{issue['id']}", headers=trainer).status_code == 403


def test_staff_resolves_and_reporter_is_notified(client):
    staff, _ = create_user(models.Role.ADMINISTRATOR)
    trainer, _ = create_user()
    issue = _report(client, trainer, create_equipment()).json()
    client.post(f"/api/issues/{issue['id']}/take-charge", headers=staff)

    blank = client.post(
        f"/api/issues/{issue['id']}/mark-as-resolved", json={"resolution_notes": ""}, headers=staff
    )
    assert blank.status_code == 422

    denied = client.post(
        f"/api/issues/{issue['id']}/mark-as-resolved",
        json={"resolution_notes": "Lampe remplacée"},
        headers=trainer,
    )
    assert denied.status_code == 403

    resolved = client.post(
        f"/api/issues/{issue['id']}/mark-as-resolved",
        json={"resolution_notes": "Lampe remplacée"},
        headers=staff,
    )
    assert resolved.status_code == 200
    body = resolved.json()
    assert body["status"] == "Résolu"
    assert body["resolved_date"] == date.today().isoformat()
    assert body["resolution_notes"] == "Lampe remplacée"

    again = client.post(f"/api/issues/{issue['id']}/take-charge", headers=staff)
    assert again.status_code == 409

    notes = client.get("/api/notifications/", params={"category": "Problème"}, headers=trainer).json()
    titles = {n["title"] for n in notes}
    assert titles == {"Signalement pris en charge", "Signalement résolu"}


def test_reporter_withdraws_unassigned_issue(client):
    trainer, _ = create_user()
    other, _ = create_user()
    issue = _report(client, trainer, create_equipment()).json()

    assert client.delete(f"/api/issues/{issue['id']}", headers=other).status_code == 403
    assert client.delete(f"/api/issues/{issue['id']}", headers=trainer).status_code == 204
    assert client.get(f"/api/issues/{issue['id']}", headers=trainer).status_code == 404


def test_issue_stats_and_reference_lists(client):
    staff, _ = create_user(models.Role.MANAGER)
    trainer, _ = create_user()
    eq_id = create_equipment()
    open_issue = _report(client, trainer, eq_id, title="Câble HDMI").json()
    busy = _report(client, trainer, eq_id, title="Ventilateur bruyant").json()
    done = _report(client, trainer, eq_id, title="Pilote manquant").json()
    client.post(f"/api/issues/{busy['id']}/take-charge", headers=staff)
    client.post(
        f"/api/issues/{done['id']}/mark-as-resolved",
        json={"resolution_notes": "Pilote installé"},
        headers=staff,
    )

    stats = client.get("/api/issues/stats", headers=trainer)
    assert stats.status_code == 200
    assert stats.json() == {
        "pending": 1,
        "inProgress": 1,
        "resolved": 1,
        "avgResolutionTime": "0j",
    }
    assert open_issue["status"] == "Ouvert"

    statuses = client.get("/api/issues/statuses", headers=trainer)
    assert statuses.json() == ["Ouvert", "En cours", "Résolu", "Fermé"]
    priorities = client.get("/api/issues/priorities", headers=trainer)
    assert priorities.json() == ["Basse", "Moyenne", "Haute", "Critique"]

    filtered = client.get(
        "/api/issues", params={"status": "En cours", "equipment_id": eq_id}, headers=staff
    ).json()
    assert [i["id"] for i in filtered["data"]] == [busy["id"]]
