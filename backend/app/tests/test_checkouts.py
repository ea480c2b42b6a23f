from datetime import date, timedelta

from app import models
from .conftest import client, create_equipment, create_user, equipment_status


def _payload(equipment_id, user_id, *, start=None, days=7, purpose="Formation réseau"):
    start = start or date.today()
    return {
        "equipment_id": equipment_id,
        "user_id": user_id,
        "checkout_date": start.isoformat(),
        "expected_return_date": (start + timedelta(days=days)).isoformat(),
        "purpose": purpose,
    }


def test_manager_creates_checkout_and_reserves_equipment(client):
    headers, manager_id = create_user(models.Role.MANAGER)
    _, trainer_id = create_user(models.Role.TRAINER)
    eq_id = create_equipment()

    resp = client.post("/api/checkouts", json=_payload(eq_id, trainer_id), headers=headers)
    assert resp.status_code == 201
    data = resp.json()
    assert data["status"] == "En cours"
    assert data["checked_out_by"] == manager_id
    assert data["user"]["id"] == trainer_id
    assert data["equipment"]["status"] == "Réservé"
    assert data["actual_return_date"] is None
    assert equipment_status(eq_id) is models.EquipmentStatus.RESERVED


def test_second_checkout_of_reserved_equipment_is_rejected(client):
    headers, _ = create_user(models.Role.ADMINISTRATOR)
    _, trainer_id = create_user()
    eq_id = create_equipment()

    first = client.post("/api/checkouts", json=_payload(eq_id, trainer_id), headers=headers)
    assert first.status_code == 201
    second = client.post("/api/checkouts", json=_payload(eq_id, trainer_id), headers=headers)
    assert second.status_code == 422
    assert second.json()["detail"] == "Cet équipement n'est pas disponible pour le prêt."


def test_broken_equipment_cannot_be_checked_out(client):
    headers, _ = create_user(models.Role.MANAGER)
    _, trainer_id = create_user()
    eq_id = create_equipment(models.EquipmentStatus.BROKEN)

    resp = client.post("/api/checkouts", json=_payload(eq_id, trainer_id), headers=headers)
    assert resp.status_code == 422
    assert equipment_status(eq_id) is models.EquipmentStatus.BROKEN


def test_trainer_cannot_create_checkout(client):
    headers, trainer_id = create_user(models.Role.TRAINER)
    eq_id = create_equipment()

    resp = client.post("/api/checkouts", json=_payload(eq_id, trainer_id), headers=headers)
    assert resp.status_code == 403
    assert equipment_status(eq_id) is models.EquipmentStatus.FUNCTIONAL


def test_create_rejects_return_date_before_checkout_date(client):
    headers, _ = create_user(models.Role.MANAGER)
    _, trainer_id = create_user()
    eq_id = create_equipment()

    resp = client.post(
        "/api/checkouts", json=_payload(eq_id, trainer_id, days=0), headers=headers
    )
    assert resp.status_code == 422
    assert "expected_return_date" in resp.json()["detail"]["errors"]
    assert equipment_status(eq_id) is models.EquipmentStatus.FUNCTIONAL


def test_create_reports_unknown_borrower(client):
    headers, _ = create_user(models.Role.MANAGER)
    eq_id = create_equipment()

    resp = client.post(
        "/api/checkouts",
        json=_payload(eq_id, "00000000-0000-0000-0000-000000000000"),
        headers=headers,
    )
    assert resp.status_code == 422
    assert "user_id" in resp.json()["detail"]["errors"]


def test_unauthenticated_requests_are_rejected(client):
    assert client.get("/api/checkouts").status_code == 401
    assert client.get("/api/checkouts/stats").status_code == 401


def test_trainer_only_lists_own_checkouts(client):
    staff, _ = create_user(models.Role.MANAGER)
    trainer_headers, trainer_id = create_user()
    _, other_id = create_user()

    mine = client.post(
        "/api/checkouts", json=_payload(create_equipment(), trainer_id), headers=staff
    ).json()
    client.post("/api/checkouts", json=_payload(create_equipment(), other_id), headers=staff)

    resp = client.get(
        "/api/checkouts", params={"user_id": other_id}, headers=trainer_headers
    )
    assert resp.status_code == 200
    page = resp.json()
    assert page["total"] == 1
    assert [c["id"] for c in page["data"]] == [mine["id"]]


def test_list_filters_search_and_pagination(client):
    staff, _ = create_user(models.Role.ADMINISTRATOR)
    _, trainer_id = create_user(name="Awa Diallo")
    eq_id = create_equipment(name="Caméra 4K studio")
    today = date.today()

    created = client.post(
        "/api/checkouts",
        json=_payload(eq_id, trainer_id, start=today - timedelta(days=1)),
        headers=staff,
    ).json()
    for offset in range(3):
        client.post(
            "/api/checkouts",
            json=_payload(create_equipment(), trainer_id, start=today - timedelta(days=offset + 2)),
            headers=staff,
        )

    by_equipment = client.get(
        "/api/checkouts", params={"equipment_id": eq_id}, headers=staff
    ).json()
    assert by_equipment["total"] == 1
    assert by_equipment["data"][0]["id"] == created["id"]

    by_search = client.get(
        "/api/checkouts", params={"search": "Caméra 4K"}, headers=staff
    ).json()
    assert created["id"] in [c["id"] for c in by_search["data"]]

    paged = client.get(
        "/api/checkouts",
        params={"user_id": trainer_id, "per_page": 3, "page": 1},
        headers=staff,
    ).json()
    assert paged["total"] == 4
    assert paged["last_page"] == 2
    assert paged["per_page"] == 3
    assert len(paged["data"]) == 3
    assert paged["data"][0]["id"] == created["id"]
    dates = [c["checkout_date"] for c in paged["data"]]
    assert dates == sorted(dates, reverse=True)

    oversized = client.get(
        "/api/checkouts",
        params={"user_id": trainer_id, "per_page": 500},
        headers=staff,
    )
    assert oversized.status_code == 200
    assert oversized.json()["per_page"] == 100
    assert oversized.json()["last_page"] == 1

    filtered = client.get(
        "/api/checkouts",
        params={"user_id": trainer_id, "status": "Retourné"},
        headers=staff,
    ).json()
    assert filtered["total"] == 0


def test_show_checkout_scoping(client):
    staff, _ = create_user(models.Role.MANAGER)
    owner_headers, owner_id = create_user()
    stranger_headers, _ = create_user()
    checkout = client.post(
        "/api/checkouts", json=_payload(create_equipment(), owner_id), headers=staff
    ).json()

    assert client.get(f"/api/checkouts/{checkout['id']}", headers=owner_headers).status_code == 200
    assert client.get(f"/api/checkouts/{checkout['id']}", headers=stranger_headers).status_code == 403
    assert client.get(f"/api/checkouts/{checkout['id']}", headers=staff).status_code == 200
    missing = client.get(
        "/api/checkouts/00000000-0000-0000-0000-000000000000", headers=staff
    )
    assert missing.status_code == 404


def test_return_flow_releases_equipment(client):
    staff, staff_id = create_user(models.Role.MANAGER)
    _, trainer_id = create_user()
    eq_id = create_equipment()
    checkout = client.post(
        "/api/checkouts", json=_payload(eq_id, trainer_id), headers=staff
    ).json()

    resp = client.put(
        f"/api/checkouts/{checkout['id']}",
        json={"status": "Retourné", "notes": "RAS"},
        headers=staff,
    )
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "Retourné"
    assert data["actual_return_date"] == date.today().isoformat()
    assert data["checked_in_by"] == staff_id
    assert data["notes"] == "RAS"
    assert equipment_status(eq_id) is models.EquipmentStatus.FUNCTIONAL

    reopen = client.put(
        f"/api/checkouts/{checkout['id']}", json={"status": "En cours"}, headers=staff
    )
    assert reopen.status_code == 422
    assert equipment_status(eq_id) is models.EquipmentStatus.FUNCTIONAL


def test_return_of_future_dated_checkout_needs_valid_date(client):
    staff, _ = create_user(models.Role.MANAGER)
    _, trainer_id = create_user()
    eq_id = create_equipment()
    start = date.today() + timedelta(days=10)
    checkout = client.post(
        "/api/checkouts", json=_payload(eq_id, trainer_id, start=start), headers=staff
    ).json()

    resp = client.put(
        f"/api/checkouts/{checkout['id']}", json={"status": "Retourné"}, headers=staff
    )
    assert resp.status_code == 422
    assert "actual_return_date" in resp.json()["detail"]["errors"]
    assert equipment_status(eq_id) is models.EquipmentStatus.RESERVED

    ok = client.put(
        f"/api/checkouts/{checkout['id']}",
        json={"status": "Retourné", "actual_return_date": start.isoformat()},
        headers=staff,
    )
    assert ok.status_code == 200
    assert ok.json()["actual_return_date"] == start.isoformat()


def test_trainer_cannot_update_or_delete(client):
    staff, _ = create_user(models.Role.MANAGER)
    trainer_headers, trainer_id = create_user()
    checkout = client.post(
        "/api/checkouts", json=_payload(create_equipment(), trainer_id), headers=staff
    ).json()

    upd = client.put(
        f"/api/checkouts/{checkout['id']}", json={"status": "Retourné"}, headers=trainer_headers
    )
    assert upd.status_code == 403
    assert client.delete(f"/api/checkouts/{checkout['id']}", headers=trainer_headers).status_code == 403


def test_update_rejects_null_for_required_field(client):
    staff, _ = create_user(models.Role.MANAGER)
    _, trainer_id = create_user()
    checkout = client.post(
        "/api/checkouts", json=_payload(create_equipment(), trainer_id), headers=staff
    ).json()

    resp = client.put(
        f"/api/checkouts/{checkout['id']}", json={"expected_return_date": None}, headers=staff
    )
    assert resp.status_code == 422
    assert "expected_return_date" in resp.json()["detail"]["errors"]


def test_delete_open_checkout_frees_equipment(client):
    staff, _ = create_user(models.Role.ADMINISTRATOR)
    _, trainer_id = create_user()
    eq_id = create_equipment()
    checkout = client.post(
        "/api/checkouts", json=_payload(eq_id, trainer_id), headers=staff
    ).json()

    resp = client.delete(f"/api/checkouts/{checkout['id']}", headers=staff)
    assert resp.status_code == 204
    assert equipment_status(eq_id) is models.EquipmentStatus.FUNCTIONAL
    assert client.get(f"/api/checkouts/{checkout['id']}", headers=staff).status_code == 404
    assert client.delete(f"/api/checkouts/{checkout['id']}", headers=staff).status_code == 404


def test_statuses_lists_wire_values(client):
    headers, _ = create_user()
    resp = client.get("/api/checkouts/statuses", headers=headers)
    assert resp.status_code == 200
    assert resp.json() == ["En cours", "Retourné", "En retard"]


def test_stats_for_trainer_are_scoped(client):
    staff, _ = create_user(models.Role.MANAGER)
    trainer_headers, trainer_id = create_user()
    today = date.today()

    # due tomorrow: active and upcoming
    client.post(
        "/api/checkouts",
        json=_payload(create_equipment(), trainer_id, start=today - timedelta(days=2), days=3),
        headers=staff,
    )
    # due in two weeks: active only
    client.post(
        "/api/checkouts", json=_payload(create_equipment(), trainer_id, days=14), headers=staff
    )
    returned = client.post(
        "/api/checkouts", json=_payload(create_equipment(), trainer_id), headers=staff
    ).json()
    client.put(f"/api/checkouts/{returned['id']}", json={"status": "Retourné"}, headers=staff)

    resp = client.get("/api/checkouts/stats", headers=trainer_headers)
    assert resp.status_code == 200
    assert resp.json() == {"active": 2, "late": 0, "returnedToday": 1, "upcoming": 1}


def test_update_overdue_marks_past_due_checkouts(client):
    staff, _ = create_user(models.Role.MANAGER)
    trainer_headers, trainer_id = create_user()
    today = date.today()
    eq_id = create_equipment()
    late = client.post(
        "/api/checkouts",
        json=_payload(eq_id, trainer_id, start=today - timedelta(days=10), days=5),
        headers=staff,
    ).json()

    assert client.post("/api/checkouts/update-overdue", headers=trainer_headers).status_code == 403

    resp = client.post("/api/checkouts/update-overdue", headers=staff)
    assert resp.status_code == 200
    body = resp.json()
    assert body["updated_count"] >= 1
    assert body["message"] == f"{body['updated_count']} checkout(s) marked as overdue"

    shown = client.get(f"/api/checkouts/{late['id']}", headers=staff).json()
    assert shown["status"] == "En retard"
    assert equipment_status(eq_id) is models.EquipmentStatus.RESERVED

    again = client.post("/api/checkouts/update-overdue", headers=staff).json()
    assert again["updated_count"] == 0

    stats = client.get("/api/checkouts/stats", headers=trainer_headers).json()
    assert stats["late"] == 1
