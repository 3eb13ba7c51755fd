from classfinder.models import AuditLog, UserStatus
from conftest import auth_header

NEW_MANAGER = {
    "email": "Carla.Manager@dlsu.edu.ph",
    "name": "Carla Manager",
    "id_number": "M-002",
    "role": "manager",
}


def test_create_and_fetch_user(admin_client, seed, db_session):
    headers = auth_header(seed.admin)

    created = admin_client.post(
        "/admin/users", json={**NEW_MANAGER, "assigned_buildings": [seed.annex.id]}, headers=headers
    )

    assert created.status_code == 201
    body = created.json()
    assert body["email"] == "carla.manager@dlsu.edu.ph"
    assert [building["code"] for building in body["assigned_buildings"]] == ["AH"]

    fetched = admin_client.get(f"/admin/users/{body['id']}", headers=headers)
    assert fetched.json()["role"] == "manager"
    assert db_session.query(AuditLog).filter_by(action="user_created").count() == 1


def test_create_user_rules(admin_client, seed):
    headers = auth_header(seed.admin)

    outsider = admin_client.post("/admin/users", json={**NEW_MANAGER, "email": "carla@gmail.com"}, headers=headers)
    duplicate = admin_client.post("/admin/users", json={**NEW_MANAGER, "email": "juan@dlsu.edu.ph"}, headers=headers)
    unknown_building = admin_client.post(
        "/admin/users", json={**NEW_MANAGER, "assigned_buildings": [999]}, headers=headers
    )

    assert outsider.status_code == 400
    assert duplicate.status_code == 400
    assert unknown_building.status_code == 400


def test_only_admins(admin_client, seed):
    assert admin_client.get("/admin/users", headers=auth_header(seed.manager)).status_code == 403
    assert admin_client.get("/admin/users").status_code == 401


def test_list_users_with_filters(admin_client, seed):
    headers = auth_header(seed.admin)

    everyone = admin_client.get("/admin/users", params={"limit": 2}, headers=headers).json()
    managers = admin_client.get("/admin/users", params={"role": "manager"}, headers=headers).json()
    search = admin_client.get("/admin/users", params={"search": "santos"}, headers=headers).json()

    assert everyone["pagination"] == {"page": 1, "limit": 2, "total": 4, "total_pages": 2}
    assert [user["email"] for user in managers["items"]] == ["manager@dlsu.edu.ph"]
    assert [user["email"] for user in search["items"]] == ["maria@dlsu.edu.ph"]


def test_update_user_records_previous_values(admin_client, seed, db_session):
    response = admin_client.put(
        f"/admin/users/{seed.student.id}",
        json={"role": "manager", "assigned_buildings": [seed.main.id]},
        headers=auth_header(seed.admin),
    )

    assert response.status_code == 200
    assert response.json()["role"] == "manager"
    entry = db_session.query(AuditLog).filter_by(action="user_updated").one()
    assert entry.details["previous_values"]["role"] == "user"
    assert entry.details["changes"]["assigned_buildings"] == [seed.main.id]


def test_deactivate_user(admin_client, seed, db_session):
    headers = auth_header(seed.admin)

    assert admin_client.delete(f"/admin/users/{seed.admin.id}", headers=headers).status_code == 400

    response = admin_client.delete(f"/admin/users/{seed.classmate.id}", headers=headers)
    assert response.status_code == 200
    db_session.expire_all()
    assert seed.classmate.status == UserStatus.INACTIVE

    locked_out = admin_client.get("/admin/users", headers=auth_header(seed.classmate))
    assert locked_out.status_code == 403


def test_audit_log_search(admin_client, seed):
    headers = auth_header(seed.admin)
    admin_client.post("/admin/users", json=NEW_MANAGER, headers=headers)
    admin_client.delete(f"/admin/users/{seed.classmate.id}", headers=headers)

    logs = admin_client.get("/admin/audit-logs", headers=headers).json()
    deactivations = admin_client.get(
        "/admin/audit-logs", params={"action": "user_deactivated"}, headers=headers
    ).json()

    assert [entry["action"] for entry in logs["items"]] == ["user_deactivated", "user_created"]
    assert deactivations["pagination"]["total"] == 1
    assert deactivations["items"][0]["user_id"] == seed.admin.id
