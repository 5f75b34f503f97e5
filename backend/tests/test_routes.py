from app.core.security import create_access_token


def test_requires_token(client, curriculum):
    m = curriculum.module(1)
    r = client.post(f"/modules/{m.id}/start")
    assert r.status_code == 401
    body = r.json()
    assert body["ok"] is False
    assert body["error_code"] == "unauthorized"


def test_rejects_non_numeric_subject(client, curriculum):
    m = curriculum.module(1)
    token = create_access_token(user_id="not-a-number")
    r = client.post(f"/modules/{m.id}/start", headers={"Authorization": f"Bearer {token}"})
    assert r.status_code == 401


def test_module_lifecycle_over_http(client, curriculum, auth_headers):
    m1 = curriculum.module(1)
    s1 = curriculum.submodule(m1, 1)
    s2 = curriculum.submodule(m1, 2)
    m2 = curriculum.module(2)
    h = auth_headers(user_id=11)

    r = client.get("/modules", headers=h)
    assert r.status_code == 200
    items = r.json()["items"]
    assert [(i["module"]["id"], i["accessible"], i["progress"]["status"]) for i in items] == [
        (m1.id, True, "NOT_STARTED"),
        (m2.id, False, "NOT_STARTED"),
    ]

    r = client.post(f"/submodules/{s1.id}/start", headers=h)
    assert r.status_code == 200
    assert r.json()["progress"]["status"] == "IN_PROGRESS"

    r = client.put(f"/submodules/{s1.id}/progress", headers=h, json={"response_data": {"step": 3}})
    assert r.status_code == 200
    assert r.json()["progress"]["response_data"] == {"step": 3}

    r = client.post(f"/submodules/{s1.id}/complete", headers=h)
    assert r.status_code == 200
    body = r.json()
    assert body["ok"] is True
    assert body["progress"]["status"] == "COMPLETED"
    assert body["module_completed"] is False

    r = client.post(f"/submodules/{s2.id}/start", headers=h)
    assert r.status_code == 200
    r = client.post(f"/submodules/{s2.id}/complete", headers=h, json={"response_data": {"quiz": 100}})
    assert r.status_code == 200
    assert r.json()["module_completed"] is True

    r = client.get(f"/modules/{m2.id}/access", headers=h)
    assert r.json() == {"accessible": True, "reason": None, "next_activity_id": None}

    r = client.get("/modules/stats", headers=h)
    assert r.json() == {"total": 2, "completed": 1, "completion_percentage": 50, "current_module_id": m2.id}


def test_access_denied_envelope(client, curriculum, auth_headers):
    m1 = curriculum.module(1)
    m2 = curriculum.module(2)

    r = client.post(f"/modules/{m2.id}/start", headers=auth_headers())
    assert r.status_code == 403
    body = r.json()
    assert body["ok"] is False
    assert body["error_code"] == "access_denied"
    assert body["next_activity_id"] == m1.id
    assert body["request_id"] == r.headers["X-Request-ID"]


def test_error_codes(client, curriculum, auth_headers):
    m = curriculum.module(1)
    s = curriculum.submodule(m, 1)
    h = auth_headers()

    r = client.post("/modules/99999/start", headers=h)
    assert r.status_code == 404
    assert r.json()["error_code"] == "not_found"

    r = client.post(f"/submodules/{s.id}/complete", headers=h)
    assert r.status_code == 409
    assert r.json()["error_code"] == "not_started"

    r = client.post(f"/modules/{m.id}/start", headers=h)
    assert r.status_code == 200
    r = client.post(f"/modules/{m.id}/complete", headers=h)
    assert r.status_code == 409
    assert r.json()["error_code"] == "incomplete_prerequisites"

    client.post(f"/submodules/{s.id}/start", headers=h)
    client.post(f"/submodules/{s.id}/complete", headers=h)
    r = client.post(f"/submodules/{s.id}/complete", headers=h)
    assert r.status_code == 409
    assert r.json()["error_code"] == "already_completed"


def test_submodule_overview_and_unlock_evaluation(client, curriculum, auth_headers):
    m = curriculum.module(1)
    s1 = curriculum.submodule(m, 1, branch_name="core")
    t = curriculum.submodule(m, 1, branch_name="bonus")
    curriculum.rule(
        condition_type="any_complete",
        condition_config={"submodule_ids": [s1.id]},
        source_module=m,
        source_submodule=s1,
        target_submodule=t,
    )
    h = auth_headers(user_id=5)

    r = client.get(f"/modules/{m.id}/submodules", headers=h)
    assert r.status_code == 200
    access = {i["submodule"]["id"]: i["accessible"] for i in r.json()["items"]}
    assert access == {s1.id: True, t.id: False}

    r = client.post(f"/submodules/{s1.id}/unlocks/evaluate", headers=h)
    assert r.status_code == 409
    assert r.json()["error_code"] == "not_started"

    client.post(f"/submodules/{s1.id}/start", headers=h)
    r = client.post(f"/submodules/{s1.id}/complete", headers=h)
    assert r.json()["unlocked_submodule_ids"] == [t.id]

    r = client.get(f"/submodules/{t.id}/access", headers=h)
    assert r.json()["accessible"] is True

    r = client.get(f"/modules/{m.id}/submodules/stats", headers=h)
    assert r.json()["completed"] == 1


def test_path_routes(client, curriculum, auth_headers):
    p = curriculum.path("foundations", is_common=True)
    h = auth_headers()

    assert client.get(f"/paths/{p.id}/access", headers=h).json()["accessible"] is True
    assert client.post(f"/paths/{p.id}/start", headers=h).status_code == 200
    r = client.post(f"/paths/{p.id}/complete", headers=h)
    assert r.status_code == 200
    assert r.json()["progress"]["status"] == "COMPLETED"


def test_path_overview_and_unlock_routes(client, curriculum, auth_headers):
    common = curriculum.path("foundations", is_common=True)
    extra = curriculum.path("extra")
    curriculum.rule(condition_type="always", source_path=common, target_path=extra)
    h = auth_headers()

    items = client.get("/paths", headers=h).json()["items"]
    assert [(i["path"]["id"], i["accessible"]) for i in items] == [(common.id, True), (extra.id, False)]

    r = client.post(f"/paths/{common.id}/unlocks/evaluate", headers=h)
    assert r.status_code == 409
    assert r.json()["error_code"] == "not_started"
    assert client.post(f"/paths/{extra.id}/start", headers=h).status_code == 403

    client.post(f"/paths/{common.id}/start", headers=h)
    client.post(f"/paths/{common.id}/complete", headers=h)
    r = client.post(f"/paths/{common.id}/unlocks/evaluate", headers=h)
    assert r.status_code == 200
    assert r.json()["unlocked_path_ids"] == [extra.id]

    items = client.get("/paths", headers=h).json()["items"]
    assert items[1]["accessible"] is True
    assert items[1]["progress"]["status"] == "NOT_STARTED"

    assert client.post(f"/paths/{extra.id}/start", headers=h).status_code == 200


def test_locked_module_unlock_evaluation_is_rejected(client, curriculum, auth_headers):
    curriculum.module(1)
    locked = curriculum.module(2)
    private = curriculum.path("private")
    curriculum.rule(condition_type="always", source_module=locked, target_path=private)
    h = auth_headers(user_id=8)

    r = client.post(f"/modules/{locked.id}/unlocks/evaluate", headers=h)
    assert r.status_code == 409
    assert r.json()["error_code"] == "not_started"
    assert client.get(f"/paths/{private.id}/access", headers=h).json()["accessible"] is False


def test_path_children_and_modules_routes(client, curriculum, auth_headers):
    m1 = curriculum.module(1, requires_all_submodules=False)
    m2 = curriculum.module(2, requires_all_submodules=False)
    parent = curriculum.path("foundations", is_common=True, modules=[m1, m2])
    child = curriculum.path("backend", parent_path_id=parent.id)
    h = auth_headers()

    r = client.get(f"/paths/{parent.id}/children", headers=h)
    assert r.status_code == 200
    items = r.json()["items"]
    assert [(i["path"]["id"], i["path"]["parent_path_id"], i["accessible"]) for i in items] == [
        (child.id, parent.id, False)
    ]

    r = client.get(f"/paths/{parent.id}/modules", headers=h)
    assert r.status_code == 200
    body = r.json()
    assert body["path_id"] == parent.id
    assert [(i["module"]["id"], i["accessible"], i["is_required"]) for i in body["items"]] == [
        (m1.id, True, True),
        (m2.id, False, True),
    ]
    assert body["items"][0]["progress"]["status"] == "NOT_STARTED"

    assert client.get("/paths/99999/children", headers=h).status_code == 404
