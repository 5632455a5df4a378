import uuid


def _create_document(client, person):
    doc = client.post(
        "/documents",
        json={"title": "FRA", "document_type": "fra", "created_by": str(person.id)},
    ).json()
    client.put(
        f"/documents/{doc['id']}/modules/fire_safety", json={"payload": {"rating": 2}}
    )
    return doc


def _create_action(client, doc_id, **overrides):
    payload = {"document_id": doc_id, "title": "Service extinguishers"}
    payload.update(overrides)
    resp = client.post("/actions", json=payload)
    assert resp.status_code == 201
    return resp.json()


def _carry(client, doc_id, person):
    client.post(f"/documents/{doc_id}/issue", json={"user_id": str(person.id)})
    resp = client.post(f"/documents/{doc_id}/versions", json={"user_id": str(person.id)})
    return resp.json()["new_document_id"]


class TestActionEndpoints:
    def test_create_action(self, client, person):
        doc = _create_document(client, person)
        data = _create_action(client, doc["id"], priority="high")
        assert data["priority"] == "high"
        assert data["status"] == "open"
        assert data["source_type"] == "manual"

    def test_create_action_invalid_priority(self, client, person):
        doc = _create_document(client, person)
        resp = client.post(
            "/actions",
            json={"document_id": doc["id"], "title": "x", "priority": "urgent"},
        )
        assert resp.status_code == 422
        assert resp.json()["code"] == "validation_failed"

    def test_get_action_not_found(self, client):
        resp = client.get(f"/actions/{uuid.uuid4()}")
        assert resp.status_code == 404

    def test_list_actions(self, client, person):
        doc = _create_document(client, person)
        _create_action(client, doc["id"])
        _create_action(client, doc["id"], title="Second")
        resp = client.get("/actions", params={"document_id": doc["id"]})
        assert resp.status_code == 200
        assert resp.json()["count"] == 2

    def test_list_actions_by_status(self, client, person):
        doc = _create_document(client, person)
        _create_action(client, doc["id"], status="deferred")
        _create_action(client, doc["id"])
        resp = client.get(
            "/actions", params={"document_id": doc["id"], "status": "deferred"}
        )
        assert [a["status"] for a in resp.json()["items"]] == ["deferred"]

    def test_update_action(self, client, person):
        doc = _create_document(client, person)
        action = _create_action(client, doc["id"])
        resp = client.patch(
            f"/actions/{action['id']}", json={"owner_id": str(person.id)}
        )
        assert resp.status_code == 200
        assert resp.json()["owner_id"] == str(person.id)

    def test_delete_action(self, client, person):
        doc = _create_document(client, person)
        action = _create_action(client, doc["id"])
        assert client.delete(f"/actions/{action['id']}").status_code == 204
        assert client.get(f"/actions/{action['id']}").status_code == 404


class TestLineageEndpoints:
    def test_close_across_versions(self, client, person):
        doc = _create_document(client, person)
        action = _create_action(client, doc["id"])
        draft_id = _carry(client, doc["id"], person)
        copy = client.get("/actions", params={"document_id": draft_id}).json()["items"][0]
        assert copy["origin_action_id"] == action["id"]

        resp = client.post(
            f"/actions/{copy['id']}/close",
            json={"user_id": str(person.id), "notes": "Serviced"},
        )
        assert resp.status_code == 200
        body = resp.json()
        assert set(body["closed_action_ids"]) == {action["id"], copy["id"]}
        assert body["lineage_root_id"] == action["id"]
        original = client.get(f"/actions/{action['id']}").json()
        assert original["status"] == "closed"
        assert original["closure_note"] == "Serviced"

        again = client.post(
            f"/actions/{copy['id']}/close", json={"user_id": str(person.id)}
        ).json()
        assert again["already_closed"] is True

    def test_lineage(self, client, person):
        doc = _create_document(client, person)
        action = _create_action(client, doc["id"])
        draft_id = _carry(client, doc["id"], person)
        resp = client.get(f"/actions/{action['id']}/lineage")
        assert resp.status_code == 200
        assert {a["document_id"] for a in resp.json()} == {doc["id"], draft_id}

    def test_reopen(self, client, person):
        doc = _create_document(client, person)
        action = _create_action(client, doc["id"])
        client.post(f"/actions/{action['id']}/close", json={"user_id": str(person.id)})
        resp = client.post(
            f"/actions/{action['id']}/reopen",
            json={"user_id": str(person.id), "notes": "Not fixed"},
        )
        assert resp.status_code == 200
        assert resp.json()["status"] == "open"
        assert resp.json()["reopen_note"] == "Not fixed"

    def test_reopen_on_locked_document(self, client, person):
        doc = _create_document(client, person)
        action = _create_action(client, doc["id"])
        client.post(f"/actions/{action['id']}/close", json={"user_id": str(person.id)})
        client.post(f"/documents/{doc['id']}/issue", json={"user_id": str(person.id)})
        resp = client.post(
            f"/actions/{action['id']}/reopen", json={"user_id": str(person.id)}
        )
        assert resp.status_code == 423

    def test_suppress_and_unsuppress(self, client, person):
        doc = _create_document(client, person)
        client.post(
            "/recommendation-rules",
            json={"source_module_key": "fire_safety", "default_title": "Add detectors"},
        )
        client.post(
            f"/documents/{doc['id']}/recommendations/regenerate",
            json={"ratings": [{"module_key": "fire_safety", "rating": 2}]},
        )
        auto = client.get("/actions", params={"document_id": doc["id"]}).json()["items"][0]
        assert client.delete(f"/actions/{auto['id']}").status_code == 204

        visible = client.get("/actions", params={"document_id": doc["id"]}).json()
        assert visible["count"] == 0
        hidden = client.get(
            "/actions",
            params={"document_id": doc["id"], "include_suppressed": "true"},
        ).json()
        assert hidden["items"][0]["is_suppressed"] is True

        resp = client.post(f"/actions/{auto['id']}/unsuppress")
        assert resp.status_code == 200
        assert resp.json()["is_suppressed"] is False
