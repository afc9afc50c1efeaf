from range_controller import models

from tests.fakes import ADMIN, ALICE, BOB


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_requires_identity(client):
    assert client.get("/pods/mine").status_code == 401


def test_controller_token(client, services):
    services.settings = services.settings.model_copy(update={"controller_token": "t0k"})

    assert client.get("/pods/mine", headers=ALICE).status_code == 401
    resp = client.get("/pods/mine", headers={**ALICE, "Authorization": "Bearer t0k"})
    assert resp.status_code == 200


def test_create_pod_blocking(client):
    resp = client.post("/pods?wait=true", json={"template_name": "web"}, headers=ALICE)

    assert resp.status_code == 200
    assert resp.json() == {"success": True, "pod_name": "1001_web_alice", "outcome": "succeeded", "errors": []}


def test_create_pod_partial(client, cluster):
    cluster.clone_failures = {"web01"}

    resp = client.post("/pods?wait=true", json={"template_name": "web"}, headers=ALICE)

    assert resp.status_code == 206
    body = resp.json()
    assert body["success"] is False
    assert body["outcome"] == "partial"
    assert len(body["errors"]) == 1


def test_create_pod_as_job(client):
    resp = client.post("/pods", json={"template_name": "web"}, headers=ALICE)

    assert resp.status_code == 202
    job_id = resp.json()["job_id"]

    job = client.get(f"/jobs/{job_id}", headers=ALICE)
    assert job.status_code == 200
    assert job.json()["status"] == "succeeded"
    assert job.json()["result"]["pod_name"] == "1001_web_alice"

    # other users cannot see it
    assert client.get(f"/jobs/{job_id}", headers=BOB).status_code == 404
    assert client.get(f"/jobs/{job_id}", headers=ADMIN).status_code == 200


def test_create_pod_unknown_template(client, cluster):
    resp = client.post("/pods", json={"template_name": "nope"}, headers=ALICE)

    assert resp.status_code == 404
    assert resp.json()["kind"] == "not_found"
    assert cluster.count("POST", "/pools") == 0


def test_create_pod_config_error(client, cluster):
    del cluster.vms[100]

    resp = client.post("/pods?wait=true", json={"template_name": "web"}, headers=ALICE)

    assert resp.status_code == 500
    assert resp.json()["kind"] == "config"


def test_bulk_requires_admin(client):
    resp = client.post("/pods/bulk", json={"template": "web", "names": ["a"]}, headers=ALICE)
    assert resp.status_code == 403


def test_bulk_blocking(client, cluster):
    resp = client.post("/pods/bulk?wait=true", json={"template": "web", "names": ["a", " ", "b"]}, headers=ADMIN)

    assert resp.status_code == 200
    assert "message" in resp.json()
    pods = sorted(p for p in cluster.pools if p[:1] == "1")
    assert [p[:4] for p in pods] == ["1001", "1002"]
    assert {p[5:] for p in pods} == {"web_a", "web_b"}


def test_bulk_blocking_failure(client, cluster):
    cluster.clone_failures = {"db01", "web01", "1-1NAT-pfsense"}

    resp = client.post("/pods/bulk?wait=true", json={"template": "web", "names": ["a"]}, headers=ADMIN)

    assert resp.status_code == 500
    assert "error" in resp.json()


def test_bulk_as_job(client):
    resp = client.post("/pods/bulk", json={"template": "web", "names": ["a", "b"]}, headers=ADMIN)

    assert resp.status_code == 202
    job = client.get(f"/jobs/{resp.json()['job_id']}", headers=ADMIN).json()
    assert job["status"] == "succeeded"
    assert len(job["result"]["pods"]) == 2


def test_delete_pod_forbidden_for_other_user(client, cluster, db):
    cluster.add_pool("1001_web_alice")

    resp = client.post("/pods/delete", json={"pod_id": "1001_web_alice"}, headers=BOB)

    assert resp.status_code == 403
    assert resp.json()["kind"] == "authorization"
    assert db.query(models.Job).count() == 0
    assert "1001_web_alice" in cluster.pools


def test_delete_pod_blocking(client, cluster):
    client.post("/pods?wait=true", json={"template_name": "web"}, headers=ALICE)

    resp = client.post("/pods/delete?wait=true", json={"pod_id": "1001_web_alice"}, headers=ALICE)

    assert resp.status_code == 200
    assert resp.json()["success"] is True
    assert "1001_web_alice" not in cluster.pools


def test_delete_pod_as_job(client, cluster):
    cluster.add_pool("1001_web_alice")

    resp = client.post("/pods/delete", json={"pod_id": "1001_web_alice"}, headers=ALICE)

    assert resp.status_code == 202
    job = client.get(f"/jobs/{resp.json()['job_id']}", headers=ALICE).json()
    assert job["status"] == "succeeded"
    assert "1001_web_alice" not in cluster.pools


def test_list_pods(client):
    client.post("/pods?wait=true", json={"template_name": "web"}, headers=ALICE)
    client.post("/pods?wait=true", json={"template_name": "web"}, headers=BOB)

    assert client.get("/pods", headers=ALICE).status_code == 403
    all_pods = client.get("/pods", headers=ADMIN).json()["pods"]
    assert [p["name"] for p in all_pods] == ["1001_web_alice", "1002_web_bob"]
    mine = client.get("/pods/mine", headers=BOB).json()["pods"]
    assert [p["name"] for p in mine] == ["1002_web_bob"]
    assert len(mine[0]["vms"]) == 3


def test_resources_partial_and_total_failure(client, cluster):
    assert client.get("/resources", headers=ADMIN).status_code == 200

    cluster.failing_nodes = {"pve2"}
    resp = client.get("/resources", headers=ADMIN)
    assert resp.status_code == 206
    assert len(resp.json()["nodes"]) == 2

    cluster.failing_nodes = {"pve1", "pve2", "pve3"}
    assert client.get("/resources", headers=ADMIN).status_code == 500


def test_template_registry_routes(client, cluster):
    cluster.add_pool("kamino_template_ctf")
    body = {"name": "web", "description": "web lab", "vm_count": 2}

    assert client.post("/templates", json=body, headers=ALICE).status_code == 403
    created = client.post("/templates", json=body, headers=ADMIN)
    assert created.status_code == 201
    assert created.json()["visible"] is False
    assert client.post("/templates", json=body, headers=ADMIN).status_code == 409

    assert client.get("/templates", headers=ALICE).json() == []
    toggled = client.post("/templates/web/toggle", headers=ADMIN).json()
    assert toggled["visible"] is True
    assert [t["name"] for t in client.get("/templates", headers=ALICE).json()] == ["web"]

    edited = client.put("/templates/web", json={"description": "new"}, headers=ADMIN).json()
    assert edited["description"] == "new"
    assert edited["vm_count"] == 2

    assert client.get("/templates/unpublished", headers=ADMIN).json() == {"templates": ["ctf"]}
    assert client.put("/templates/nope", json={"description": "x"}, headers=ADMIN).status_code == 404


def test_template_delete_blocked_while_deployed(client):
    client.post("/templates", json={"name": "web", "description": "web lab"}, headers=ADMIN)
    client.post("/pods?wait=true", json={"template_name": "web"}, headers=ALICE)

    resp = client.delete("/templates/web", headers=ADMIN)
    assert resp.status_code == 409

    client.post("/pods/delete?wait=true", json={"pod_id": "1001_web_alice"}, headers=ALICE)
    assert client.delete("/templates/web", headers=ADMIN).status_code == 200
    assert client.get("/templates/all", headers=ADMIN).json() == []
