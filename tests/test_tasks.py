from unittest.mock import MagicMock, patch

import pytest
from kombu.exceptions import OperationalError

from range_controller import crud
from range_controller.cloning import tasks


@pytest.fixture
def job(db):
    return crud.create_job(db, tasks.JOB_CREATE, {"template_name": "web", "owner": "alice"})


def _reload(db, job_id):
    db.expire_all()
    return crud.get_job(db, job_id)


def test_provision_job_records_result(services, db, job):
    out = tasks.run_provision_job(services, job.id, "web", "alice")

    assert out == {"job_id": job.id, "status": "succeeded"}
    row = _reload(db, job.id)
    assert row.status == "succeeded"
    assert row.result["pod_name"] == "1001_web_alice"
    assert row.result["outcome"] == "succeeded"


def test_partial_pod_marks_job_partial(services, cluster, db, job):
    cluster.clone_failures = {"db01"}

    tasks.run_provision_job(services, job.id, "web", "alice")

    row = _reload(db, job.id)
    assert row.status == "partial"
    assert row.result["errors"]


def test_pod_error_marks_job_failed(services, db, job):
    tasks.run_provision_job(services, job.id, "missing", "alice")

    row = _reload(db, job.id)
    assert row.status == "failed"
    assert row.result["kind"] == "not_found"


def test_redelivered_job_is_not_run_twice(services, cluster, db, job):
    crud.update_job_status(db, job.id, "running")

    out = tasks.run_provision_job(services, job.id, "web", "alice")

    assert out["status"] == "skipped"
    assert cluster.calls == []


def test_unexpected_error_is_recorded(services, db, job):
    services.manager.provision_pod = MagicMock(side_effect=KeyError("boom"))

    tasks.run_provision_job(services, job.id, "web", "alice")

    row = _reload(db, job.id)
    assert row.status == "failed"
    assert row.result["kind"] == "internal"
    assert "traceback" in row.result


def test_bulk_job_collects_hard_errors(services, cluster, db):
    job = crud.create_job(db, tasks.JOB_BULK_CREATE, {"template": "web", "names": ["u1", "u2"]})
    cluster.clone_failures = {"db01", "web01", "1-1NAT-pfsense"}

    tasks.run_bulk_job(services, job.id, "web", ["u1", "u2"])

    row = _reload(db, job.id)
    assert row.status == "failed"
    assert row.result["kind"] == "partial_failure"
    assert len(row.result["errors"]) == 2


def test_delete_job(services, cluster, db):
    cluster.add_pool("1004_web_alice")
    job = crud.create_job(db, tasks.JOB_DELETE, {"pod_id": "1004_web_alice", "requester": "alice"})

    tasks.run_delete_job(services, job.id, "1004_web_alice", "alice", False)

    assert _reload(db, job.id).status == "succeeded"
    assert "1004_web_alice" not in cluster.pools


def test_dispatch_sends_to_celery(services, job):
    services.settings = services.settings.model_copy(update={"job_runner": "celery"})
    task = MagicMock()
    background = MagicMock()

    with patch.dict(tasks.JOBS, {tasks.JOB_CREATE: (task, tasks.run_provision_job)}):
        runner = tasks.dispatch(services, background, tasks.JOB_CREATE, job.id, "web", "alice")

    assert runner == "celery"
    task.apply_async.assert_called_once_with(args=[job.id, "web", "alice"])
    background.add_task.assert_not_called()


def test_dispatch_falls_back_when_broker_is_down(services, job):
    services.settings = services.settings.model_copy(update={"job_runner": "celery"})
    task = MagicMock()
    task.apply_async.side_effect = OperationalError("connection refused")
    background = MagicMock()

    with patch.dict(tasks.JOBS, {tasks.JOB_CREATE: (task, tasks.run_provision_job)}):
        runner = tasks.dispatch(services, background, tasks.JOB_CREATE, job.id, "web", "alice")

    assert runner == "inline"
    background.add_task.assert_called_once_with(tasks.run_provision_job, services, job.id, "web", "alice")
