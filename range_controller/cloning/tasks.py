# range_controller/cloning/tasks.py
import logging
import traceback
from typing import Any, Callable, Dict, List, Optional, Tuple

from celery.signals import worker_process_init, worker_process_shutdown
from kombu.exceptions import OperationalError

from range_controller import crud
from range_controller.cloning.orchestrator import Outcome, PodResult
from range_controller.config import settings
from range_controller.exceptions import PartialFailureError, PodError
from range_controller.schemas import Identity
from range_controller.services import Services, build_services
from range_controller.tasks.celery_app import celery_app

log = logging.getLogger(__name__)

JOB_CREATE = "pod.create"
JOB_BULK_CREATE = "pod.bulk_create"
JOB_DELETE = "pod.delete"

_worker_services: Optional[Services] = None


@worker_process_init.connect
def _open_worker_services(**kwargs):
    global _worker_services
    _worker_services = build_services(settings)


@worker_process_shutdown.connect
def _close_worker_services(**kwargs):
    global _worker_services
    if _worker_services is not None:
        _worker_services.close()
        _worker_services = None


def worker_services() -> Services:
    # solo/threads pools never fire worker_process_init
    if _worker_services is None:
        _open_worker_services()
    return _worker_services


def job_status(result: PodResult) -> str:
    if result.outcome == Outcome.SUCCEEDED:
        return "succeeded"
    if result.outcome == Outcome.PARTIAL:
        return "partial"
    return "failed"


def bulk_message(template_name: str, results: List[PodResult]) -> str:
    return f"Pods for template {template_name} created for {len(results)} user(s)"


# --- synchronous runners used both by the Celery tasks and by the in-process fallback ---

def _record(services: Services, job_id: str, status: str, result: dict = None):
    session = services.session_factory()
    try:
        crud.update_job_status(session, job_id, status, result)
    finally:
        session.close()


def _claim(services: Services, job_id: str) -> bool:
    session = services.session_factory()
    try:
        job = crud.get_job(session, job_id)
        if not job:
            log.error("Job id %s not found", job_id)
            return False
        if job.status != "pending":
            # redelivered after a worker restart; never provision twice
            log.info("Job %s already in status %s, skipping", job_id, job.status)
            return False
        crud.update_job_status(session, job_id, "running")
        return True
    finally:
        session.close()


def _run_job(services: Services, job_id: str, work: Callable[[], Tuple[str, Dict[str, Any]]]) -> Dict[str, Any]:
    if not _claim(services, job_id):
        return {"job_id": job_id, "status": "skipped"}

    try:
        status, result = work()
    except PodError as e:
        log.warning("Job %s failed (%s): %s", job_id, e.kind, e)
        status, result = "failed", {"error": str(e), "kind": e.kind}
        if isinstance(e, PartialFailureError):
            result["errors"] = e.errors
    except Exception as e:
        log.exception("Job %s crashed: %s", job_id, e)
        status, result = "failed", {"error": str(e), "kind": "internal", "traceback": traceback.format_exc()}

    _record(services, job_id, status, result)
    log.info("Job %s finished: %s", job_id, status)
    return {"job_id": job_id, "status": status}


def run_provision_job(services: Services, job_id: str, template_name: str, owner: str):
    def work():
        result = services.manager.provision_pod(template_name, owner)
        return job_status(result), result.to_dict()
    return _run_job(services, job_id, work)


def run_bulk_job(services: Services, job_id: str, template_name: str, owners: List[str]):
    def work():
        results = services.manager.bulk_provision(template_name, owners)
        status = "partial" if any(r.outcome == Outcome.PARTIAL for r in results) else "succeeded"
        return status, {"message": bulk_message(template_name, results), "pods": [r.to_dict() for r in results]}
    return _run_job(services, job_id, work)


def run_delete_job(services: Services, job_id: str, pod_name: str, username: str, is_admin: bool):
    def work():
        identity = Identity(username=username, is_admin=is_admin)
        result = services.manager.deprovision_pod(pod_name, identity)
        return job_status(result), result.to_dict()
    return _run_job(services, job_id, work)


# --- Celery tasks ---

@celery_app.task(name="range_controller.provision_pod", bind=True, acks_late=True)
def provision_pod_task(self, job_id: str, template_name: str, owner: str):
    return run_provision_job(worker_services(), job_id, template_name, owner)


@celery_app.task(name="range_controller.bulk_provision", bind=True, acks_late=True)
def bulk_provision_task(self, job_id: str, template_name: str, owners: List[str]):
    return run_bulk_job(worker_services(), job_id, template_name, owners)


@celery_app.task(name="range_controller.deprovision_pod", bind=True, acks_late=True)
def deprovision_pod_task(self, job_id: str, pod_name: str, username: str, is_admin: bool):
    return run_delete_job(worker_services(), job_id, pod_name, username, is_admin)


JOBS = {
    JOB_CREATE: (provision_pod_task, run_provision_job),
    JOB_BULK_CREATE: (bulk_provision_task, run_bulk_job),
    JOB_DELETE: (deprovision_pod_task, run_delete_job),
}


def dispatch(services: Services, background_tasks, job_type: str, job_id: str, *args) -> str:
    """
    Hand a job to Celery. With JOB_RUNNER=inline, or when the broker is
    unreachable, run it in-process after the response is sent.
    """
    task, runner = JOBS[job_type]
    if services.settings.job_runner == "celery":
        try:
            task.apply_async(args=[job_id, *args])
            return "celery"
        except OperationalError as e:
            log.warning("Broker unavailable (%s); running job %s in-process", e, job_id)
    background_tasks.add_task(runner, services, job_id, *args)
    return "inline"
