# range_controller/api/pods.py
from fastapi import APIRouter, BackgroundTasks, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from range_controller import crud, schemas
from range_controller.auth import get_identity, require_admin
from range_controller.cloning import tasks
from range_controller.db import get_db
from range_controller.exceptions import PartialFailureError
from range_controller.services import Services, get_services

router = APIRouter(prefix="/pods", tags=["pods"])


def _accepted(job, runner: str) -> JSONResponse:
    return JSONResponse(status_code=202, content={"job_id": job.id, "status": job.status, "runner": runner})


@router.post("")
def create_pod(
    payload: schemas.PodCreate,
    background_tasks: BackgroundTasks,
    wait: bool = False,
    identity: schemas.Identity = Depends(get_identity),
    services: Services = Depends(get_services),
    db: Session = Depends(get_db),
):
    """
    Clone a template into a new pod owned by the caller.
    Returns 202 with a job id; ``?wait=true`` blocks and returns 200/206/500.
    """
    # 404 before anything is queued
    services.manager.template_vms(payload.template_name)

    if wait:
        result = services.manager.provision_pod(payload.template_name, identity.username)
        return JSONResponse(status_code=result.status_code, content=result.to_dict())

    job = crud.create_job(db, tasks.JOB_CREATE, {"template_name": payload.template_name, "owner": identity.username})
    runner = tasks.dispatch(services, background_tasks, tasks.JOB_CREATE, job.id, payload.template_name, identity.username)
    return _accepted(job, runner)


@router.post("/bulk")
def bulk_create_pods(
    payload: schemas.PodBulkCreate,
    background_tasks: BackgroundTasks,
    wait: bool = False,
    identity: schemas.Identity = Depends(require_admin),
    services: Services = Depends(get_services),
    db: Session = Depends(get_db),
):
    services.manager.template_vms(payload.template)

    if wait:
        try:
            results = services.manager.bulk_provision(payload.template, payload.names)
        except PartialFailureError as e:
            return JSONResponse(status_code=500, content={"error": str(e), "errors": e.errors})
        return {"message": tasks.bulk_message(payload.template, results)}

    job = crud.create_job(db, tasks.JOB_BULK_CREATE, {"template": payload.template, "names": payload.names})
    runner = tasks.dispatch(services, background_tasks, tasks.JOB_BULK_CREATE, job.id, payload.template, payload.names)
    return JSONResponse(
        status_code=202,
        content={"message": f"Bulk clone of {payload.template} queued", "job_id": job.id, "runner": runner},
    )


@router.post("/delete")
def delete_pod(
    payload: schemas.PodDelete,
    background_tasks: BackgroundTasks,
    wait: bool = False,
    identity: schemas.Identity = Depends(get_identity),
    services: Services = Depends(get_services),
    db: Session = Depends(get_db),
):
    # 403 before anything is queued
    services.manager.authorize_delete(payload.pod_id, identity)

    if wait:
        result = services.manager.deprovision_pod(payload.pod_id, identity)
        return JSONResponse(status_code=result.status_code, content=result.to_dict())

    job = crud.create_job(db, tasks.JOB_DELETE, {"pod_id": payload.pod_id, "requester": identity.username})
    runner = tasks.dispatch(
        services, background_tasks, tasks.JOB_DELETE, job.id, payload.pod_id, identity.username, identity.is_admin
    )
    return _accepted(job, runner)


@router.get("")
def list_all_pods(
    identity: schemas.Identity = Depends(require_admin),
    services: Services = Depends(get_services),
):
    return {"pods": [p.to_dict() for p in services.manager.list_pods()]}


@router.get("/mine")
def list_my_pods(
    identity: schemas.Identity = Depends(get_identity),
    services: Services = Depends(get_services),
):
    return {"pods": [p.to_dict() for p in services.manager.list_pods(identity.username)]}
