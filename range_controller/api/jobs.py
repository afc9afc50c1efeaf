# range_controller/api/jobs.py
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from range_controller import crud, schemas
from range_controller.auth import get_identity
from range_controller.db import get_db

router = APIRouter(prefix="/jobs", tags=["jobs"])

OWNER_KEYS = ("owner", "requester")


@router.get("/{job_id}")
def get_job_status(job_id: str, db: Session = Depends(get_db), identity: schemas.Identity = Depends(get_identity)):
    job = crud.get_job(db, job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")
    payload = job.payload or {}
    if not identity.is_admin and identity.username not in (payload.get(k) for k in OWNER_KEYS):
        raise HTTPException(status_code=404, detail="Job not found")
    return {
        "id": job.id,
        "type": job.type,
        "status": job.status,
        "payload": payload,
        "result": job.result,
        "created_at": job.created_at,
        "updated_at": job.updated_at,
    }
