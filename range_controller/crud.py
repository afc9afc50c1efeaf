# range_controller/crud.py
from typing import List, Optional

from sqlalchemy.orm import Session

from range_controller import models

# ------------------ templates ------------------

def list_visible_templates(db: Session) -> List[models.Template]:
    return (
        db.query(models.Template)
        .filter(models.Template.visible.is_(True))
        .order_by(models.Template.created_at.desc(), models.Template.id.desc())
        .all()
    )

def list_templates(db: Session) -> List[models.Template]:
    return db.query(models.Template).order_by(models.Template.name).all()

def list_all_template_names(db: Session) -> List[str]:
    return [name for (name,) in db.query(models.Template.name).order_by(models.Template.name).all()]

def get_template(db: Session, name: str) -> Optional[models.Template]:
    return db.query(models.Template).filter(models.Template.name == name).first()

def insert_template(db: Session, name: str, description: str, image_path: str = None,
                    authors: str = None, visible: bool = False, vm_count: int = 0) -> models.Template:
    template = models.Template(
        name=name,
        description=description,
        image_path=image_path,
        authors=authors,
        visible=visible,
        vm_count=vm_count,
        deployments=0,
    )
    db.add(template)
    db.commit()
    db.refresh(template)
    return template

def update_template(db: Session, name: str, **changes) -> Optional[models.Template]:
    template = get_template(db, name)
    if not template:
        return None
    for key, value in changes.items():
        if value is not None:
            setattr(template, key, value)
    db.add(template)
    db.commit()
    db.refresh(template)
    return template

def toggle_template_visibility(db: Session, name: str) -> Optional[models.Template]:
    template = get_template(db, name)
    if not template:
        return None
    template.visible = not template.visible
    db.add(template)
    db.commit()
    db.refresh(template)
    return template

def delete_template(db: Session, name: str) -> bool:
    template = get_template(db, name)
    if not template:
        return False
    db.delete(template)
    db.commit()
    return True

def add_deployment(db: Session, name: str, count: int = 1) -> bool:
    updated = (
        db.query(models.Template)
        .filter(models.Template.name == name)
        .update({models.Template.deployments: models.Template.deployments + count}, synchronize_session=False)
    )
    db.commit()
    return bool(updated)

# ------------------ jobs ------------------

def create_job(db: Session, job_type: str, payload: dict) -> models.Job:
    job = models.Job(type=job_type, payload=payload, status="pending")
    db.add(job)
    db.commit()
    db.refresh(job)
    return job

def get_job(db: Session, job_id: str) -> Optional[models.Job]:
    return db.query(models.Job).filter(models.Job.id == job_id).first()

def update_job_status(db: Session, job_id: str, status: str, result: dict = None) -> Optional[models.Job]:
    job = get_job(db, job_id)
    if not job:
        return None
    job.status = status
    if result is not None:
        job.result = result
    db.add(job)
    db.commit()
    db.refresh(job)
    return job
