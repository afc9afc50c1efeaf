# range_controller/api/templates.py
from typing import List

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from range_controller import crud, schemas
from range_controller.auth import get_identity, require_admin
from range_controller.db import get_db
from range_controller.exceptions import ConflictError
from range_controller.services import Services, get_services

router = APIRouter(prefix="/templates", tags=["templates"])


@router.get("", response_model=List[schemas.TemplateOut])
def list_visible(db: Session = Depends(get_db), identity: schemas.Identity = Depends(get_identity)):
    return crud.list_visible_templates(db)


@router.get("/all", response_model=List[schemas.TemplateOut])
def list_all(db: Session = Depends(get_db), identity: schemas.Identity = Depends(require_admin)):
    return crud.list_templates(db)


@router.get("/unpublished")
def list_unpublished(
    db: Session = Depends(get_db),
    identity: schemas.Identity = Depends(require_admin),
    services: Services = Depends(get_services),
):
    """Template pools on the cluster that have no registry entry yet."""
    published = crud.list_all_template_names(db)
    return {"templates": services.manager.unpublished_templates(published)}


@router.post("", response_model=schemas.TemplateOut, status_code=201)
def publish_template(
    payload: schemas.TemplateIn,
    db: Session = Depends(get_db),
    identity: schemas.Identity = Depends(require_admin),
):
    if crud.get_template(db, payload.name):
        raise HTTPException(status_code=409, detail="Template already exists")
    return crud.insert_template(db, **payload.model_dump())


@router.put("/{name}", response_model=schemas.TemplateOut)
def edit_template(
    name: str,
    payload: schemas.TemplateUpdate,
    db: Session = Depends(get_db),
    identity: schemas.Identity = Depends(require_admin),
):
    template = crud.update_template(db, name, **payload.model_dump(exclude_unset=True))
    if not template:
        raise HTTPException(status_code=404, detail="Template not found")
    return template


@router.post("/{name}/toggle", response_model=schemas.TemplateOut)
def toggle_template(name: str, db: Session = Depends(get_db), identity: schemas.Identity = Depends(require_admin)):
    template = crud.toggle_template_visibility(db, name)
    if not template:
        raise HTTPException(status_code=404, detail="Template not found")
    return template


@router.delete("/{name}")
def delete_template(
    name: str,
    db: Session = Depends(get_db),
    identity: schemas.Identity = Depends(require_admin),
    services: Services = Depends(get_services),
):
    if not crud.get_template(db, name):
        raise HTTPException(status_code=404, detail="Template not found")
    if services.manager.is_deployed(name):
        raise ConflictError(f"template {name} still has deployed pods")
    crud.delete_template(db, name)
    return {"status": "ok", "deleted": name}
