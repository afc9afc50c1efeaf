# range_controller/schemas.py
from typing import List, Optional

from pydantic import BaseModel, Field


class Identity(BaseModel):
    username: str
    is_admin: bool = False


class PodCreate(BaseModel):
    template_name: str = Field(..., min_length=1, max_length=100)


class PodBulkCreate(BaseModel):
    template: str = Field(..., min_length=1, max_length=100)
    names: List[str]


class PodDelete(BaseModel):
    pod_id: str = Field(..., min_length=1)


class TemplateIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100, pattern=r"^[A-Za-z0-9]+$")
    description: str = Field(..., min_length=1, max_length=5000)
    image_path: Optional[str] = Field(None, max_length=255)
    authors: Optional[str] = Field(None, max_length=255)
    visible: bool = False
    vm_count: int = Field(0, ge=0, le=100)


class TemplateUpdate(BaseModel):
    description: Optional[str] = Field(None, min_length=1, max_length=5000)
    image_path: Optional[str] = Field(None, max_length=255)
    authors: Optional[str] = Field(None, max_length=255)
    visible: Optional[bool] = None
    vm_count: Optional[int] = Field(None, ge=0, le=100)


class TemplateOut(BaseModel):
    model_config = {"from_attributes": True}

    name: str
    description: str
    image_path: Optional[str] = None
    authors: Optional[str] = None
    visible: bool
    vm_count: int
    deployments: int
