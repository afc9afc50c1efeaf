# range_controller/models.py
import uuid

from sqlalchemy import JSON, Boolean, Column, DateTime, Integer, String, Text, func

from range_controller.db import Base


class Template(Base):
    __tablename__ = "templates"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), unique=True, nullable=False, index=True)
    description = Column(Text, nullable=False, default="")
    image_path = Column(String(255), nullable=True)
    authors = Column(String(255), nullable=True)
    visible = Column(Boolean, nullable=False, default=False)
    vm_count = Column(Integer, nullable=False, default=0)
    deployments = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class Job(Base):
    __tablename__ = "jobs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    type = Column(String, nullable=False)
    payload = Column(JSON, nullable=True)
    status = Column(String, nullable=False, default="pending")
    result = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
