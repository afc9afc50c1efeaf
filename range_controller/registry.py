# range_controller/registry.py
import logging

from sqlalchemy.exc import SQLAlchemyError

from range_controller import crud
from range_controller.exceptions import TransientError

logger = logging.getLogger(__name__)


class TemplateRegistry:
    """Deployment counter used by the pod lifecycle manager; opens its own session per call."""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    def add_deployment(self, name: str, count: int = 1):
        session = self.session_factory()
        try:
            if not crud.add_deployment(session, name, count):
                logger.info("template %s is not registered; deployment not counted", name)
        except SQLAlchemyError as e:
            session.rollback()
            raise TransientError(f"failed to record deployment for {name}: {e}") from e
        finally:
            session.close()
