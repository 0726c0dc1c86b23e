"""
Template Repository

Source of Template objects for the orchestrator. Storage is somebody
else's concern; the core only goes through this contract.
"""

import logging
import threading
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from .models import Template

logger = logging.getLogger(__name__)


class TemplateRepository(ABC):
    """Supplies templates (with regions attached) by id or category."""

    @abstractmethod
    def get(self, template_id: int) -> Optional[Template]:
        pass

    @abstractmethod
    def by_category(self, category_id: int) -> List[Template]:
        pass

    @abstractmethod
    def all(self) -> List[Template]:
        pass

    @abstractmethod
    def add(self, template: Template) -> Template:
        pass

    def increment_usage(self, template_id: int) -> None:
        """Record a successful match. Default: mutate the stored template."""
        template = self.get(template_id)
        if template is not None:
            template.increment_usage()


class InMemoryTemplateRepository(TemplateRepository):
    """Dictionary-backed repository, thread-safe."""

    def __init__(self, templates: Optional[List[Template]] = None):
        self._templates: Dict[int, Template] = {}
        self._lock = threading.Lock()
        self._next_id = 1
        for template in templates or []:
            self.add(template)

    def get(self, template_id: int) -> Optional[Template]:
        with self._lock:
            return self._templates.get(template_id)

    def by_category(self, category_id: int) -> List[Template]:
        with self._lock:
            return [t for t in self._templates.values() if t.category_id == category_id]

    def all(self) -> List[Template]:
        with self._lock:
            return list(self._templates.values())

    def add(self, template: Template) -> Template:
        """Store a template. An id of 0 or less gets the next free id."""
        with self._lock:
            if template.id <= 0:
                template.id = self._next_id
            self._next_id = max(self._next_id, template.id + 1)
            self._templates[template.id] = template
        logger.debug(f"Template stored: {template.id} ({template.name})")
        return template

    def increment_usage(self, template_id: int) -> None:
        with self._lock:
            template = self._templates.get(template_id)
            if template is not None:
                template.increment_usage()

    def __len__(self) -> int:
        with self._lock:
            return len(self._templates)
