"""
Area Module

Areas group loans by collection route or locality. Deleting an area keeps
its loans and payments; the loans are detached instead.
"""

import logging
import uuid
from typing import List, Optional

from .audit import AuditTrail, AuditEventType
from .errors import AreaNotFoundError
from .models import Area, utcnow
from .storage import StorageInterface

logger = logging.getLogger(__name__)

AREAS_TABLE = "areas"


class AreaManager:
    """
    Manages loan areas
    """

    def __init__(
        self,
        storage: StorageInterface,
        loan_manager,
        audit_trail: Optional[AuditTrail] = None
    ):
        self.storage = storage
        self.loan_manager = loan_manager
        self.audit_trail = audit_trail
        self.table_name = AREAS_TABLE

    def create_area(self, name: str, description: str = "") -> Area:
        name = name.strip()
        if not name:
            raise ValueError("Area name is required")

        now = utcnow()
        area = Area(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            name=name,
            description=description
        )

        with self.storage.atomic():
            self.storage.save(self.table_name, area.id, area.to_dict())
            if self.audit_trail:
                self.audit_trail.log_event(
                    event_type=AuditEventType.AREA_CREATED,
                    entity_type="area",
                    entity_id=area.id,
                    metadata={"name": area.name}
                )

        logger.info("Created area %s (%s)", area.name, area.id)
        return area

    def update_area(self, area_id: str, name: Optional[str] = None,
                    description: Optional[str] = None) -> Area:
        area = self._require_area(area_id)
        changes = {}
        if name is not None:
            name = name.strip()
            if not name:
                raise ValueError("Area name is required")
            area.name = changes['name'] = name
        if description is not None:
            area.description = changes['description'] = description
        area.updated_at = utcnow()

        with self.storage.atomic():
            self.storage.save(self.table_name, area.id, area.to_dict())
            if self.audit_trail:
                self.audit_trail.log_event(
                    event_type=AuditEventType.AREA_UPDATED,
                    entity_type="area",
                    entity_id=area.id,
                    metadata=changes
                )
        return area

    def delete_area(self, area_id: str) -> int:
        """
        Delete an area, detaching its loans

        Returns:
            Number of loans detached
        """
        area = self._require_area(area_id)

        with self.storage.atomic():
            detached = self.loan_manager.detach_area(area_id)
            self.storage.delete(self.table_name, area_id)
            if self.audit_trail:
                self.audit_trail.log_event(
                    event_type=AuditEventType.AREA_DELETED,
                    entity_type="area",
                    entity_id=area_id,
                    metadata={"name": area.name, "loans_detached": detached}
                )

        logger.info("Deleted area %s, detached %d loans", area.name, detached)
        return detached

    def get_area(self, area_id: str) -> Optional[Area]:
        data = self.storage.load(self.table_name, area_id)
        if data:
            return Area.from_dict(data)
        return None

    def list_areas(self) -> List[Area]:
        areas = [Area.from_dict(data) for data in self.storage.load_all(self.table_name)]
        areas.sort(key=lambda a: a.name.lower())
        return areas

    def _require_area(self, area_id: str) -> Area:
        area = self.get_area(area_id)
        if area is None:
            raise AreaNotFoundError(f"Area {area_id} not found")
        return area
