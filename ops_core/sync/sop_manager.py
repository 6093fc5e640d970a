# =============================================================================
# ops_core/sync/sop_manager.py
# Standard operating procedures (and SOP templates)
# =============================================================================

from __future__ import annotations
from typing import List, Optional

from ops_core.errors import ValidationError
from ops_core.models import SOP, SOPStatus
from .collection_manager import EntityCollectionManager
from .seed import default_sops


class SOPManager(EntityCollectionManager):
    """
    SOPs are never hard-deleted by the UI flows; archive/restore/publish are
    status transitions. Templates live in the same table with ``is_template``.
    """

    entity_cls = SOP
    table = "sops"
    collection = "sops"
    entity_type = "sop"
    id_prefix = "sop"
    order_by = "created_at"
    ascending = False

    def default_records(self) -> List[SOP]:
        return default_sops()

    def _created_action(self, record: SOP) -> str:
        return "template_created" if record.is_template else "sop_created"

    def _updated_action(self, current: SOP, updated: SOP) -> str:
        return "template_updated" if updated.is_template else "sop_updated"

    def _deleted_action(self, record: SOP) -> str:
        return "template_deleted" if record.is_template else "sop_deleted"

    # =========================================================================
    # STATUS TRANSITIONS
    # =========================================================================

    async def update_status(self, sop_id: str, status: str) -> Optional[SOP]:
        status = getattr(status, "value", status)
        if status not in {s.value for s in SOPStatus}:
            raise ValidationError(f"Invalid SOP status: {status!r}", field="status")
        action = {
            SOPStatus.PUBLISHED.value: "sop_published",
            SOPStatus.ARCHIVED.value: "sop_archived",
            SOPStatus.DRAFT.value: "sop_restored",
        }[status]
        return await self.transition(sop_id, status, action)

    async def publish(self, sop_id: str) -> Optional[SOP]:
        return await self.update_status(sop_id, SOPStatus.PUBLISHED.value)

    async def archive(self, sop_id: str) -> Optional[SOP]:
        return await self.update_status(sop_id, SOPStatus.ARCHIVED.value)

    async def restore(self, sop_id: str) -> Optional[SOP]:
        """Archived SOPs come back as drafts."""
        return await self.update_status(sop_id, SOPStatus.DRAFT.value)

    # =========================================================================
    # TEMPLATES
    # =========================================================================

    async def create_from_template(self, template_id: str) -> Optional[SOP]:
        """New draft SOP copied from a template; None if the template is gone."""
        template = self._get_for_write(template_id)
        if template is None:
            self.logger.info(f"Template {template_id} not found; nothing created")
            return None
        return await self.add(self._copy_fields(
            template,
            title=f"{template.title} (Copy)",
            status=SOPStatus.DRAFT.value,
            is_template=False,
            template_of=template_id,
        ))

    async def save_as_template(self, sop_id: str) -> Optional[SOP]:
        """Copy an SOP into a new template; the source is left untouched."""
        source = self._get_for_write(sop_id)
        if source is None:
            self.logger.info(f"SOP {sop_id} not found; nothing saved")
            return None
        return await self.add(self._copy_fields(
            source,
            title=f"{source.title} (Template)",
            status=source.status,
            is_template=True,
            template_of=None,
        ))

    @staticmethod
    def _copy_fields(source: SOP, **overrides) -> dict:
        fields = source.to_record()
        for name in ("id", "created_at", "created_by", "updated_at"):
            fields.pop(name)
        fields.update(overrides)
        return fields

    # =========================================================================
    # QUERIES
    # =========================================================================

    def templates(self) -> List[SOP]:
        return self.find(lambda sop: sop.is_template)

    def by_category(self, category: str) -> List[SOP]:
        return self.find(lambda sop: sop.category == category and not sop.is_template)

    def by_status(self, status: str) -> List[SOP]:
        return self.find(lambda sop: sop.status == status)
