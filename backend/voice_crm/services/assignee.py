"""Default assignee lookup for newly created leads."""

from __future__ import annotations

import logging
from typing import Optional

from ..core.db import RecordStore, StoreError

logger = logging.getLogger(__name__)


class AssigneeResolver:
    """Resolves who a new lead should be assigned to."""

    async def resolve(self, organization_id: str, campaign_id: Optional[str] = None) -> Optional[str]:
        raise NotImplementedError


class StoreAssigneeResolver(AssigneeResolver):
    """Campaign creator first, then the organization owner."""

    def __init__(self, store: RecordStore):
        self.store = store

    async def resolve(self, organization_id: str, campaign_id: Optional[str] = None) -> Optional[str]:
        try:
            if campaign_id:
                campaign = await self.store.select_one("campaigns", eq={"id": campaign_id})
                if campaign and campaign.get("created_by"):
                    return campaign["created_by"]

            organization = await self.store.select_one("organizations", eq={"id": organization_id})
            if organization and organization.get("owner_id"):
                return organization["owner_id"]
        except StoreError as e:
            logger.warning(f"⚠️ Could not resolve assignee for organization {organization_id}: {e}")
        return None
