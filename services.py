#!/usr/bin/env python3
"""
Service layer implementing business logic separate from API endpoints.
"""

import logging
from typing import Dict, List, Optional, Any

from database_pool import SPJStore, SPJStats, CreatedClaim
from validators import ClaimSubmission
import reports

logger = logging.getLogger(__name__)

class ClaimService:
    """Service for submitting and reporting on SPJ claims."""

    def __init__(self, store: SPJStore):
        self.store = store

    def create_claim(self, claim: ClaimSubmission, actor: str) -> CreatedClaim:
        """
        Persist a validated claim on behalf of ``actor``.

        Raises:
            ValueError: If no actor is given
            ClaimStoreError: If the claim could not be stored
        """
        logger.info(
            f"Submitting SPJ for SPT {claim.basic_info.no_spt}: "
            f"{len(claim.tim)} members, {len(claim.transport_details)} transport legs, "
            f"{len(claim.penginapan_details)} lodging blocks, {len(claim.perusahaan)} companies"
        )
        return self.store.create_claim(claim, actor)

    def list_claims(self, filters: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """All claims newest first, optionally narrowed with report filters."""
        rows = self.store.list_claims()
        if filters:
            rows = reports.filter_claims(rows, **filters)
        return rows

    def get_stats(self) -> SPJStats:
        return self.store.get_stats()

    def list_activity(self) -> List[Dict[str, Any]]:
        return self.store.list_activity()

    def summarize(self, group_by: str, filters: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """Per-category count and total over the (filtered) claim list."""
        return reports.summarize_by(self.list_claims(filters), group_by)

