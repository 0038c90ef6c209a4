"""
Class Progress API Schemas (Pydantic)
"""
from typing import Dict, Optional

from pydantic import BaseModel


class TierCounts(BaseModel):
    # Negative values are rejected by the service with field detail
    target_count: Optional[int] = None
    achieved_count: Optional[int] = None


class ClassProgressUpdate(BaseModel):
    """Request schema: tier -> counts, e.g. {"tiers": {"regular": {"achieved_count": 1}}}"""
    tiers: Dict[str, TierCounts]

    def as_updates(self):
        return {tier: counts.model_dump() for tier, counts in self.tiers.items()}
