"""
Stage Catalog — read-only lookups over the production stage list.

Ordinals are 1-based positions among *active* stages ordered by
``stage_order``; progress percentages are computed from them, so a
deactivated stage drops out of the denominator.
"""

import logging

from sqlalchemy import select

from piecetrack.core.exceptions import NotFoundError
from piecetrack.models import db
from piecetrack.models.production import ProductionStage, seed_default_stages

logger = logging.getLogger(__name__)


def list_stages(include_inactive: bool = False) -> list[ProductionStage]:
    """Return catalog stages ordered by ``stage_order``."""
    stmt = select(ProductionStage).order_by(ProductionStage.stage_order)
    if not include_inactive:
        stmt = stmt.where(ProductionStage.is_active.is_(True))
    return list(db.session.execute(stmt).scalars())


def get_stage(stage_id: int) -> ProductionStage:
    stage = db.session.get(ProductionStage, stage_id)
    if not stage:
        raise NotFoundError(resource="ProductionStage", resource_id=stage_id)
    return stage


def stage_by_name(name: str) -> ProductionStage:
    stage = db.session.execute(
        select(ProductionStage).where(ProductionStage.name == name)
    ).scalar_one_or_none()
    if not stage:
        raise NotFoundError(resource="ProductionStage", resource_id=name)
    return stage


def stage_by_ordinal(ordinal: int) -> ProductionStage:
    """Return the active stage at 1-based *ordinal*."""
    stages = list_stages()
    if ordinal < 1 or ordinal > len(stages):
        raise NotFoundError(resource="ProductionStage", resource_id=f"ordinal={ordinal}")
    return stages[ordinal - 1]


def stage_ordinal(stage: ProductionStage, stages: list[ProductionStage] | None = None) -> int:
    """1-based position of *stage* among active stages; 0 if it is not active."""
    if stages is None:
        stages = list_stages()
    for idx, s in enumerate(stages, start=1):
        if s.id == stage.id:
            return idx
    return 0


def seed_catalog() -> int:
    """Insert any missing default stages and commit. Returns the number created."""
    created = seed_default_stages()
    db.session.commit()
    if created:
        logger.info("Seeded %d production stages", len(created))
    return len(created)
