"""Scoring-config lookup and versioned publishing."""

from __future__ import annotations

import dataclasses
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from ridepool.domain.entities import ScoringConfig
from ridepool.domain.exceptions import ConfigError
from ridepool.infrastructure.models import ScoringConfigModel
from ridepool.infrastructure.repositories import ScoringConfigRepository

logger = logging.getLogger(__name__)


async def load_config(session: AsyncSession, config_id: int) -> ScoringConfig:
    """The exact config version a pool was created with.  Never falls back."""
    row = await ScoringConfigRepository(session).get_by_id(config_id)
    if row is None:
        raise ConfigError(f"Scoring configuration {config_id} not found")
    return row.to_entity()


async def active_config(session: AsyncSession, name: str) -> ScoringConfigModel:
    row = await ScoringConfigRepository(session).get_active(name)
    if row is None:
        raise ConfigError(f'Scoring configuration "{name}" not found or inactive')
    return row


async def publish_config(
    session: AsyncSession, config: ScoringConfig
) -> ScoringConfigModel:
    """Store *config* as the next version of its name and make it active.

    Earlier versions stay untouched (pools keep scoring against them) but
    are no longer picked for new pools.
    """
    config.validate()
    repo = ScoringConfigRepository(session)
    version = await repo.latest_version(config.name) + 1
    await repo.deactivate(config.name)

    fields = {
        f.name: getattr(config, f.name)
        for f in dataclasses.fields(config)
        if f.name not in ("id", "name", "version")
    }
    row = await repo.create(
        ScoringConfigModel(
            config_name=config.name, version=version, is_active=True, **fields
        )
    )
    logger.info("Published scoring config %s v%d", config.name, version)
    return row
