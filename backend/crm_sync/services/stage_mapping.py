"""Bitrix deal stage -> local negotiation status."""

import logging
from typing import Dict, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from crm_sync.models import PipelineConfig

logger = logging.getLogger(__name__)


DEFAULT_PIPELINE_ID = "1"
FALLBACK_STATUS = "recepcao_cadastro"

# Used as-is when a pipeline has no configuration, and as the base that
# configured stages are merged over.
DEFAULT_STAGE_TO_STATUS: Dict[str, str] = {
    "C1:NEW": "recepcao_cadastro",
    "C1:UC_O2KDK6": "ficha_preenchida",
    "C1:EXECUTING": "atendimento_produtor",
    "C1:WON": "negocios_fechados",
    "C1:LOSE": "contrato_nao_fechado",
    "C1:UC_MKIQ0S": "analisar",
    "NEW": "recepcao_cadastro",
    "PREPARATION": "ficha_preenchida",
    "EXECUTING": "atendimento_produtor",
    "WON": "negocios_fechados",
    "LOSE": "contrato_nao_fechado",
}


def pipeline_id_for(category_id) -> str:
    if category_id is None or category_id == "":
        return DEFAULT_PIPELINE_ID
    return str(category_id)


async def load_stage_mapping(db: AsyncSession, pipeline_id: Optional[str]) -> Dict[str, str]:
    """Defaults overlaid with ``PipelineConfig.stage_mapping["stages"]`` for the pipeline."""
    if not pipeline_id:
        return dict(DEFAULT_STAGE_TO_STATUS)

    result = await db.execute(
        select(PipelineConfig.stage_mapping).where(PipelineConfig.id == pipeline_id)
    )
    config = result.scalar()

    stages = config.get("stages") if isinstance(config, dict) else None
    if not stages:
        return dict(DEFAULT_STAGE_TO_STATUS)

    logger.debug(f"Pipeline {pipeline_id} overrides {len(stages)} stage(s)")
    return {**DEFAULT_STAGE_TO_STATUS, **stages}


def status_for_stage(mapping: Dict[str, str], stage_id: Optional[str]) -> str:
    if not stage_id:
        return FALLBACK_STATUS
    return mapping.get(stage_id, FALLBACK_STATUS)
