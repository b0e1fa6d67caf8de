"""
SQLAlchemy ORM models.

Local store: leads, deals, negotiations, lookup tables, the export job ledger
and the sync audit tables.
Destination store: the scouter-management ``leads`` table (``DestinationBase``).
"""

from sqlalchemy import (
    Column, String, Boolean, Integer, Numeric, Text, DateTime, Date, Index,
    ForeignKey, BigInteger, CheckConstraint
)
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.sql import func
from crm_sync.database import Base, DestinationBase
from crm_sync.config import settings
import uuid


JOB_STATUSES = ("pending", "running", "paused", "completed", "failed")


# ============================================================================
# LEAD (source record)
# ============================================================================

class Lead(Base):
    """Lead/ficha as synchronized from Bitrix24. Primary key is the Bitrix lead ID."""
    __tablename__ = "leads"

    id = Column(BigInteger, primary_key=True, autoincrement=False)

    # Identity
    name = Column(String(255))
    nome_modelo = Column(String(255))
    age = Column(String(20))
    photo_url = Column(Text)

    # Attribution
    scouter = Column(String(255))
    responsible = Column(String(255))
    responsible_user_id = Column(UUID(as_uuid=True), nullable=True)
    commercial_project_id = Column(UUID(as_uuid=True), ForeignKey("commercial_projects.id"), nullable=True)
    bitrix_telemarketing_id = Column(BigInteger, nullable=True)
    op_telemarketing = Column(String(255))
    gestao_scouter = Column(String(255))

    # Contact
    celular = Column(String(50))
    telefone_trabalho = Column(String(50))
    telefone_casa = Column(String(50))

    # Funnel
    etapa = Column(String(100))
    etapa_funil = Column(String(100))
    etapa_fluxo = Column(String(100))
    status_fluxo = Column(String(100))
    funil_fichas = Column(String(100))
    gerenciamento_funil = Column(String(100))
    status_tabulacao = Column(String(100))

    # Flags
    ficha_confirmada = Column(Boolean)
    presenca_confirmada = Column(Boolean)
    compareceu = Column(Boolean)
    cadastro_existe_foto = Column(Boolean)

    # Money arrives as free text from the CRM ("R$ 10,00")
    valor_ficha = Column(String(50))

    # Dates (string-typed at the source unless noted)
    date_modify = Column(DateTime(timezone=True))
    criado = Column(String(50))
    data_criacao_ficha = Column(String(50))
    data_confirmacao_ficha = Column(String(50))
    data_criacao_agendamento = Column(String(50))
    data_agendamento = Column(String(50))
    horario_agendamento = Column(String(20))
    data_retorno_ligacao = Column(String(50))

    # Other
    fonte = Column(String(100))
    local_abordagem = Column(String(255))
    maxsystem_id_ficha = Column(String(100))

    raw = Column(JSONB)

    # Sync bookkeeping
    sync_source = Column(String(50))
    sync_status = Column(String(50))
    last_sync_at = Column(DateTime(timezone=True))

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), index=True)

    def __repr__(self):
        return f"<Lead(id={self.id}, name='{self.name}')>"


# ============================================================================
# LOOKUP TABLES
# ============================================================================

class CommercialProject(Base):
    """Commercial project a lead is attributed to."""
    __tablename__ = "commercial_projects"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    code = Column(String(100), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    active = Column(Boolean, default=True, nullable=False)


class AgentTelemarketingMapping(Base):
    """Maps a Bitrix telemarketing operator to a local user."""
    __tablename__ = "agent_telemarketing_mapping"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    bitrix_telemarketing_id = Column(BigInteger, nullable=False, unique=True)
    bitrix_telemarketing_name = Column(String(255))
    local_user_id = Column(UUID(as_uuid=True), nullable=True)


class FieldMappingConfig(Base):
    """Bitrix field → local lead column, with optional transform and priority."""
    __tablename__ = "field_mapping_config"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    bitrix_field = Column(String(100), nullable=False)
    local_field = Column(String(100), nullable=False)
    transform_function = Column(String(20), nullable=True)
    sync_priority = Column(Integer, default=1, nullable=False)
    sync_active = Column(Boolean, default=True, nullable=False)

    __table_args__ = (
        CheckConstraint(
            "transform_function IS NULL OR transform_function IN "
            "('toNumber', 'toString', 'toBoolean', 'toDate', 'toTimestamp')",
            name="chk_field_mapping_transform"
        ),
        Index('idx_field_mapping_local', 'local_field', 'sync_priority'),
    )


class PipelineConfig(Base):
    """Per-pipeline (Bitrix deal category) stage → negotiation status overrides."""
    __tablename__ = "pipeline_configs"

    id = Column(String(50), primary_key=True)
    name = Column(String(255))
    stage_mapping = Column(JSONB, default={})
    # Example: {"stages": {"C1:NEW": "recepcao_cadastro", "C1:WON": "negocios_fechados"}}


# ============================================================================
# DEALS & NEGOTIATIONS
# ============================================================================

class Deal(Base):
    """Bitrix24 deal mirrored locally."""
    __tablename__ = "deals"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    bitrix_deal_id = Column(BigInteger, nullable=False, unique=True)
    title = Column(String(255))
    stage_id = Column(String(100))
    category_id = Column(String(50))
    opportunity = Column(Numeric(14, 2))
    currency_id = Column(String(10))
    company_id = Column(BigInteger)
    contact_id = Column(BigInteger)
    bitrix_lead_id = Column(BigInteger)
    lead_id = Column(BigInteger, ForeignKey("leads.id", ondelete="SET NULL"), nullable=True)
    assigned_by_id = Column(BigInteger)
    created_date = Column(DateTime(timezone=True))
    close_date = Column(DateTime(timezone=True))
    date_modify = Column(DateTime(timezone=True))
    client_name = Column(String(255))
    client_phone = Column(String(50))
    client_email = Column(String(255))
    raw = Column(JSONB)
    last_sync_at = Column(DateTime(timezone=True))
    sync_status = Column(String(50))
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class Negotiation(Base):
    """Negotiation derived from a deal."""
    __tablename__ = "negotiations"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    deal_id = Column(UUID(as_uuid=True), ForeignKey("deals.id"), nullable=True, index=True)
    bitrix_deal_id = Column(BigInteger, index=True)
    title = Column(String(255))
    client_name = Column(String(255))
    client_phone = Column(String(50))
    client_email = Column(String(255))
    status = Column(String(50), nullable=False, default="recepcao_cadastro")
    pipeline_id = Column(String(50))
    base_value = Column(Numeric(14, 2), default=0)
    total_value = Column(Numeric(14, 2), default=0)
    start_date = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


# ============================================================================
# EXPORT JOB LEDGER & AUDIT
# ============================================================================

class ExportJob(Base):
    """One run of the lead export to the scouter-management store."""
    __tablename__ = "export_jobs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=True)
    status = Column(String(20), nullable=False, default="pending")

    # Cursor: moves backward one day at a time
    processing_date = Column(Date, nullable=True)
    processing_offset = Column(Integer, default=0, nullable=False)
    last_completed_date = Column(Date, nullable=True)

    total_leads = Column(Integer, default=0, nullable=False)
    exported_leads = Column(Integer, default=0, nullable=False)
    error_leads = Column(Integer, default=0, nullable=False)

    pause_reason = Column(Text)
    field_mappings = Column(JSONB, nullable=True)
    created_by = Column(UUID(as_uuid=True), nullable=True)

    started_at = Column(DateTime(timezone=True))
    paused_at = Column(DateTime(timezone=True))
    completed_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'running', 'paused', 'completed', 'failed')",
            name="chk_export_job_status"
        ),
        CheckConstraint(
            "exported_leads + error_leads <= total_leads",
            name="chk_export_job_counts"
        ),
        Index('idx_export_jobs_status', 'status'),
    )

    def __repr__(self):
        return f"<ExportJob(id={self.id}, status='{self.status}', processing_date={self.processing_date})>"


class ExportError(Base):
    """A lead that failed to export within a job."""
    __tablename__ = "export_errors"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    job_id = Column(UUID(as_uuid=True), ForeignKey("export_jobs.id", ondelete="CASCADE"), nullable=False, index=True)
    lead_id = Column(BigInteger, index=True)
    lead_snapshot = Column(JSONB)
    fields_sent = Column(JSONB)
    ignored_fields = Column(JSONB)
    error_message = Column(Text)
    error_details = Column(JSONB)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class SyncEvent(Base):
    """Append-only audit entry, one per record synchronized."""
    __tablename__ = "sync_events"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    event_type = Column(String(20), nullable=False)
    direction = Column(String(50), nullable=False)
    lead_id = Column(BigInteger, index=True)
    status = Column(String(20), nullable=False)
    sync_duration_ms = Column(Integer)
    error_message = Column(Text)
    field_mappings = Column(JSONB)
    fields_synced_count = Column(Integer)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)

    __table_args__ = (
        CheckConstraint("status IN ('success', 'error')", name="chk_sync_event_status"),
        Index('idx_sync_events_direction_created', 'direction', 'created_at'),
    )


# ============================================================================
# DESTINATION (scouter-management store)
# ============================================================================

class ScouterLead(DestinationBase):
    """Lead row in the scouter-management database."""
    __tablename__ = settings.DESTINATION_LEADS_TABLE

    id = Column(BigInteger, primary_key=True, autoincrement=False)
    nome = Column(String(255))
    responsavel = Column(String(255))
    idade = Column(String(20))
    scouter = Column(String(255))
    foto = Column(Text)
    modificado = Column(DateTime(timezone=True))
    telefone = Column(String(50))
    celular = Column(String(50))
    telefone_trabalho = Column(String(50))
    telefone_casa = Column(String(50))
    etapa = Column(String(100))
    fonte = Column(String(100))
    criado = Column(DateTime(timezone=True))
    nome_modelo = Column(String(255))
    local_abordagem = Column(String(255))
    ficha_confirmada = Column(Boolean)
    data_criacao_ficha = Column(DateTime(timezone=True))
    data_confirmacao_ficha = Column(DateTime(timezone=True))
    presenca_confirmada = Column(Boolean)
    compareceu = Column(Boolean)
    cadastro_existe_foto = Column(Boolean)
    valor_ficha = Column(Numeric(12, 2))
    data_criacao_agendamento = Column(DateTime(timezone=True))
    horario_agendamento = Column(String(20))
    data_agendamento = Column(String(50))
    gerenciamento_funil = Column(String(100))
    status_fluxo = Column(String(100))
    etapa_funil = Column(String(100))
    etapa_fluxo = Column(String(100))
    funil_fichas = Column(String(100))
    status_tabulacao = Column(String(100))
    maxsystem_id_ficha = Column(String(100))
    op_telemarketing = Column(String(255))
    data_retorno_ligacao = Column(DateTime(timezone=True))
    ultima_sincronizacao = Column(DateTime(timezone=True))
    origem_sincronizacao = Column(String(50))
