"""
Field mapper for transforming local leads into the scouter-management schema.

Everything here is a pure function and never raises on bad input: values that
cannot be coerced become ``None``.

Supports:
- Default mapping: local lead columns -> Portuguese destination columns
- Custom mapping per job: {"destination_field": "lead_field"}
- Type coercion: dates (Brazilian and ISO), money strings, boolean-ish strings
"""
import re
import uuid
import logging
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, Optional, Tuple

from sqlalchemy import Boolean, Date, DateTime, Integer, JSON, Numeric, String, Uuid
from sqlalchemy.types import TypeEngine


logger = logging.getLogger(__name__)


SYNC_ORIGIN = "batch_export"

_BR_DATETIME = re.compile(r"(\d{2})/(\d{2})/(\d{4})\s+(\d{2}):(\d{2})(?::(\d{2}))?\s*$")
_BR_DATE = re.compile(r"(\d{2})/(\d{2})/(\d{4})\s*$")

_TRUE_STRINGS = {"1", "y", "s", "sim", "true", "yes", "t"}
_FALSE_STRINGS = {"0", "n", "nao", "não", "false", "no", "f"}

# (destination field, lead field, kind)
DEFAULT_FIELD_MAP: Tuple[Tuple[str, Optional[str], str], ...] = (
    ("nome", "name", "text"),
    ("scouter", "scouter", "text"),
    ("responsavel", "responsible", "text"),
    ("idade", "age", "text"),
    ("foto", "photo_url", "text"),
    ("modificado", "date_modify", "datetime"),
    ("telefone", None, "text"),
    ("celular", "celular", "text"),
    ("telefone_trabalho", "telefone_trabalho", "text"),
    ("telefone_casa", "telefone_casa", "text"),
    ("etapa", "etapa", "text"),
    ("fonte", "fonte", "text"),
    ("criado", "criado", "datetime"),
    ("nome_modelo", "nome_modelo", "text"),
    ("local_abordagem", "local_abordagem", "text"),
    ("ficha_confirmada", "ficha_confirmada", "bool"),
    ("data_criacao_ficha", "data_criacao_ficha", "datetime"),
    ("data_confirmacao_ficha", "data_confirmacao_ficha", "datetime"),
    ("presenca_confirmada", "presenca_confirmada", "bool"),
    ("compareceu", "compareceu", "bool"),
    ("cadastro_existe_foto", "cadastro_existe_foto", "bool"),
    ("valor_ficha", "valor_ficha", "money"),
    ("data_criacao_agendamento", "data_criacao_agendamento", "datetime"),
    ("horario_agendamento", "horario_agendamento", "text"),
    ("data_agendamento", "data_agendamento", "text"),
    ("gerenciamento_funil", "gerenciamento_funil", "text"),
    ("status_fluxo", "status_fluxo", "text"),
    ("etapa_funil", "etapa_funil", "text"),
    ("etapa_fluxo", "etapa_fluxo", "text"),
    ("funil_fichas", "funil_fichas", "text"),
    ("status_tabulacao", "status_tabulacao", "text"),
    ("maxsystem_id_ficha", "maxsystem_id_ficha", "text"),
    ("op_telemarketing", "op_telemarketing", "text"),
    ("data_retorno_ligacao", "data_retorno_ligacao", "datetime"),
)

# Lead fields converted to ISO when referenced from a custom job mapping
DATE_LEAD_FIELDS = {
    "date_modify",
    "updated_at",
    "created_at",
    "last_sync_at",
    "criado",
    "data_criacao_ficha",
    "data_confirmacao_ficha",
    "data_criacao_agendamento",
    "data_retorno_ligacao",
}


# ============================================================================
# SCALAR COERCIONS
# ============================================================================

def parse_datetime(value: Any) -> Optional[datetime]:
    """
    Parse a date-like value into an aware UTC datetime.

    Accepts datetime/date objects, Brazilian "dd/MM/yyyy HH:mm:ss" and
    "dd/MM/yyyy" strings (read as UTC) and ISO-8601 strings.
    """
    if value is None or value == "":
        return None

    if isinstance(value, datetime):
        return _as_utc(value)

    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)

    if not isinstance(value, str):
        return None

    text = value.strip()

    try:
        match = _BR_DATETIME.match(text)
        if match:
            day, month, year, hour, minute, second = match.groups()
            return datetime(
                int(year), int(month), int(day),
                int(hour), int(minute), int(second or 0),
                tzinfo=timezone.utc
            )

        match = _BR_DATE.match(text)
        if match:
            day, month, year = match.groups()
            return datetime(int(year), int(month), int(day), tzinfo=timezone.utc)

        return _as_utc(datetime.fromisoformat(text.replace("Z", "+00:00")))
    except ValueError:
        logger.debug(f"Could not parse date: {value!r}")
        return None


def _as_utc(value: datetime) -> Optional[datetime]:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    try:
        return value.astimezone(timezone.utc)
    except OverflowError:
        logger.debug(f"Date out of range in UTC: {value!r}")
        return None


def to_iso(value: Any) -> Optional[str]:
    """Date-like value -> "2024-03-05T10:30:00Z", or None."""
    parsed = parse_datetime(value)
    if parsed is None:
        return None
    return parsed.isoformat().replace("+00:00", "Z")


def to_iso_date(value: Any) -> Optional[str]:
    """Date-like value -> "2024-03-05", or None."""
    parsed = parse_datetime(value)
    if parsed is None:
        return None
    return parsed.date().isoformat()


def parse_money(value: Any) -> Optional[Decimal]:
    """
    Parse numbers and currency-like strings.

    Examples:
        "R$ 1.234,56" -> Decimal("1234.56")
        "1234.56"     -> Decimal("1234.56")
        "10,00"       -> Decimal("10.00")
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, Decimal):
        return value

    if isinstance(value, (int, float)):
        return Decimal(str(value))

    if not isinstance(value, str):
        return None

    cleaned = re.sub(r"[^\d,.\-]", "", value)
    if not cleaned or not re.search(r"\d", cleaned):
        return None

    if "," in cleaned and "." in cleaned:
        # Whichever separator comes last is the decimal separator
        if cleaned.rfind(",") > cleaned.rfind("."):
            cleaned = cleaned.replace(".", "").replace(",", ".")
        else:
            cleaned = cleaned.replace(",", "")
    elif "," in cleaned:
        cleaned = cleaned.replace(".", "").replace(",", ".") if cleaned.count(",") == 1 else cleaned.replace(",", "")
    elif cleaned.count(".") > 1:
        cleaned = cleaned.replace(".", "")

    try:
        return Decimal(cleaned)
    except InvalidOperation:
        return None


def decimal_to_float(value: Any) -> Any:
    """Convert Decimal to float for JSON serialization."""
    if isinstance(value, Decimal):
        return float(value)
    return value


def to_bool(value: Any) -> Optional[bool]:
    """Boolean-ish value ("Y", "1", "sim", 0, ...) -> bool, or None."""
    if value is None:
        return None

    if isinstance(value, bool):
        return value

    if isinstance(value, (int, float, Decimal)):
        return value != 0

    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in _TRUE_STRINGS:
            return True
        if normalized in _FALSE_STRINGS:
            return False

    return None


def json_safe(value: Any) -> Any:
    """Make a value JSON serializable (dates to ISO, Decimal to float, UUID to str)."""
    if isinstance(value, (datetime, date)):
        return to_iso(value)
    if isinstance(value, Decimal):
        return decimal_to_float(value)
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, dict):
        return {key: json_safe(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [json_safe(item) for item in value]
    return value


# ============================================================================
# RECORD MAPPING
# ============================================================================

def _has_field(lead: Any, field: str) -> bool:
    if isinstance(lead, dict):
        return field in lead
    return hasattr(lead, field)


def _get_field(lead: Any, field: Optional[str]) -> Any:
    if field is None:
        return None
    if isinstance(lead, dict):
        return lead.get(field)
    return getattr(lead, field, None)


def _coerce_kind(value: Any, kind: str) -> Any:
    if kind == "datetime":
        return to_iso(value)
    if kind == "money":
        return decimal_to_float(parse_money(value))
    if kind == "bool":
        return to_bool(value)
    if value == "":
        return None
    return json_safe(value)


def map_lead(lead: Any, field_mappings: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    """
    Map a local lead (ORM object or dict) to a destination record.

    Args:
        lead: Source lead
        field_mappings: Optional {destination_field: lead_field} override

    Returns:
        JSON-ready dict keyed by destination column names
    """
    control = {
        "ultima_sincronizacao": to_iso(datetime.now(timezone.utc)),
        "origem_sincronizacao": SYNC_ORIGIN,
    }

    if not field_mappings:
        record: Dict[str, Any] = {"id": _get_field(lead, "id")}
        for destination_field, lead_field, kind in DEFAULT_FIELD_MAP:
            record[destination_field] = _coerce_kind(_get_field(lead, lead_field), kind)
        record.update(control)
        return record

    record = {"id": _get_field(lead, "id"), **control}

    for destination_field, lead_field in field_mappings.items():
        if not _has_field(lead, lead_field):
            logger.debug(f"Lead has no field '{lead_field}', skipping '{destination_field}'")
            continue

        value = _get_field(lead, lead_field)
        if lead_field in DATE_LEAD_FIELDS:
            record[destination_field] = to_iso(value)
        else:
            record[destination_field] = json_safe(value)

    return record


def prune_empty(record: Dict[str, Any]) -> Dict[str, Any]:
    """Drop None and empty-string values so an upsert never blanks existing data."""
    pruned = {"id": record.get("id")}
    for key, value in record.items():
        if value is not None and value != "":
            pruned[key] = value
    return pruned


def lead_snapshot(lead: Any) -> Dict[str, Any]:
    """JSON-safe copy of a source lead for error reporting."""
    if isinstance(lead, dict):
        return json_safe(lead)

    table = getattr(lead, "__table__", None)
    if table is None:
        return {"id": _get_field(lead, "id")}

    return {column.key: json_safe(getattr(lead, column.key, None)) for column in table.columns}


# ============================================================================
# COLUMN BINDING
# ============================================================================

def coerce_for_type(type_: TypeEngine, value: Any) -> Any:
    """
    Bind a loosely typed value to a SQLAlchemy column type.

    Returns None when the value cannot be represented in that type.
    """
    if value is None:
        return None

    if isinstance(type_, DateTime):
        return parse_datetime(value)

    if isinstance(type_, Date):
        parsed = parse_datetime(value)
        return parsed.date() if parsed else None

    if isinstance(type_, Boolean):
        return to_bool(value)

    if isinstance(type_, Integer):
        number = parse_money(value)
        return int(number) if number is not None and number.is_finite() else None

    if isinstance(type_, Numeric):
        return parse_money(value)

    if isinstance(type_, JSON):
        return json_safe(value)

    if isinstance(type_, Uuid):
        try:
            return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))
        except ValueError:
            return None

    if isinstance(type_, String):
        if isinstance(value, (datetime, date)):
            return to_iso(value)
        return str(value)

    return value


def coerce_row(columns: Dict[str, TypeEngine], record: Dict[str, Any]) -> Dict[str, Any]:
    """Coerce every value of ``record`` whose key is a known column."""
    return {key: coerce_for_type(columns[key], value) for key, value in record.items() if key in columns}


def split_known_fields(record: Dict[str, Any], known: Iterable[str]) -> Tuple[Dict[str, Any], list]:
    """Split a record into (known columns, ignored field names)."""
    known = set(known)
    kept = {key: value for key, value in record.items() if key in known}
    ignored = [key for key in record if key not in known]
    return kept, ignored
