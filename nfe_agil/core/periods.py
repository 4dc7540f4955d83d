"""Presets de período no fuso de São Paulo (UTC-3 fixo, sem horário de verão desde 2019).

Retorna limites em UTC ingênuo, comparáveis com ``NFe.data_emissao``.
"""
import calendar
from datetime import datetime, date, timedelta
from typing import Optional
from nfe_agil.logs import get_logger

logger = get_logger("nfe.periods")

BRT_OFFSET = timedelta(hours=3)
PRESETS = ("hoje", "esta_semana", "mes_atual", "mes_passado", "custom", "todos")

def _start(d: date) -> datetime:
    # 00:00 BRT = 03:00 UTC
    return datetime(d.year, d.month, d.day) + BRT_OFFSET

def _end(d: date) -> datetime:
    # 23:59:59.999 BRT = 02:59:59.999 UTC do dia seguinte
    return datetime(d.year, d.month, d.day) + timedelta(days=1) + BRT_OFFSET - timedelta(milliseconds=1)

def _parse_day(s: Optional[str]) -> Optional[date]:
    if not s:
        return None
    try:
        return date.fromisoformat(s[:10])
    except ValueError:
        logger.warning(f"Data inválida no período custom: {s!r}")
        return None

def compute_date_range_brt(preset: str, custom_from: Optional[str] = None, custom_to: Optional[str] = None,
                           now: Optional[datetime] = None) -> tuple[Optional[datetime], Optional[datetime]]:
    """(de, até) em UTC; ``None`` = sem limite."""
    today = ((now or datetime.utcnow()) - BRT_OFFSET).date()

    if preset == "hoje":
        return _start(today), _end(today)
    if preset == "esta_semana":
        monday = today - timedelta(days=today.weekday())
        return _start(monday), _end(monday + timedelta(days=6))
    if preset == "mes_atual":
        last = calendar.monthrange(today.year, today.month)[1]
        return _start(today.replace(day=1)), _end(today.replace(day=last))
    if preset == "mes_passado":
        y, m = (today.year - 1, 12) if today.month == 1 else (today.year, today.month - 1)
        last = calendar.monthrange(y, m)[1]
        return _start(date(y, m, 1)), _end(date(y, m, last))
    if preset == "custom":
        f, t = _parse_day(custom_from), _parse_day(custom_to)
        return (_start(f) if f else None), (_end(t) if t else None)
    if preset != "todos":
        logger.warning(f"Período não reconhecido: {preset!r}")
    return None, None
