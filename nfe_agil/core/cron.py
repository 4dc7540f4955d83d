"""Gatilhos agendados: autenticação dos endpoints internos + rotina diária multi-tenant."""
import hmac, json, time
from datetime import datetime
from typing import Callable, Optional
from sqlalchemy import select
from sqlalchemy.orm import Session
from nfe_agil.core.sefaz_sync import process_sefaz_sync, SyncResult
from nfe_agil.errors import UnauthorizedError
from nfe_agil.logs import get_logger
from nfe_agil.models import Empresa, SyncState, CronLog
from nfe_agil.settings import settings

logger = get_logger("nfe.cron")

def _same_secret(received: Optional[str], expected: Optional[str]) -> bool:
    # segredo não configurado: fecha
    if not expected or not received:
        return False
    return hmac.compare_digest(received.encode("utf-8"), expected.encode("utf-8"))

def verify_internal_secret(header_value: Optional[str], secret: Optional[str] = None) -> None:
    """Header ``x-internal-secret`` do gatilho por tenant."""
    expected = secret if secret is not None else settings.INTERNAL_SYNC_SECRET
    if not _same_secret(header_value, expected):
        raise UnauthorizedError("Unauthorized")

def verify_cron_bearer(authorization: Optional[str], secret: Optional[str] = None) -> None:
    """Header ``Authorization: Bearer <CRON_SECRET>`` do gatilho diário."""
    expected = secret if secret is not None else settings.CRON_SECRET
    token = None
    if authorization and authorization.startswith("Bearer "):
        token = authorization[len("Bearer "):]
    if not _same_secret(token, expected):
        raise UnauthorizedError("Unauthorized")

def _blocked_until(db: Session, user_id: str, cnpj: str) -> Optional[datetime]:
    return db.execute(
        select(SyncState.blocked_until).where(SyncState.user_id == user_id, SyncState.empresa_cnpj == cnpj)
    ).scalar_one_or_none()

def run_daily_sync(db: Session, sync: Callable[..., SyncResult] = process_sefaz_sync,
                   now: Optional[datetime] = None, **sync_kwargs) -> dict:
    """Sincroniza todas as empresas ativas, uma por vez. Falha de um tenant não interrompe os demais.

    Grava uma única linha de resumo em ``cron_logs``.
    """
    start = time.monotonic()
    now = now or datetime.utcnow()
    empresas = db.execute(select(Empresa).where(Empresa.ativo.is_(True)).order_by(Empresa.id)).scalars().all()
    logger.info(f"[CRON] Iniciando sincronização diária: {len(empresas)} empresa(s) ativa(s)")

    results: list[dict] = []
    errors: list[dict] = []
    total = 0
    for emp in empresas:
        row = {"empresa": emp.razao_social, "cnpj": emp.cnpj, "userId": emp.user_id}
        blocked = _blocked_until(db, emp.user_id, emp.cnpj)
        if blocked and blocked > now:
            logger.info(f"[CRON] {emp.cnpj} bloqueada (656) até {blocked.isoformat()}; pulando")
            row.update(status="blocked_656", blockedUntil=blocked.isoformat())
            results.append(row)
            continue
        try:
            res = sync(db, emp.user_id, emp.cnpj, **sync_kwargs)
        except Exception as e:
            db.rollback()
            logger.exception(f"[CRON] Exceção sincronizando {emp.cnpj}")
            row.update(status="error", error=str(e))
            errors.append({"cnpj": emp.cnpj, "error": str(e)})
            results.append(row)
            continue
        if res.success:
            total += res.importadas
            row.update(status="success", importadas=res.importadas, ultNSU=res.ult_nsu, cStat=res.cstat)
        elif res.cstat == "656":
            row.update(status="blocked_656", error=res.error,
                       blockedUntil=res.blocked_until.isoformat() if res.blocked_until else None)
        else:
            row.update(status="error", error=res.error, cStat=res.cstat)
            errors.append({"cnpj": emp.cnpj, "error": res.error})
        results.append(row)

    failed = sum(1 for r in results if r["status"] == "error")
    if failed == 0:
        status = "success"
    elif failed == len(results):
        status = "error"
    else:
        status = "partial"

    duration = f"{time.monotonic() - start:.2f}s"
    db.add(CronLog(
        executed_at=now, duration=duration, processed_count=total, status=status,
        message=f"{len(empresas)} empresa(s) processada(s), {total} NF-e(s) importada(s), {failed} erro(s)",
        errors=json.dumps(errors, ensure_ascii=False) if errors else None,
    ))
    db.commit()
    logger.info(f"[CRON] Concluído em {duration}: status={status} importadas={total} erros={failed}")
    return {
        "success": status != "error",
        "duration": duration,
        "totalProcessed": total,
        "empresasProcessadas": len(empresas),
        "status": status,
        "results": results,
    }
