"""Relatório tabular de XMLs enviados (um arquivo inválido não invalida os demais)."""
from nfe_agil.core.batch import UploadedXml, decode_upload
from nfe_agil.core.xml_fields import report_row
from nfe_agil.errors import EmptyBatchError, BatchTooLargeError
from nfe_agil.settings import settings

def build_report(files: list[UploadedXml]) -> dict:
    if not files:
        raise EmptyBatchError("Nenhum XML enviado.")
    if len(files) > settings.RELATORIO_MAX_FILES:
        raise BatchTooLargeError(f"Máximo {settings.RELATORIO_MAX_FILES} arquivos por vez.")
    rows, errors = [], []
    for f in files:
        try:
            rows.append(report_row(decode_upload(f.content)))
        except ValueError as e:
            errors.append({"filename": f.filename, "error": str(e)})
    return {"rows": rows, "errors": errors, "total": len(files), "success": len(rows), "failed": len(errors)}
