"""Erros de domínio com o status HTTP correspondente.

As rotas registram um handler que converte qualquer ``NfeAgilError`` em
``{"error": ..., "code": ..., **extra}``.
"""

class NfeAgilError(Exception):
    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message: str, **extra):
        super().__init__(message)
        self.message = message
        self.extra = extra

    def to_dict(self) -> dict:
        out = {"error": self.message, "code": self.code}
        out.update(self.extra)
        return out

class ConfigurationError(NfeAgilError):
    status_code = 500
    code = "CONFIG_ERROR"

class UnauthorizedError(NfeAgilError):
    status_code = 401
    code = "UNAUTHORIZED"

class ForbiddenError(NfeAgilError):
    status_code = 403
    code = "FORBIDDEN"

class NotFoundError(NfeAgilError):
    status_code = 404
    code = "NOT_FOUND"

class ValidationError(NfeAgilError):
    status_code = 400
    code = "VALIDATION_ERROR"

class UpstreamError(NfeAgilError):
    status_code = 502
    code = "UPSTREAM_ERROR"

# ---- Conversor / lote ----

class PlanRequiredError(ForbiddenError):
    code = "PLAN_REQUIRED"

class EmptyBatchError(ValidationError):
    code = "EMPTY_BATCH"

class BatchTooLargeError(ValidationError):
    code = "BATCH_TOO_LARGE"

class LimitReachedError(NfeAgilError):
    status_code = 429
    code = "LIMIT_REACHED"

class BatchFailedError(NfeAgilError):
    status_code = 422
    code = "BATCH_FAILED"

class XmlNotAvailableError(NfeAgilError):
    status_code = 422
    code = "XML_NOT_AVAILABLE"

class CertificateError(NfeAgilError):
    status_code = 400
    code = "CERTIFICATE_ERROR"

class SefazBlockedError(NfeAgilError):
    status_code = 429
    code = "SEFAZ_BLOCKED"
