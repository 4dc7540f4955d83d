from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from nfe_agil.errors import NfeAgilError
from nfe_agil.logs import get_logger
from .routes import health, internal, nfe, converter, download_lote, relatorio, admin, notifications, empresas

logger = get_logger("nfe.api")

app = FastAPI(title="NF-e Ágil (SEFAZ sync + DANFE)", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://127.0.0.1:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Content-Disposition", "X-Converted-Count", "X-Failed-Count", "X-Xml-Count",
                    "X-Pdf-Count", "X-Pdf-Errors", "X-Total-Available"],
)

@app.exception_handler(NfeAgilError)
async def nfe_agil_error_handler(request: Request, exc: NfeAgilError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} -> {exc.status_code} {exc.code}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

app.include_router(health.router)
app.include_router(internal.router, prefix="/api/internal", tags=["Interno"])
app.include_router(nfe.router, prefix="/api", tags=["NF-e"])
app.include_router(converter.router, prefix="/api", tags=["Conversor"])
app.include_router(download_lote.router, prefix="/api", tags=["Download em lote"])
app.include_router(relatorio.router, prefix="/api", tags=["Relatório XML"])
app.include_router(empresas.router, prefix="/api", tags=["Empresas"])
app.include_router(notifications.router, prefix="/api", tags=["Notificações"])
app.include_router(admin.router, prefix="/api/admin", tags=["Admin"])
