from fastapi import APIRouter, Depends, File, UploadFile
from nfe_agil.api.deps import current_user
from nfe_agil.core.batch import UploadedXml
from nfe_agil.core.relatorio import build_report

router = APIRouter()

@router.post("/relatorio-xml")
async def relatorio_xml(files: list[UploadFile] = File(default=[]), user_id: str = Depends(current_user)):
    return build_report([UploadedXml(f.filename or "arquivo.xml", await f.read()) for f in files])
