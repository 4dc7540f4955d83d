from fastapi import APIRouter, Depends, File, UploadFile
from fastapi.responses import Response
from sqlalchemy.orm import Session
from nfe_agil.api.deps import current_user, get_converter
from nfe_agil.core.batch import UploadedXml, convert_many
from nfe_agil.core.quota import usage_summary
from nfe_agil.store.db import get_db

router = APIRouter()

@router.post("/converter")
async def converter(files: list[UploadFile] = File(default=[]), user_id: str = Depends(current_user),
                    db: Session = Depends(get_db), converter=Depends(get_converter)):
    uploaded = [UploadedXml(f.filename or "arquivo.xml", await f.read()) for f in files]
    out = convert_many(db, user_id, uploaded, converter=converter)
    headers = {"Content-Disposition": f'attachment; filename="{out.filename}"', **out.headers}
    return Response(out.content, media_type=out.media_type, headers=headers)

@router.get("/converter")
def uso_mensal(user_id: str = Depends(current_user), db: Session = Depends(get_db)):
    return usage_summary(db, user_id)
