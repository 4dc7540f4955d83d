from pathlib import Path
from nfe_agil.settings import settings

BUCKET_XML = "xml"
BUCKET_DANFES = "danfes"
BUCKET_CERTIFICADOS = "certificados"

class BlobStore:
    """Armazenamento de arquivos em disco, organizado em buckets (subpastas).

    Upload sempre sobrescreve (último a gravar vence).
    """

    def __init__(self, base_path: str | None = None):
        self.base = Path(base_path or settings.STORAGE_BASE_PATH)

    def _path(self, bucket: str, key: str) -> Path:
        p = (self.base / bucket / key).resolve()
        root = (self.base / bucket).resolve()
        if root not in p.parents:
            raise ValueError(f"Chave de storage inválida: {key}")
        return p

    def upload(self, bucket: str, key: str, data: bytes) -> str:
        p = self._path(bucket, key)
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_bytes(data)
        return key

    def download(self, bucket: str, key: str) -> bytes | None:
        p = self._path(bucket, key)
        if not p.exists():
            return None
        return p.read_bytes()

    def exists(self, bucket: str, key: str) -> bool:
        return self._path(bucket, key).exists()

def xml_key(user_id: str, chave: str) -> str:
    return f"{user_id}/{chave}.xml"

def danfe_key(user_id: str, nfe_id: int) -> str:
    return f"{user_id}/{nfe_id}.pdf"
