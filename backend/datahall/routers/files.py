import logging
import mimetypes

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import FileResponse

from datahall.storage import LocalStorage, StorageBackend, get_storage

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/files", tags=["files"])


@router.get("/signed/{token}")
def download_signed_file(token: str, storage: StorageBackend = Depends(get_storage)):
    if not isinstance(storage, LocalStorage):
        raise HTTPException(status_code=404, detail="Signed downloads are served by the storage provider")

    try:
        path = storage.open_signed(token)
    except FileNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Stored file not found") from exc
    except (ValueError, KeyError) as exc:
        logger.info("Rejected signed download token: %s", exc)
        raise HTTPException(status_code=403, detail="Invalid or expired download link") from exc

    # Object keys are "<hex>_<original name>".
    download_name = path.name.split("_", 1)[-1]
    media_type = mimetypes.guess_type(download_name)[0] or "application/octet-stream"
    return FileResponse(path=path, media_type=media_type, filename=download_name)
