import logging
import secrets
import time
from pathlib import Path
from typing import BinaryIO

from fastapi import APIRouter, Depends, File, UploadFile
from pydantic import BaseModel

from zenzone.auth.dependencies import get_current_user
from zenzone.core import config
from zenzone.core.errors import ValidationFailed
from zenzone.models.user import User

router = APIRouter(tags=['upload'])

logger = logging.getLogger(__name__)

UPLOAD_URL_PREFIX = '/uploads'
DEFAULT_CONTENT_TYPE = 'application/octet-stream'
CHUNK_SIZE = 64 * 1024


class UploadResponse(BaseModel):
    fileUrl: str
    name: str
    type: str
    size: int


def upload_dir() -> Path:
    path = Path(config.UPLOAD_DIR)
    path.mkdir(parents=True, exist_ok=True)
    return path


def stored_filename(original_name: str) -> str:
    suffix = Path(original_name or '').suffix[:16]
    return f'{int(time.time() * 1000)}-{secrets.randbelow(10**9)}{suffix}'


def save_upload(source: BinaryIO, target: Path, limit: int) -> int:
    """Copy ``source`` to ``target`` in chunks, stopping once it exceeds ``limit`` bytes.

    Nothing is left on disk when the copy fails or the file is too large.
    """
    size = 0
    try:
        with target.open('wb') as handle:
            while chunk := source.read(CHUNK_SIZE):
                size += len(chunk)
                if size > limit:
                    raise ValidationFailed(f'Files must be {limit} bytes or smaller.')
                handle.write(chunk)
    except Exception:
        target.unlink(missing_ok=True)
        raise
    return size


@router.post('', response_model=UploadResponse)
def upload_file(file: UploadFile = File(...), current_user: User = Depends(get_current_user)):
    if not file.filename:
        raise ValidationFailed('No file uploaded')

    target = upload_dir() / stored_filename(file.filename)
    size = save_upload(file.file, target, config.MAX_UPLOAD_BYTES)

    logger.info('User %s uploaded %s (%d bytes)', current_user.id, target.name, size)
    return UploadResponse(
        fileUrl=f'{UPLOAD_URL_PREFIX}/{target.name}',
        name=file.filename,
        type=file.content_type or DEFAULT_CONTENT_TYPE,
        size=size,
    )
