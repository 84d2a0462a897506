import os
import re
import secrets
import time
from dataclasses import dataclass, field
from typing import List, Optional

from flask import current_app

from racing_plate.errors import UpstreamFailure, ValidationError
from racing_plate.models import isoformat, utcnow

MB = 1024 * 1024

# Declared content type -> the only extension accepted for it.
ALLOWED_FILE_TYPES = {
    'image/jpeg': '.jpg',
    'image/jpg': '.jpg',
    'image/png': '.png',
    'image/gif': '.gif',
    'image/webp': '.webp',
    'application/pdf': '.pdf',
    'audio/mpeg': '.mp3',
    'audio/wav': '.wav',
    'audio/ogg': '.ogg',
    'video/mp4': '.mp4',
    'video/webm': '.webm',
}

BLOCKED_EXTENSIONS = frozenset({'php', 'js', 'exe', 'bat', 'sh', 'asp', 'jsp', 'pl', 'py', 'rb'})

FILE_SIZE_LIMITS = {
    'free': 5 * MB,
    'premium': 25 * MB,
    'pro': 100 * MB,
}


class UploadRejected(ValidationError):
    message = 'Upload failed'


@dataclass
class StoredFile:
    filename: str
    original_name: str
    size: int
    mimetype: str
    url: str
    path: str
    uploaded_at: object = field(default_factory=utcnow)

    def to_dict(self):
        return {
            'url': self.url,
            'filename': self.filename,
            'original_name': self.original_name,
            'size': self.size,
            'mimetype': self.mimetype,
            'uploaded_at': isoformat(self.uploaded_at),
        }


def size_limit_for(tier: Optional[str]) -> int:
    return FILE_SIZE_LIMITS.get(tier or 'free', FILE_SIZE_LIMITS['free'])


def _stream_size(file_storage) -> int:
    stream = file_storage.stream
    stream.seek(0, os.SEEK_END)
    size = stream.tell()
    stream.seek(0)
    return size


def validate_file(file_storage, tier: Optional[str] = None) -> int:
    """Check type, extension and size; returns the size in bytes."""
    name = file_storage.filename or ''
    if not name:
        raise UploadRejected('No file uploaded')
    # every dotted segment counts, so "shell.php.png" is refused too
    segments = [s.lower() for s in name.split('.')[1:]]
    if any(s in BLOCKED_EXTENSIONS for s in segments):
        raise UploadRejected('Suspicious file extension detected')
    mimetype = (file_storage.mimetype or '').lower()
    expected_ext = ALLOWED_FILE_TYPES.get(mimetype)
    if expected_ext is None:
        raise UploadRejected(f"File type {mimetype or 'unknown'} is not allowed")
    if os.path.splitext(name)[1].lower() != expected_ext:
        raise UploadRejected('File extension does not match file type')
    size = _stream_size(file_storage)
    limit = size_limit_for(tier)
    if size > limit:
        raise UploadRejected(f"File size exceeds limit of {limit // MB}MB")
    return size


def generate_filename(original_name: str) -> str:
    base, ext = os.path.splitext(os.path.basename(original_name))
    safe_base = re.sub(r'[^a-zA-Z0-9]', '_', base)[:50]
    return f"{int(time.time() * 1000)}_{secrets.token_hex(6)}_{safe_base}{ext.lower()}"


def user_directory(media_root: str, user_id: Optional[int]) -> str:
    if user_id is None:
        return media_root
    return os.path.join(media_root, str(int(user_id)))


def public_url(user_id: Optional[int], filename: str) -> str:
    prefix = f"{user_id}/" if user_id is not None else ''
    return f"/media/{prefix}{filename}"


def cleanup(stored: List[StoredFile]) -> None:
    for item in stored:
        try:
            if os.path.exists(item.path):
                os.remove(item.path)
        except OSError as exc:
            current_app.logger.error(f"[media-cleanup] path={item.path} error={exc}")


def save_uploads(files, media_root: str, user_id: Optional[int] = None, tier: Optional[str] = None,
                 max_files: int = 10) -> List[StoredFile]:
    """Validate every file first, then write them all.

    Nothing is written if any file is rejected; if a write fails, every file
    this call started writing is removed.
    """
    files = [f for f in files if f is not None and f.filename]
    if not files:
        raise UploadRejected('No file uploaded')
    if len(files) > max_files:
        raise UploadRejected(f"Maximum {max_files} files allowed per upload")
    sizes = [validate_file(f, tier) for f in files]

    directory = user_directory(media_root, user_id)
    stored: List[StoredFile] = []
    try:
        os.makedirs(directory, exist_ok=True)
        for file_storage, size in zip(files, sizes):
            filename = generate_filename(file_storage.filename)
            path = os.path.join(directory, filename)
            # registered before writing so a partial write is cleaned up too
            stored.append(StoredFile(
                filename=filename,
                original_name=file_storage.filename,
                size=size,
                mimetype=file_storage.mimetype.lower(),
                url=public_url(user_id, filename),
                path=path,
            ))
            file_storage.save(path)
    except OSError as exc:
        cleanup(stored)
        current_app.logger.error(f"[media-upload] write failed dir={directory} error={exc}")
        raise UpstreamFailure('Failed to store upload') from exc
    current_app.logger.info(f"[media-upload] user={user_id} files={len(stored)} bytes={sum(sizes)}")
    return stored


def list_files(media_root: str, user_id: Optional[int] = None) -> List[str]:
    directory = user_directory(media_root, user_id)
    if not os.path.isdir(directory):
        return []
    return sorted(
        name for name in os.listdir(directory)
        if os.path.isfile(os.path.join(directory, name))
    )
