# storage_gateway/core/validation.py
"""
Checks applied to every incoming file before it reaches a provider.
"""
from storage_gateway.core.results import UploadedFile
from storage_gateway.errors import ValidationError

MAX_FILE_SIZE = 10 * 1024 * 1024

DANGEROUS_EXTENSIONS = ("exe", "bat", "cmd", "com", "pif", "scr", "vbs", "js", "jar", "sh")

# detected from the extension, not from what the client claims
MIME_TYPES = {
    "pdf": "application/pdf",
    "doc": "application/msword",
    "docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "xls": "application/vnd.ms-excel",
    "xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "txt": "text/plain",
    "csv": "text/csv",
    "json": "application/json",
    "zip": "application/zip",
    "mp3": "audio/mpeg",
    "mp4": "video/mp4",
}
ALLOWED_MIME_TYPES = frozenset(MIME_TYPES.values())


def _extension(filename: str) -> str:
    return filename.rsplit(".", 1)[-1].lower() if "." in filename else ""


def detect_mime_type(filename: str) -> str:
    return MIME_TYPES.get(_extension(filename), "application/octet-stream")


def validate_upload(upload: UploadedFile, max_size: int = MAX_FILE_SIZE) -> UploadedFile:
    """Raise ValidationError unless the file is safe to store."""
    name = (upload.filename or "").strip()
    if not name:
        raise ValidationError("File must have a valid name")
    if not upload.content:
        raise ValidationError("File is empty", details={"filename": name})
    if upload.size > max_size:
        raise ValidationError(
            f"File too large (max {max_size // (1024 * 1024)}MB)",
            details={"filename": name, "size": upload.size},
        )
    extension = _extension(name)
    if extension in DANGEROUS_EXTENSIONS:
        raise ValidationError(
            f"File type '{extension}' is not allowed for security reasons", details={"filename": name}
        )
    mime_type = detect_mime_type(name)
    if mime_type not in ALLOWED_MIME_TYPES:
        raise ValidationError(
            f"Invalid file type '{mime_type}'",
            details={"filename": name, "allowed": sorted(ALLOWED_MIME_TYPES)},
        )
    if ".." in name or "/" in name or "\\" in name:
        raise ValidationError("Invalid characters in filename", details={"filename": name})
    return upload
