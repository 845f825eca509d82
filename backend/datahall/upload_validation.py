from typing import Iterable, Optional

from datahall.errors import ValidationFailed


def validate_upload(
    file_name: str,
    content_type: str,
    size: int,
    *,
    allowed_types: Iterable[str],
    max_size_bytes: int,
) -> None:
    if not file_name.strip():
        raise ValidationFailed("A file name is required", field="file")

    whitelist = [item for item in allowed_types if item]
    if whitelist and content_type not in whitelist:
        raise ValidationFailed(f"{content_type} is not an allowed file type", field="file", code="INVALID_FILE_TYPE")

    if size <= 0:
        raise ValidationFailed("Uploaded file is empty", field="file")

    if size > max_size_bytes:
        limit_mb = max_size_bytes / (1024 * 1024)
        raise ValidationFailed(
            f"File size exceeds the limit of {limit_mb:.2f}MB", field="file", code="FILE_TOO_LARGE"
        )


def normalized_content_type(content_type: Optional[str]) -> str:
    if not content_type:
        return "application/octet-stream"
    return content_type.split(";", 1)[0].strip().lower()
