"""
File name templates used by move and organize.

Supported placeholders: ``{original}`` (stem of the current name),
``{extension}``, ``{type}`` (MIME family), ``{date}``, ``{timestamp}``,
``{category}`` and ``{uploader}``. The extension is kept unless the
template places it explicitly.
"""
import re
from datetime import datetime, timezone
from pathlib import PurePosixPath
from typing import Optional

from asset_admin.core.exceptions import ValidationError

PLACEHOLDER = re.compile(r"\{([a-z_]+)\}")
KNOWN_PLACEHOLDERS = {"original", "extension", "type", "date", "timestamp", "category", "uploader"}
UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9._-]+")


def mime_family(mime_type: Optional[str]) -> str:
    """Coarse file family: images, videos, audio, documents or other."""
    mime_type = (mime_type or "").lower()
    if mime_type.startswith("image/"):
        return "images"
    if mime_type.startswith("video/"):
        return "videos"
    if mime_type.startswith("audio/"):
        return "audio"
    if mime_type.startswith("text/") or mime_type in (
        "application/pdf",
        "application/msword",
        "application/rtf",
    ) or "document" in mime_type or "sheet" in mime_type or "presentation" in mime_type:
        return "documents"
    return "other"


def format_date(value: datetime, date_format: str = "YYYY-MM-DD") -> str:
    return (
        date_format
        .replace("YYYY", f"{value.year:04d}")
        .replace("MM", f"{value.month:02d}")
        .replace("DD", f"{value.day:02d}")
    )


def sanitize_name(name: str) -> str:
    """Replace runs of unsafe characters with ``_``."""
    cleaned = UNSAFE_CHARS.sub("_", name).strip("._")
    return cleaned or "file"


def validate_template(template: str) -> None:
    unknown = set(PLACEHOLDER.findall(template)) - KNOWN_PLACEHOLDERS
    if unknown:
        raise ValidationError(f"Unknown name placeholders: {', '.join(sorted(unknown))}")
    if "/" in template or ".." in template:
        raise ValidationError("Name template must not contain path separators")


def render_name_template(
    template: str,
    original_name: str,
    mime_type: Optional[str] = None,
    category: Optional[str] = None,
    uploader: Optional[str] = None,
    when: Optional[datetime] = None,
    date_format: str = "YYYY-MM-DD",
    sanitize: bool = True
) -> str:
    """
    Render a file name from ``template``.

    Raises:
        ValidationError: For unknown placeholders or templates rendering
            an empty name
    """
    validate_template(template)
    when = when or datetime.now(timezone.utc)
    original = PurePosixPath(original_name)
    extension = original.suffix.lstrip(".")

    values = {
        "original": original.stem,
        "extension": extension,
        "type": mime_family(mime_type),
        "date": format_date(when, date_format),
        "timestamp": str(int(when.timestamp())),
        "category": category or "uncategorized",
        "uploader": uploader or "unknown",
    }
    rendered = PLACEHOLDER.sub(lambda m: values[m.group(1)], template).strip()
    if sanitize:
        rendered = sanitize_name(rendered)
    if not rendered:
        raise ValidationError(f"Template {template!r} produced an empty name")

    if extension and "{extension}" not in template and not rendered.endswith(f".{extension}"):
        rendered = f"{rendered}.{extension}"
    return rendered
