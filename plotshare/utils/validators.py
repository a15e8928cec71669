"""Input validators shared by dispute filing and the message thread."""

from urllib.parse import urlparse

from plotshare.config import settings
from plotshare.exceptions import InvalidContent


def clean_text(value: str | None, field: str, max_length: int, *, required: bool = True) -> str | None:
    """Strip surrounding whitespace and enforce presence and length."""
    if value is None:
        if required:
            raise InvalidContent(f"{field} is required")
        return None
    if not isinstance(value, str):
        raise InvalidContent(f"{field} must be text")
    cleaned = value.strip()
    if not cleaned:
        if required:
            raise InvalidContent(f"{field} must not be empty")
        return None
    if len(cleaned) > max_length:
        raise InvalidContent(f"{field} must be at most {max_length} characters")
    return cleaned


def validate_attachment_refs(refs: list[str] | None, field: str = "attachments") -> list[str]:
    """Attachment references must be https URLs (uploaded to the media CDN beforehand)."""
    if refs is None:
        return []
    if len(refs) > settings.DISPUTE_MAX_ATTACHMENTS:
        raise InvalidContent(f"At most {settings.DISPUTE_MAX_ATTACHMENTS} {field} are allowed")

    cleaned: list[str] = []
    for ref in refs:
        if not isinstance(ref, str):
            raise InvalidContent(f"Malformed {field} reference")
        ref = ref.strip()
        if not ref or len(ref) > settings.DISPUTE_MAX_ATTACHMENT_URL_LENGTH:
            raise InvalidContent(f"Malformed {field} reference")
        parsed = urlparse(ref)
        if parsed.scheme != "https" or not parsed.netloc:
            raise InvalidContent(f"Malformed {field} reference: only https URLs are accepted")
        cleaned.append(ref)
    return cleaned
