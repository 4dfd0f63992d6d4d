from urllib.parse import urlparse

from config import settings
from core.errors import EmptyContent, InvalidPayload
from models.message import ContentType

PLACEHOLDERS = {
    ContentType.VOICE: "🎵 Voice message",
    ContentType.IMAGE: "📷 Image",
    ContentType.VIDEO: "🎬 Video",
    ContentType.FILE: "📎 File",
}


def parse_content_type(value: str | ContentType) -> ContentType:
    try:
        return ContentType(value)
    except ValueError:
        raise InvalidPayload(f"Unknown content type: {value!r}", content_type=str(value)) from None


def normalize_payload(content_type: ContentType, payload: str | None) -> str:
    """Validate a payload for its content type and return the stored form.

    Text is trimmed. Attachments must already live in blob storage: only an
    absolute http(s) URL is accepted, never inline-encoded bytes.
    """
    payload = (payload or "").strip()
    if not payload:
        raise EmptyContent()

    if content_type is ContentType.TEXT:
        if len(payload) > settings.MAX_TEXT_LENGTH:
            raise InvalidPayload(
                f"Text exceeds {settings.MAX_TEXT_LENGTH} characters",
                content_type=content_type.value,
            )
        return payload

    parsed = urlparse(payload)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise InvalidPayload(
            "Attachments must reference an uploaded file URL",
            content_type=content_type.value,
        )
    return payload


def render_preview(content_type: str | ContentType, payload: str) -> str:
    content_type = ContentType(content_type)
    if content_type.is_attachment:
        return PLACEHOLDERS[content_type]
    limit = settings.PREVIEW_LENGTH
    if len(payload) <= limit:
        return payload
    return payload[: limit - 1].rstrip() + "…"
