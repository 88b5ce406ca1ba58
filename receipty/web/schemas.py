from __future__ import annotations

"""
Pydantic schemas for the receipty API (v1).

These models validate incoming print submissions. Limits are applied via the
validation context passed at runtime (max_chars, max_image_bytes), so the
env-driven settings do not need to be imported here.
"""

import base64
import binascii
from typing import Optional

from pydantic import BaseModel, Field, ValidationInfo, field_validator, model_validator

from receipty.core.text import sanitize_text

ALLOWED_IMAGE_MIMES = ("image/png", "image/jpeg", "image/gif", "image/bmp", "image/webp")


class PrintRequest(BaseModel):
    """A print submission: text, an image, or both."""

    text: Optional[str] = Field(
        default=None,
        description="Text to print. Control characters are dropped; CRLF/CR become LF.",
        examples=["Hello\nWorld"],
    )
    image: Optional[bytes] = Field(
        default=None,
        description="Base64-encoded image printed below the text as a 1-bit raster.",
    )
    image_mime: Optional[str] = Field(
        default=None,
        description="MIME type of the image; detected from the data when omitted.",
        examples=["image/png"],
    )

    @field_validator("text")
    @classmethod
    def _text_rules(cls, v: Optional[str], info: ValidationInfo) -> Optional[str]:
        if v is None:
            return None
        cleaned = sanitize_text(v)
        limits = (info.context or {}).get("limits", {})
        max_chars = int(limits.get("max_chars", 1000))
        if len(cleaned) > max_chars:
            raise ValueError(f"text exceeds {max_chars} characters")
        return cleaned

    @field_validator("image", mode="before")
    @classmethod
    def _decode_image(cls, v, info: ValidationInfo):
        if v is None or v == "":
            return None
        if isinstance(v, (bytes, bytearray)):
            data = bytes(v)
        else:
            try:
                raw = str(v)
                if raw.startswith("data:") and "," in raw:
                    raw = raw.split(",", 1)[1]
                data = base64.b64decode(raw, validate=True)
            except (binascii.Error, ValueError):
                raise ValueError("image must be base64-encoded") from None
        limits = (info.context or {}).get("limits", {})
        max_bytes = int(limits.get("max_image_bytes", 5 * 1024 * 1024))
        if not data:
            raise ValueError("image is empty")
        if len(data) > max_bytes:
            raise ValueError(f"image exceeds {max_bytes} bytes")
        return data

    @field_validator("image_mime")
    @classmethod
    def _mime_allowed(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip().lower()
        if v not in ALLOWED_IMAGE_MIMES:
            raise ValueError(f"Unsupported image type. Use one of: {', '.join(ALLOWED_IMAGE_MIMES)}")
        return v

    @model_validator(mode="after")
    def _require_content(self) -> "PrintRequest":
        if self.image is None:
            if self.text is None:
                raise ValueError("text is required")
            if not self.text:
                raise ValueError("text must include printable characters")
        return self


class Links(BaseModel):
    self: str
    job: str


class JobAcceptedResponse(BaseModel):
    id: int
    status: str = "queued"
    links: Links


__all__ = ["ALLOWED_IMAGE_MIMES", "JobAcceptedResponse", "Links", "PrintRequest"]
