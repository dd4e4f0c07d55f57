"""Attachment helpers: image detection and resizing, document text extraction."""

import io
import logging
import zipfile
from pathlib import PurePath

from docx import Document
from docx.opc.exceptions import PackageNotFoundError
from PIL import Image, UnidentifiedImageError
from PyPDF2 import PdfReader
from PyPDF2.errors import PdfReadError

logger = logging.getLogger(__name__)

# MCP clients reject image content much above 1 MB once base64-encoded
MCP_IMAGE_MAX_BYTES = 750 * 1024

_IMAGE_EXTENSIONS = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".bmp": "image/bmp",
}
_TEXT_EXTENSIONS = {
    ".txt", ".md", ".csv", ".tsv", ".json", ".xml", ".html", ".htm",
    ".ics", ".vcf", ".log", ".yaml", ".yml", ".eml",
}
_TEXT_TYPES = {"application/json", "application/xml", "text/calendar", "message/rfc822"}
_PDF_TYPE = "application/pdf"
_DOCX_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"


def _extension(filename: str | None) -> str:
    return PurePath(filename).suffix.lower() if filename else ""


def infer_image_mime(mime: str | None, filename: str | None = None) -> str | None:
    """Return an image MIME type from the declared type or the file extension."""
    if mime and mime.lower().startswith("image/"):
        return mime.lower()
    return _IMAGE_EXTENSIONS.get(_extension(filename))


def is_image(mime: str | None, filename: str | None = None) -> bool:
    return infer_image_mime(mime, filename) is not None


def resize_image(data: bytes, mime: str, max_bytes: int = MCP_IMAGE_MAX_BYTES) -> tuple[bytes, str]:
    """Shrink an image below ``max_bytes``.

    Images already within the limit are returned unchanged.  Larger ones are
    re-encoded as JPEG, lowering quality first and then dimensions.  Raises
    ValueError for data Pillow cannot decode.
    """
    if len(data) <= max_bytes:
        return data, mime

    try:
        image = Image.open(io.BytesIO(data))
        image.load()
    except (UnidentifiedImageError, OSError) as exc:
        raise ValueError(f"Cannot decode image: {exc}") from exc

    if image.mode not in ("RGB", "L"):
        image = image.convert("RGB")

    scale = 1.0
    while True:
        size = (max(1, int(image.width * scale)), max(1, int(image.height * scale)))
        frame = image if scale == 1.0 else image.resize(size, Image.Resampling.LANCZOS)
        for quality in (85, 70, 55, 40):
            buffer = io.BytesIO()
            frame.save(buffer, format="JPEG", quality=quality, optimize=True)
            if buffer.tell() <= max_bytes:
                logger.debug(
                    "Resized image %dx%d → %dx%d q=%d (%d → %d bytes)",
                    image.width, image.height, *size, quality, len(data), buffer.tell(),
                )
                return buffer.getvalue(), "image/jpeg"
        if size == (1, 1):
            return buffer.getvalue(), "image/jpeg"
        scale *= 0.75


def extract_text(data: bytes, mime: str | None, filename: str | None = None) -> str | None:
    """Best-effort text extraction; None for unsupported or unreadable files."""
    mime = (mime or "").lower()
    ext = _extension(filename)

    if mime == _PDF_TYPE or ext == ".pdf":
        try:
            reader = PdfReader(io.BytesIO(data))
            return "\n\n".join(page.extract_text() or "" for page in reader.pages)
        except (PdfReadError, ValueError, OSError) as exc:
            logger.warning("PDF extraction failed for %s: %s", filename, exc)
            return None

    if mime == _DOCX_TYPE or ext == ".docx":
        try:
            doc = Document(io.BytesIO(data))
            return "\n\n".join(p.text for p in doc.paragraphs if p.text.strip())
        except (PackageNotFoundError, zipfile.BadZipFile, ValueError, KeyError) as exc:
            logger.warning("DOCX extraction failed for %s: %s", filename, exc)
            return None

    if mime.startswith("text/") or mime in _TEXT_TYPES or ext in _TEXT_EXTENSIONS:
        return data.decode("utf-8", errors="replace")

    return None
