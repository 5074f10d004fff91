"""File type classification for attachments."""

from dataclasses import dataclass
import os

IMAGE_EXTENSIONS = {".png", ".jpg", ".jpeg", ".gif", ".webp", ".bmp", ".heic", ".heif"}

TEXT_EXTENSIONS = {
    ".txt", ".md", ".markdown", ".csv", ".tsv", ".json", ".yaml", ".yml", ".toml",
    ".xml", ".html", ".htm", ".css", ".js", ".jsx", ".ts", ".tsx", ".py", ".rb",
    ".go", ".rs", ".java", ".kt", ".swift", ".c", ".h", ".cpp", ".hpp", ".cs",
    ".php", ".sh", ".sql", ".ini", ".cfg", ".log",
}

TEXT_MIME_TYPES = {
    "application/json",
    "application/xml",
    "application/x-yaml",
    "application/yaml",
    "application/javascript",
    "application/x-sh",
    "application/sql",
}


@dataclass
class FileTypeInfo:
    is_image: bool
    is_text: bool
    is_pdf: bool


def is_image_mime_type(mime_type: str) -> bool:
    return mime_type.lower().startswith("image/")


def get_file_type_info(filename: str, mime_type: str | None) -> FileTypeInfo:
    """Classify a file by extension, falling back to its MIME type."""
    ext = os.path.splitext(filename or "")[1].lower()
    mime = (mime_type or "").lower()

    is_image = ext in IMAGE_EXTENSIONS or is_image_mime_type(mime)
    is_pdf = ext == ".pdf" or mime == "application/pdf"
    is_text = not is_pdf and (
        ext in TEXT_EXTENSIONS or mime.startswith("text/") or mime in TEXT_MIME_TYPES
    )
    return FileTypeInfo(is_image=is_image, is_text=is_text, is_pdf=is_pdf)
