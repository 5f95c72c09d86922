"""
File classification and content loading.

classify() maps a path or URL to a MIME type and a coarse category by
extension only. load_files() turns paths and URLs into content parts:
inline base64 data, provider-fetched file URIs, fenced text for structured
formats, or error-text parts for inputs that could not be read.
"""

from __future__ import annotations

import asyncio
import base64
import json
import logging
import os
import tempfile
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from urllib.parse import urlparse

import yaml

from gemini_tools_mcp.config import LOGGER_NAME
from gemini_tools_mcp.types import (
    ErrorCategory,
    ErrorPart,
    FileUriPart,
    GeminiToolError,
    InlineDataPart,
    Part,
    TextPart,
)

logger = logging.getLogger(LOGGER_NAME)

DEFAULT_MIME_TYPE = "application/octet-stream"
UNKNOWN_CATEGORY = "unknown"


# =============================================================================
# Extension Tables
# =============================================================================

MIME_TYPES: dict[str, str] = {
    # Images
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".heic": "image/heic",
    ".heif": "image/heif",
    ".bmp": "image/bmp",
    ".tif": "image/tiff",
    ".tiff": "image/tiff",
    ".svg": "image/svg+xml",
    # Documents
    ".pdf": "application/pdf",
    ".doc": "application/msword",
    ".docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    ".rtf": "application/rtf",
    ".odt": "application/vnd.oasis.opendocument.text",
    ".xls": "application/vnd.ms-excel",
    ".xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    ".ods": "application/vnd.oasis.opendocument.spreadsheet",
    ".ppt": "application/vnd.ms-powerpoint",
    ".pptx": "application/vnd.openxmlformats-officedocument.presentationml.presentation",
    ".odp": "application/vnd.oasis.opendocument.presentation",
    # Text
    ".txt": "text/plain",
    ".md": "text/markdown",
    ".markdown": "text/markdown",
    ".rst": "text/x-rst",
    ".log": "text/plain",
    ".html": "text/html",
    ".htm": "text/html",
    ".css": "text/css",
    ".csv": "text/csv",
    ".tsv": "text/tab-separated-values",
    # Data
    ".json": "application/json",
    ".xml": "application/xml",
    ".yaml": "application/x-yaml",
    ".yml": "application/x-yaml",
    ".toml": "application/toml",
    # Code
    ".js": "text/javascript",
    ".mjs": "text/javascript",
    ".jsx": "text/javascript",
    ".ts": "text/x-typescript",
    ".tsx": "text/x-typescript",
    ".py": "text/x-python",
    ".java": "text/x-java",
    ".c": "text/x-c",
    ".h": "text/x-c",
    ".cpp": "text/x-c++",
    ".cc": "text/x-c++",
    ".hpp": "text/x-c++",
    ".cs": "text/x-csharp",
    ".go": "text/x-go",
    ".rs": "text/x-rust",
    ".rb": "text/x-ruby",
    ".php": "text/x-php",
    ".swift": "text/x-swift",
    ".kt": "text/x-kotlin",
    ".scala": "text/x-scala",
    ".sh": "text/x-shellscript",
    ".sql": "text/x-sql",
    # Audio
    ".mp3": "audio/mpeg",
    ".wav": "audio/wav",
    ".ogg": "audio/ogg",
    ".flac": "audio/flac",
    ".aac": "audio/aac",
    ".m4a": "audio/mp4",
    # Video
    ".mp4": "video/mp4",
    ".mpeg": "video/mpeg",
    ".mov": "video/quicktime",
    ".avi": "video/x-msvideo",
    ".webm": "video/webm",
    ".mkv": "video/x-matroska",
    ".flv": "video/x-flv",
    ".wmv": "video/x-ms-wmv",
    # Archives
    ".zip": "application/zip",
    ".tar": "application/x-tar",
    ".gz": "application/gzip",
    ".7z": "application/x-7z-compressed",
    ".rar": "application/vnd.rar",
    # Other
    ".bin": "application/octet-stream",
    ".exe": "application/octet-stream",
}

FILE_TYPE_CATEGORIES: dict[str, frozenset[str]] = {
    "image": frozenset(m for m in MIME_TYPES.values() if m.startswith("image/")),
    "document": frozenset({
        "application/pdf",
        "application/msword",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        "application/rtf",
        "application/vnd.oasis.opendocument.text",
    }),
    "spreadsheet": frozenset({
        "application/vnd.ms-excel",
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        "application/vnd.oasis.opendocument.spreadsheet",
        "text/csv",
        "text/tab-separated-values",
    }),
    "presentation": frozenset({
        "application/vnd.ms-powerpoint",
        "application/vnd.openxmlformats-officedocument.presentationml.presentation",
        "application/vnd.oasis.opendocument.presentation",
    }),
    "text": frozenset({"text/plain", "text/markdown", "text/x-rst", "text/html", "text/css"}),
    "data": frozenset({"application/json", "application/xml", "application/x-yaml", "application/toml"}),
    "code": frozenset({
        "text/javascript",
        "text/x-typescript",
        "text/x-python",
        "text/x-java",
        "text/x-c",
        "text/x-c++",
        "text/x-csharp",
        "text/x-go",
        "text/x-rust",
        "text/x-ruby",
        "text/x-php",
        "text/x-swift",
        "text/x-kotlin",
        "text/x-scala",
        "text/x-shellscript",
        "text/x-sql",
    }),
    "audio": frozenset(m for m in MIME_TYPES.values() if m.startswith("audio/")),
    "video": frozenset(m for m in MIME_TYPES.values() if m.startswith("video/")),
    "archive": frozenset({
        "application/zip",
        "application/x-tar",
        "application/gzip",
        "application/x-7z-compressed",
        "application/vnd.rar",
    }),
    "binary": frozenset({DEFAULT_MIME_TYPE}),
}

# Formats the provider handles poorly as inline data; sent as fenced text instead
STRUCTURED_TEXT_FENCES: dict[str, str] = {
    "application/json": "json",
    "application/x-yaml": "yaml",
    "application/xml": "xml",
}

TEXT_CATEGORIES = frozenset({"text", "code", "data"})
LARGE_FILE_EXTENSIONS = frozenset({".pdf", ".png", ".jpg", ".jpeg"})

# Hosts a remote URL reference may never point at
BLOCKED_HOSTS: frozenset[str] = frozenset([
    "localhost",
    "localhost.localdomain",
    "127.0.0.1",
    "::1",
    "0.0.0.0",
    "metadata.google.internal",
    "metadata.goog",
    "169.254.169.254",
])

BLOCKED_PREFIXES: tuple[str, ...] = (
    "10.",
    "127.",
    "169.254.",
    "192.168.",
    *(f"172.{n}." for n in range(16, 32)),
    "fd",
    "fc",
    "fe80:",
)


# =============================================================================
# Classification
# =============================================================================


@dataclass(frozen=True, slots=True)
class FileInfo:
    """Result of classify()."""

    mime_type: str
    category: str


def is_remote(path_or_url: str) -> bool:
    return path_or_url.startswith(("http://", "https://", "gs://"))


def _extension(path_or_url: str) -> str:
    if path_or_url.startswith("gs://"):
        # gs://bucket/object -> object
        _, _, obj = path_or_url[len("gs://"):].partition("/")
        return PurePosixPath(obj).suffix.lower()
    if path_or_url.startswith(("http://", "https://")):
        return PurePosixPath(urlparse(path_or_url).path).suffix.lower()
    return Path(path_or_url).suffix.lower()


def get_mime_type(path_or_url: str) -> str:
    """MIME type by extension; unknown or malformed inputs get the binary fallback."""
    try:
        ext = _extension(path_or_url)
    except ValueError:
        logger.debug("Could not parse %s, treating as binary", path_or_url)
        return DEFAULT_MIME_TYPE
    return MIME_TYPES.get(ext, DEFAULT_MIME_TYPE)


def get_category(mime_type: str) -> str:
    for category, mime_types in FILE_TYPE_CATEGORIES.items():
        if mime_type in mime_types:
            return category
    return UNKNOWN_CATEGORY


def classify(path_or_url: str) -> FileInfo:
    """Map a path or URL to its MIME type and category. Never raises."""
    mime_type = get_mime_type(path_or_url)
    category = get_category(mime_type)
    if mime_type == DEFAULT_MIME_TYPE and _looks_unknown(path_or_url):
        category = UNKNOWN_CATEGORY
    return FileInfo(mime_type=mime_type, category=category)


def _looks_unknown(path_or_url: str) -> bool:
    try:
        return _extension(path_or_url) not in MIME_TYPES
    except ValueError:
        return True


def is_large_file(path_or_url: str) -> bool:
    """Whether the file type usually needs the large-context model."""
    try:
        return _extension(path_or_url) in LARGE_FILE_EXTENSIONS
    except ValueError:
        return False


# =============================================================================
# Loading
# =============================================================================


def is_blocked_host(url: str) -> bool:
    """Whether an http(s) URL points at a local, private or metadata host."""
    try:
        host = (urlparse(url).hostname or "").lower()
    except ValueError:
        return True
    if not host or host in BLOCKED_HOSTS:
        return True
    return host.startswith(BLOCKED_PREFIXES)


def _remote_part(url: str) -> Part:
    if url.startswith("gs://"):
        return FileUriPart(mime_type=get_mime_type(url), uri=url)
    if is_blocked_host(url):
        logger.warning("Refusing URL with private or local host: %s", url)
        return ErrorPart(text=f"[Error processing file: {url}]", path=url)
    return TextPart(text=f"[URL reference: {url}]\n\nPlease access and process this URL.")


def _structured_text(raw: str, fence: str, path: str = "") -> str:
    # Unparseable content is still sent, unchanged
    if fence == "json":
        try:
            raw = json.dumps(json.loads(raw), indent=2, ensure_ascii=False)
        except ValueError as e:
            logger.debug("Sending %s as raw JSON text: %s", path, e)
    elif fence == "yaml":
        try:
            yaml.safe_load(raw)
        except yaml.YAMLError as e:
            logger.debug("Sending %s as raw YAML text: %s", path, e)
    return f"```{fence}\n{raw}\n```"


def _read_part(path: str) -> Part:
    file_path = Path(path).expanduser()
    if not file_path.is_file():
        raise FileNotFoundError(path)

    mime_type = get_mime_type(path)
    fence = STRUCTURED_TEXT_FENCES.get(mime_type)
    if fence:
        return TextPart(text=_structured_text(file_path.read_text(encoding="utf-8"), fence, path))

    data = base64.b64encode(file_path.read_bytes()).decode("ascii")
    return InlineDataPart(mime_type=mime_type, data=data)


def load_file(path_or_url: str) -> Part:
    """Load one input. Failures become error-text parts."""
    if is_remote(path_or_url):
        return _remote_part(path_or_url)
    try:
        return _read_part(path_or_url)
    except FileNotFoundError:
        logger.warning("File not found: %s", path_or_url)
        return ErrorPart(text=f"[Error: File not found: {path_or_url}]", path=path_or_url)
    except (OSError, ValueError) as e:
        logger.warning("Failed to load %s: %s", path_or_url, e)
        return ErrorPart(text=f"[Error processing file: {path_or_url}]", path=path_or_url)


async def load_files(paths: Sequence[str]) -> list[Part]:
    """Load every input concurrently. Returns one part per input, in order."""
    return list(await asyncio.gather(*(asyncio.to_thread(load_file, p) for p in paths)))


# =============================================================================
# Concatenation
# =============================================================================

FILE_SEPARATOR = "\n\n------- NEW FILE -------\n\n"


def _file_header(index: int, path: str) -> str:
    return f"\n\n===== FILE {index}: {os.path.basename(path)} =====\n\n"


def _write_combined(paths: Sequence[str]) -> Path:
    sections = []
    for index, path in enumerate(paths, 1):
        file_path = Path(path).expanduser()
        if not file_path.is_file():
            raise GeminiToolError(
                ErrorCategory.FILE_ERROR,
                f"File not found: {path}",
                {"path": path},
            )
        body = file_path.read_text(encoding="utf-8", errors="replace")
        sections.append(_file_header(index, path) + body)

    fd, tmp_path = tempfile.mkstemp(prefix="multifile-", suffix=".txt")
    combined = Path(tmp_path)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(FILE_SEPARATOR.join(sections))
    except OSError:
        combined.unlink(missing_ok=True)
        raise
    logger.debug("Combined %d files into %s", len(paths), combined)
    return combined


@asynccontextmanager
async def concatenate_files(paths: Sequence[str]) -> AsyncIterator[Path]:
    """Write local text files into one temporary combined document.

    Reading and writing happen off the event loop. The scratch file is
    removed when the context exits.
    """
    combined = await asyncio.to_thread(_write_combined, paths)
    try:
        yield combined
    finally:
        combined.unlink(missing_ok=True)


def combined_file_preamble(paths: Sequence[str]) -> str:
    names = ", ".join(os.path.basename(p) for p in paths)
    return f"This is a combined file containing the contents of {len(paths)} files: {names}.\n\n"
