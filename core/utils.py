# core/utils.py
"""
Core Utility Functions.

Helpers shared by the auth and file services: file type classification,
size formatting, sort parsing, dashboard aggregation, retrying of backend
calls and avatar generation.
"""
import asyncio
import base64
import datetime
import logging
from html import escape
from typing import Awaitable, Callable, Dict, Iterable, List, Tuple, TypeVar

from core.models import FileDocument, TypeUsage, UsageSummary

logger = logging.getLogger("NestDrive_Core").getChild("Utils")

T = TypeVar("T")

# --- File Type Classification ---

FILE_TYPE_EXTENSIONS: Dict[str, Tuple[str, ...]] = {
    "image": ("jpg", "jpeg", "png", "gif", "webp", "svg"),
    "document": ("pdf", "doc", "docx", "txt", "rtf"),
    "spreadsheet": ("xls", "xlsx", "csv"),
    "presentation": ("ppt", "pptx"),
    "video": ("mp4", "avi", "mov", "wmv", "flv", "webm"),
    "audio": ("mp3", "wav", "flac", "aac"),
    "archive": ("zip", "rar", "7z", "tar", "gz"),
    "code": ("js", "ts", "jsx", "tsx", "html", "css", "json", "xml", "py", "java", "cpp", "c"),
}
_EXTENSION_TO_TYPE = {ext: file_type for file_type, exts in FILE_TYPE_EXTENSIONS.items() for ext in exts}
FILE_TYPES = tuple(FILE_TYPE_EXTENSIONS) + ("other",)

def get_file_type(file_name: str) -> Tuple[str, str]:
    """Returns (type, extension) for a file name, based on its last extension."""
    extension = file_name.rsplit(".", 1)[-1].lower() if "." in file_name else ""
    return _EXTENSION_TO_TYPE.get(extension, "other"), extension


def format_bytes(size: int, decimals: int = 2) -> str:
    """Formats a byte count for display (base 1024)."""
    if not size or size <= 0:
        return "0 Bytes"
    units = ["Bytes", "KB", "MB", "GB", "TB"]
    index = 0
    value = float(size)
    while value >= 1024 and index < len(units) - 1:
        value /= 1024
        index += 1
    formatted = f"{value:.{max(decimals, 0)}f}"
    if "." in formatted:
        formatted = formatted.rstrip("0").rstrip(".")
    return f"{formatted} {units[index]}"


# --- Sorting ---

SORT_FIELDS = {"date": "created_at", "name": "name", "size": "size"}
DEFAULT_SORT = "date-desc"

def parse_sort(sort: str | None) -> Tuple[str, bool]:
    """
    Parses '<field>-<asc|desc>' into (column, descending).
    Anything unrecognised falls back to newest first.
    """
    field, _, direction = (sort or DEFAULT_SORT).partition("-")
    if field not in SORT_FIELDS or direction not in ("asc", "desc"):
        logger.debug(f"Unrecognised sort '{sort}', using '{DEFAULT_SORT}'.")
        field, direction = DEFAULT_SORT.split("-")
    return SORT_FIELDS[field], direction == "desc"


# --- Dashboard Usage ---

USAGE_CATEGORIES = (
    ("Documents", ("document",), "/documents"),
    ("Images", ("image",), "/images"),
    ("Media", ("video", "audio"), "/media"),
)

def calculate_percentage(used: int, total: int) -> float:
    if total <= 0:
        return 0.0
    return round(min(used / total * 100, 100.0), 2)


def build_usage_summary(files: Iterable[FileDocument], total_bytes: int) -> UsageSummary:
    """Groups files into dashboard categories with size and latest activity."""
    categories = {title: TypeUsage(title=title, url=url) for title, _, url in USAGE_CATEGORIES}
    others = TypeUsage(title="Others", url="/others")
    type_to_category = {t: categories[title] for title, types, _ in USAGE_CATEGORIES for t in types}

    used = 0
    for file in files:
        bucket = type_to_category.get(file.type, others)
        bucket.size += file.size
        used += file.size
        file_date = file.updated_at or file.created_at
        if file_date and (bucket.latest_date is None or file_date > bucket.latest_date):
            bucket.latest_date = file_date

    return UsageSummary(
        used=used,
        all=total_bytes,
        percentage=calculate_percentage(used, total_bytes),
        categories=[*categories.values(), others],
    )


# --- Retry ---

async def run_with_retry(
    fn: Callable[[], Awaitable[T]],
    attempts: int = 3,
    delay: float = 0.5,
    label: str = "operation",
) -> T:
    """
    Awaits fn(), retrying on any exception with a linear backoff (delay * attempt).
    The last error is re-raised once attempts are exhausted.
    """
    attempts = max(attempts, 1)
    for attempt in range(1, attempts + 1):
        try:
            return await fn()
        except Exception as e:
            if attempt == attempts:
                logger.error(f"{label} failed after {attempts} attempt(s): {e}")
                raise
            wait = delay * attempt
            logger.warning(f"{label} failed (attempt {attempt}/{attempts}): {e}. Retrying in {wait:.2f}s.")
            await asyncio.sleep(wait)


# --- Avatars ---

AVATAR_COLORS = ("#FA7275", "#56B8FF", "#3DD9B3", "#EEA8FD", "#F9AB72", "#A3B2C7")

def get_initials(full_name: str) -> str:
    parts = [p for p in full_name.split() if p]
    if not parts:
        return "?"
    if len(parts) == 1:
        return parts[0][:2].upper()
    return (parts[0][0] + parts[-1][0]).upper()


def generate_avatar(full_name: str, size: int = 256) -> str:
    """Builds an initials avatar as an SVG data URL."""
    initials = escape(get_initials(full_name))
    color = AVATAR_COLORS[sum(map(ord, full_name)) % len(AVATAR_COLORS)]
    svg = (
        f'<svg xmlns="http://www.w3.org/2000/svg" width="{size}" height="{size}" viewBox="0 0 {size} {size}">'
        f'<rect width="100%" height="100%" fill="{color}"/>'
        f'<text x="50%" y="50%" dy=".35em" text-anchor="middle" font-family="Arial, sans-serif" '
        f'font-size="{size // 2.5:.0f}" fill="#FFFFFF">{initials}</text></svg>'
    )
    encoded = base64.b64encode(svg.encode("utf-8")).decode("ascii")
    return f"data:image/svg+xml;base64,{encoded}"


def normalise_emails(emails: Iterable[str]) -> List[str]:
    """Trims, lower-cases and de-duplicates emails, dropping empties. Order is kept."""
    seen: Dict[str, None] = {}
    for email in emails:
        cleaned = (email or "").strip().lower()
        if cleaned:
            seen.setdefault(cleaned, None)
    return list(seen)


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def strip_extension(name: str, extension: str) -> str:
    """Removes a trailing '.<extension>' the user may have typed."""
    name = name.strip()
    if extension and name.lower().endswith(f".{extension.lower()}"):
        return name[: -(len(extension) + 1)].strip()
    return name
