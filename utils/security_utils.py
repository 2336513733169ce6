"""
Security utilities for sticker upload validation and password strength
"""
import re
from pathlib import Path
from typing import Optional

from backend.utils.errors import InvalidArgumentError


# Security constants
ALLOWED_MIME_TYPES = [
    "image/png",
    "image/jpeg",
    "image/webp",
    "image/gif",
]

ALLOWED_EXTENSIONS = [".png", ".jpg", ".jpeg", ".webp", ".gif"]

# Stickers are small; 2MB in bytes
MAX_FILE_SIZE = 2 * 1024 * 1024


def sanitize_filename(filename: str) -> str:
    """
    Sanitize filename to prevent path traversal attacks.

    Removes:
    - Directory separators (/ and \\)
    - Path traversal sequences (..)
    - Null bytes (\\x00)
    - Any other potentially dangerous characters

    Args:
        filename: Original filename

    Returns:
        Sanitized filename safe for use in object keys
    """
    if not filename:
        raise ValueError("Filename cannot be empty")

    filename = filename.replace("\x00", "")
    filename = filename.replace("/", "").replace("\\", "")
    while ".." in filename:
        filename = filename.replace("..", "")

    # Keep letters, numbers, dots, hyphens and underscores
    filename = re.sub(r'[^a-zA-Z0-9._\-]', '', filename)
    filename = filename.strip('. ')

    if not filename:
        raise ValueError("Filename is invalid after sanitization")

    if len(filename) > 100:
        ext = Path(filename).suffix
        filename = Path(filename).stem[:100 - len(ext)] + ext

    return filename


def get_file_extension(filename: str) -> str:
    """File extension with leading dot (e.g. ".png"), lowercased, or empty string."""
    return Path(filename).suffix.lower()


def detect_mime_type_from_content(content: bytes) -> Optional[str]:
    """
    Detect image MIME type from file signatures (magic bytes).

    Returns:
        Detected MIME type or None if unknown
    """
    if not content:
        return None
    if content[:8] == b'\x89PNG\r\n\x1a\n':
        return "image/png"
    if content[:3] == b'\xff\xd8\xff':
        return "image/jpeg"
    if content[:4] == b'RIFF' and len(content) > 12 and content[8:12] == b'WEBP':
        return "image/webp"
    if content[:6] in (b'GIF87a', b'GIF89a'):
        return "image/gif"
    return None


def validate_sticker_upload(filename: Optional[str], content: bytes) -> str:
    """
    Validate an uploaded sticker image.

    Checks extension, size, and (when the signature is recognised) that the
    content really is an allowed image type.

    Returns:
        Sanitized filename

    Raises:
        InvalidArgumentError: If any validation fails
    """
    try:
        sanitized = sanitize_filename(filename or "")
    except ValueError as e:
        raise InvalidArgumentError(str(e))

    ext = get_file_extension(sanitized)
    if ext not in ALLOWED_EXTENSIONS:
        raise InvalidArgumentError(
            f"File extension '{ext}' is not allowed. Allowed extensions: {', '.join(ALLOWED_EXTENSIONS)}"
        )

    if len(content) == 0:
        raise InvalidArgumentError("File is empty")

    if len(content) > MAX_FILE_SIZE:
        size_mb = len(content) / (1024 * 1024)
        max_mb = MAX_FILE_SIZE / (1024 * 1024)
        raise InvalidArgumentError(f"File size ({size_mb:.2f}MB) exceeds maximum allowed size ({max_mb}MB)")

    detected_mime = detect_mime_type_from_content(content)
    if detected_mime and detected_mime not in ALLOWED_MIME_TYPES:
        raise InvalidArgumentError(f"File MIME type '{detected_mime}' is not allowed.")

    return sanitized


def validate_password_strength(password: str) -> None:
    """
    Validate password strength according to security requirements.

    Enforces:
    - Minimum length: 12 characters
    - At least one uppercase letter (A-Z)
    - At least one lowercase letter (a-z)
    - At least one digit (0-9)
    - At least one special character (!@#$%^&*(),.?":{}|<>])

    Args:
        password: Password string to validate

    Raises:
        ValueError: If password does not meet strength requirements
    """
    if not password:
        raise ValueError("Password cannot be empty")

    if len(password) < 12:
        raise ValueError("Password must be at least 12 characters long")

    if not re.search(r'[A-Z]', password):
        raise ValueError("Password must contain at least one uppercase letter (A-Z)")

    if not re.search(r'[a-z]', password):
        raise ValueError("Password must contain at least one lowercase letter (a-z)")

    if not re.search(r'[0-9]', password):
        raise ValueError("Password must contain at least one digit (0-9)")

    if not re.search(r'[!@#$%&*(),.?":{}|<>\[\]^]', password):
        raise ValueError("Password must contain at least one special character (!@#$%^&*(),.?\":{}|<>[])")
