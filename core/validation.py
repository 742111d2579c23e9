"""
Input Validation Utilities.

Static validators shared by the services and routers. Every validator either
returns the normalized value or raises `InvalidArgumentError` (or
`UploadError` for files), so callers never check return codes.

Key Components:
- `InputValidator`: identifiers, emails, phone numbers, URLs, bounded strings
  and integers.
- `UploadValidator`: image uploads. A file is accepted only when both its
  extension and its declared content type name JPEG or PNG and it fits the
  configured size limit.
"""

import os
import re
from typing import Any, List, Optional
from urllib.parse import urlparse

from core import config
from core.logging_config import get_logger
from core.exceptions import InvalidArgumentError, UploadError

logger = get_logger(__name__)


class InputValidator:
    """Input validation and normalization"""

    IDENTIFIER_PATTERN = re.compile(r"^[0-9a-f]{32}$")
    EMAIL_PATTERN = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")
    PHONE_PATTERN = re.compile(r"^\+?[0-9]{7,15}$")

    @staticmethod
    def is_identifier(value: Any) -> bool:
        return isinstance(value, str) and bool(
            InputValidator.IDENTIFIER_PATTERN.match(value)
        )

    @staticmethod
    def validate_identifier(value: Any, field: str = "id") -> str:
        """Validate an entity identifier"""
        if not InputValidator.is_identifier(value):
            raise InvalidArgumentError(field, value, f"Valid {field} is required")
        return value

    @staticmethod
    def sanitize_string(
        value: Any,
        field: str = "input",
        max_length: int = 1000,
        min_length: int = 0,
    ) -> str:
        """Trim a string and enforce its length bounds"""
        if not isinstance(value, str):
            raise InvalidArgumentError(field, value, f"{field} must be a string")

        value = value.strip()

        if len(value) < min_length:
            if min_length == 1:
                raise InvalidArgumentError(field, value, f"{field} is required")
            raise InvalidArgumentError(
                field, value, f"{field} must be at least {min_length} characters"
            )

        if len(value) > max_length:
            raise InvalidArgumentError(
                field, value[:100], f"{field} must be no more than {max_length} characters"
            )

        return value

    @staticmethod
    def validate_email(email: str) -> str:
        """Validate email address"""
        email = InputValidator.sanitize_string(email, "email", max_length=254)

        if not InputValidator.EMAIL_PATTERN.match(email):
            raise InvalidArgumentError("email", email, "Invalid email format")

        return email.lower()

    @staticmethod
    def validate_phone(phone: str) -> str:
        """Validate phone number, stripping common separators"""
        phone = InputValidator.sanitize_string(phone, "phone", max_length=32)
        normalized = re.sub(r"[\s().-]", "", phone)

        if not InputValidator.PHONE_PATTERN.match(normalized):
            raise InvalidArgumentError("phone", phone, "Invalid phone number")

        return normalized

    @staticmethod
    def validate_url(url: str, field: str = "url") -> str:
        """Validate an absolute http(s) URL or a server-relative upload path"""
        url = InputValidator.sanitize_string(url, field, max_length=1024, min_length=1)

        if url.startswith("/"):
            return url

        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise InvalidArgumentError(field, url, f"{field} must be an http(s) URL")

        return url

    @staticmethod
    def validate_url_list(urls: List[str], field: str, max_items: int) -> List[str]:
        if len(urls) > max_items:
            raise InvalidArgumentError(
                field, len(urls), f"At most {max_items} {field} are allowed"
            )
        return [InputValidator.validate_url(url, field) for url in urls]

    @staticmethod
    def validate_integer(
        value: Any,
        field: str = "integer",
        min_val: Optional[int] = None,
        max_val: Optional[int] = None,
    ) -> int:
        """Validate integer value"""
        if isinstance(value, bool):
            raise InvalidArgumentError(field, value, f"{field} must be an integer")
        try:
            value = int(value)
        except (ValueError, TypeError):
            raise InvalidArgumentError(field, value, f"{field} must be an integer")

        if min_val is not None and value < min_val:
            raise InvalidArgumentError(field, value, f"{field} must be at least {min_val}")

        if max_val is not None and value > max_val:
            raise InvalidArgumentError(field, value, f"{field} must be at most {max_val}")

        return value


class UploadValidator:
    """Validation for uploaded image files"""

    ALLOWED_EXTENSIONS = {".jpg", ".jpeg", ".png"}
    ALLOWED_CONTENT_TYPES = {"image/jpeg", "image/jpg", "image/png"}

    @staticmethod
    def validate_image(
        filename: Optional[str],
        content_type: Optional[str],
        size: int,
        max_bytes: Optional[int] = None,
    ) -> str:
        """Validate an image upload and return its normalized extension"""
        max_bytes = max_bytes or config.MAX_UPLOAD_BYTES
        name = filename or ""
        extension = os.path.splitext(name)[1].lower()

        if extension not in UploadValidator.ALLOWED_EXTENSIONS:
            raise UploadError(name, "Only JPEG or PNG images are allowed")

        if (content_type or "").lower() not in UploadValidator.ALLOWED_CONTENT_TYPES:
            logger.warning(
                f"Upload rejected, content type {content_type} for {name}",
                extra={"upload_filename": name, "content_type": content_type},
            )
            raise UploadError(name, "Only JPEG or PNG images are allowed")

        if size <= 0:
            raise UploadError(name, "Uploaded file is empty")

        if size > max_bytes:
            raise UploadError(
                name, f"Image must be less than {max_bytes // (1024 * 1024)}MB"
            )

        return ".jpg" if extension == ".jpeg" else extension
