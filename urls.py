"""
urls.py – shareable exam links and exam-id resolution
"""

import re
from typing import Optional
from urllib.parse import urlparse

UUID_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$",
    re.IGNORECASE,
)


def is_uuid(value: str) -> bool:
    return bool(UUID_RE.match(value or ""))


def exam_path(exam_id: str, external: bool = False) -> str:
    # The external domain serves exams from the root path.
    return f"/{exam_id}" if external else f"/exam/{exam_id}"


def exam_url(exam_id: str, base_url: str, external_host: Optional[str] = None) -> str:
    """Absolute link students open to take ``exam_id``."""
    host = urlparse(base_url).hostname
    external = bool(external_host) and host == external_host
    return base_url.rstrip("/") + exam_path(exam_id, external)


def exam_id_from_path(link: str) -> Optional[str]:
    """Pull an exam id out of a pasted link or path.

    ``/exam/<id>`` accepts any id; a bare ``/<id>`` is only accepted when it
    looks like a UUID so that ordinary pages are never mistaken for exams.
    """
    path = urlparse(link.strip()).path if "://" in link else link.strip()
    if path.startswith("/exam/"):
        exam_id = path[len("/exam/"):].strip("/")
        return exam_id or None
    candidate = path.strip("/")
    if is_uuid(candidate):
        return candidate
    return None
