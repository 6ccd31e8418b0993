import os
import tempfile
from typing import NamedTuple, Optional

from flask import current_app

CERTIFICATE_KINDS = {"pdf", "png"}


class UploadResult(NamedTuple):
    url: Optional[str] = None
    error: Optional[str] = None


def ensure_dir(path: str) -> None:
    """Create directory if missing (mkdir -p equivalent)."""
    os.makedirs(path, exist_ok=True)


def write_atomic(path: str, data, mode: str = "wb") -> None:
    """Write data to a temporary file then atomically rename to target path."""
    dir_path = os.path.dirname(path)
    ensure_dir(dir_path)
    fd, tmp_path = tempfile.mkstemp(dir=dir_path)
    try:
        with os.fdopen(fd, mode) as f:
            f.write(data)
        os.replace(tmp_path, path)
    finally:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)


def certificates_root() -> str:
    site_root = current_app.config.get("SITE_ROOT", "/srv")
    return os.path.join(site_root, "certificates")


def certificate_public_url(rel_path: str) -> str:
    base = current_app.config.get("CERTIFICATES_BASE_URL", "")
    return f"{base}/certificates/{rel_path}"


def certificate_rel_path_from_url(url: Optional[str]) -> Optional[str]:
    """Inverse of ``certificate_public_url``; None for foreign URLs."""
    if not url:
        return None
    marker = "/certificates/"
    idx = url.find(marker)
    if idx < 0:
        return None
    return url[idx + len(marker):]


def _safe_segment(value: Optional[str]) -> Optional[str]:
    raw = (value or "").strip()
    if not raw or raw in {".", ".."}:
        return None
    if "/" in raw or "\\" in raw or "\x00" in raw:
        return None
    return raw


def upload_certificate_file(
    data: bytes,
    filename: str,
    kind: str,
    event_id: str,
    user_id: str,
) -> UploadResult:
    """Store a certificate file and return its public URL.

    Files land in ``{SITE_ROOT}/certificates/{event_id}/{user_id}/{filename}``;
    an existing file with the same name is replaced.
    """
    if kind not in CERTIFICATE_KINDS:
        return UploadResult(error=f"Unsupported certificate file kind: {kind!r}")
    if not data:
        return UploadResult(error=f"Empty {kind.upper()} file")
    segments = [_safe_segment(v) for v in (event_id, user_id, filename)]
    if any(seg is None for seg in segments):
        return UploadResult(
            error=f"Invalid storage path for {filename!r}"
        )
    rel_path = "/".join(segments)
    full_path = os.path.join(certificates_root(), *segments)
    try:
        write_atomic(full_path, data)
        os.chmod(full_path, 0o644)  # world-readable for the file server
    except OSError as exc:
        current_app.logger.exception("[UPLOAD] failed path=%s", rel_path)
        return UploadResult(error=f"Failed to upload {kind.upper()}: {exc}")
    current_app.logger.info("[UPLOAD] kind=%s path=%s bytes=%d", kind, rel_path, len(data))
    return UploadResult(url=certificate_public_url(rel_path))
