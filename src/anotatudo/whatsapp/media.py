"""Media retrieval from the WhatsApp Cloud API.

Two steps, both blocking and uncached:
1. GET /{media_id} -> short-lived download URL + mime type
2. Stream the URL to the scratch directory

Files are written under a temporary name and renamed into place, so a reader
never observes a truncated asset.
"""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass
from pathlib import Path

import requests

from anotatudo.config import WhatsAppCredentials
from anotatudo.observability.logging import get_logger
from anotatudo.observability.redaction import id_prefix, safe_log_context

from .models import MediaAsset, MessageKind

logger = get_logger(__name__)

CHUNK_SIZE = 64 * 1024

# mime type -> extension, per kind; first entry is not special
_EXTENSIONS: dict[MessageKind, dict[str, str]] = {
    MessageKind.AUDIO: {
        "audio/ogg": ".ogg",
        "audio/opus": ".ogg",
        "audio/mpeg": ".mp3",
        "audio/mp4": ".m4a",
        "audio/aac": ".aac",
        "audio/amr": ".amr",
        "audio/wav": ".wav",
    },
    MessageKind.IMAGE: {
        "image/jpeg": ".jpg",
        "image/png": ".png",
        "image/webp": ".webp",
    },
    MessageKind.VIDEO: {
        "video/mp4": ".mp4",
        "video/3gpp": ".3gp",
    },
}

_FALLBACK_EXTENSION: dict[MessageKind, str] = {
    MessageKind.AUDIO: ".ogg",
    MessageKind.IMAGE: ".jpg",
    MessageKind.VIDEO: ".mp4",
}


class MediaMetadataError(Exception):
    """Raised when the media URL lookup fails or returns no URL."""

    pass


class MediaDownloadError(Exception):
    """Raised when streaming the media bytes fails or is incomplete."""

    pass


@dataclass(frozen=True)
class MediaLocation:
    """Transient download location returned by the metadata endpoint."""

    url: str
    mime_type: str


def infer_extension(mime_type: str | None, kind: MessageKind) -> str:
    """Pick a file extension for mime_type, falling back per kind.

    Parameters like "; codecs=opus" are ignored.
    """
    clean = (mime_type or "").split(";")[0].strip().lower()
    known = _EXTENSIONS.get(kind, {})
    if clean in known:
        return known[clean]
    return _FALLBACK_EXTENSION.get(kind, ".bin")


class MediaDownloader:
    """Fetches WhatsApp media into a local scratch directory.

    Args:
        credentials: Graph API credentials (bearer token + version).
        scratch_dir: Directory for downloaded files; created on demand.
        timeout: Seconds for connect and per-read timeouts.
        session: Optional requests session (tests inject a mock).
    """

    def __init__(
        self,
        credentials: WhatsAppCredentials,
        scratch_dir: Path,
        timeout: float = 30.0,
        session: requests.Session | None = None,
    ) -> None:
        self._credentials = credentials
        self._scratch_dir = Path(scratch_dir)
        self._timeout = timeout
        self._session = session or requests.Session()

    def _auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._credentials.access_token}"}

    def fetch_media_url(self, media_id: str) -> MediaLocation:
        """Resolve a media id into its download URL.

        Raises:
            MediaMetadataError: On transport error, non-2xx, bad JSON or no URL.
        """
        url = f"{self._credentials.base_url}/{media_id}"
        try:
            response = self._session.get(
                url, headers=self._auth_headers(), timeout=self._timeout
            )
        except requests.RequestException as e:
            raise MediaMetadataError(f"media lookup failed: {type(e).__name__}") from e

        if not response.ok:
            raise MediaMetadataError(f"media lookup returned HTTP {response.status_code}")

        try:
            data = response.json()
        except ValueError as e:
            raise MediaMetadataError("media lookup returned invalid json") from e

        media_url = data.get("url") if isinstance(data, dict) else None
        if not media_url:
            raise MediaMetadataError("media lookup returned no url")

        return MediaLocation(url=media_url, mime_type=str(data.get("mime_type") or ""))

    def download(
        self,
        location: MediaLocation,
        kind: MessageKind,
        external_id: str,
    ) -> MediaAsset:
        """Stream location.url into the scratch dir and return the asset.

        Raises:
            MediaDownloadError: On transport error, non-2xx, or fewer bytes
                than Content-Length announced. No partial file is left behind.
        """
        self._scratch_dir.mkdir(parents=True, exist_ok=True)
        final_path = self._scratch_dir / f"{_safe_name(external_id)}{infer_extension(location.mime_type, kind)}"

        fd, tmp_name = tempfile.mkstemp(dir=self._scratch_dir, prefix=".partial-")
        try:
            written = 0
            with os.fdopen(fd, "wb") as out:
                try:
                    with self._session.get(
                        location.url,
                        headers=self._auth_headers(),
                        timeout=self._timeout,
                        stream=True,
                    ) as response:
                        if not response.ok:
                            raise MediaDownloadError(
                                f"media download returned HTTP {response.status_code}"
                            )
                        expected = _content_length(response)
                        for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                            if chunk:
                                out.write(chunk)
                                written += len(chunk)
                except requests.RequestException as e:
                    raise MediaDownloadError(
                        f"media download failed: {type(e).__name__}"
                    ) from e
                out.flush()
                os.fsync(out.fileno())

            if expected is not None and written != expected:
                raise MediaDownloadError(
                    f"media download incomplete: {written} of {expected} bytes"
                )

            os.replace(tmp_name, final_path)
        except BaseException:
            _unlink_quietly(tmp_name)
            raise

        logger.info(
            "media downloaded",
            extra={
                "extra_fields": safe_log_context(
                    media_prefix=id_prefix(external_id),
                    kind=kind,
                    mime_type=location.mime_type or "unknown",
                    size_bytes=written,
                )
            },
        )

        return MediaAsset(
            external_id=external_id,
            local_path=final_path,
            mime_type=location.mime_type,
            kind=kind,
        )

    def fetch(self, media_id: str, kind: MessageKind) -> MediaAsset:
        """Both steps in sequence: resolve the URL, then download."""
        location = self.fetch_media_url(media_id)
        return self.download(location, kind, media_id)


def _content_length(response: requests.Response) -> int | None:
    raw = response.headers.get("Content-Length")
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError:
        return None


def _safe_name(external_id: str) -> str:
    """Media ids are numeric in practice; keep only filesystem-safe chars."""
    cleaned = "".join(c for c in external_id if c.isalnum() or c in "-_.")
    return cleaned.strip(".") or "media"


def _unlink_quietly(path: str) -> None:
    try:
        os.unlink(path)
    except FileNotFoundError:
        pass
