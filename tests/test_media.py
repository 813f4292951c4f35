"""Tests for media URL lookup and atomic download."""

from unittest.mock import MagicMock

import pytest
import requests

from anotatudo.config import WhatsAppCredentials
from anotatudo.whatsapp.media import (
    MediaDownloader,
    MediaDownloadError,
    MediaLocation,
    MediaMetadataError,
    infer_extension,
)
from anotatudo.whatsapp.models import MessageKind

CREDS = WhatsAppCredentials(access_token="test-token", phone_number_id="1234", api_version="v21.0")


def _metadata_response(data=None, ok=True, status=200):
    response = MagicMock()
    response.ok = ok
    response.status_code = status
    response.json.return_value = data if data is not None else {}
    return response


def _stream_response(chunks, content_length=None, ok=True, status=200):
    response = MagicMock()
    response.ok = ok
    response.status_code = status
    response.headers = {} if content_length is None else {"Content-Length": str(content_length)}
    response.iter_content.return_value = iter(chunks)
    response.__enter__.return_value = response
    response.__exit__.return_value = False
    return response


def _downloader(tmp_path, session):
    return MediaDownloader(CREDS, tmp_path / "scratch", timeout=5, session=session)


def _leftovers(tmp_path):
    scratch = tmp_path / "scratch"
    return [p.name for p in scratch.iterdir()] if scratch.exists() else []


class TestFetchMediaUrl:
    def test_resolves_url_with_bearer_token(self, tmp_path):
        session = MagicMock()
        session.get.return_value = _metadata_response(
            {"url": "https://lookaside.example/m1", "mime_type": "audio/ogg"}
        )

        location = _downloader(tmp_path, session).fetch_media_url("m1")

        assert location == MediaLocation(url="https://lookaside.example/m1", mime_type="audio/ogg")
        args, kwargs = session.get.call_args
        assert args[0] == "https://graph.facebook.com/v21.0/m1"
        assert kwargs["headers"] == {"Authorization": "Bearer test-token"}

    def test_transport_error(self, tmp_path):
        session = MagicMock()
        session.get.side_effect = requests.Timeout("slow")
        with pytest.raises(MediaMetadataError):
            _downloader(tmp_path, session).fetch_media_url("m1")

    def test_http_error(self, tmp_path):
        session = MagicMock()
        session.get.return_value = _metadata_response(ok=False, status=404)
        with pytest.raises(MediaMetadataError, match="404"):
            _downloader(tmp_path, session).fetch_media_url("m1")

    def test_missing_url(self, tmp_path):
        session = MagicMock()
        session.get.return_value = _metadata_response({"mime_type": "image/png"})
        with pytest.raises(MediaMetadataError, match="no url"):
            _downloader(tmp_path, session).fetch_media_url("m1")

    def test_invalid_json(self, tmp_path):
        session = MagicMock()
        response = _metadata_response()
        response.json.side_effect = ValueError("not json")
        session.get.return_value = response
        with pytest.raises(MediaMetadataError):
            _downloader(tmp_path, session).fetch_media_url("m1")


class TestDownload:
    LOCATION = MediaLocation(url="https://lookaside.example/m1", mime_type="audio/ogg; codecs=opus")

    def test_writes_file_atomically(self, tmp_path):
        session = MagicMock()
        session.get.return_value = _stream_response([b"abc", b"", b"def"], content_length=6)

        asset = _downloader(tmp_path, session).download(self.LOCATION, MessageKind.AUDIO, "m1")

        assert asset.local_path == tmp_path / "scratch" / "m1.ogg"
        assert asset.local_path.read_bytes() == b"abcdef"
        assert asset.kind is MessageKind.AUDIO
        assert _leftovers(tmp_path) == ["m1.ogg"]

    def test_short_read_leaves_nothing(self, tmp_path):
        session = MagicMock()
        session.get.return_value = _stream_response([b"abc"], content_length=10)

        with pytest.raises(MediaDownloadError, match="incomplete"):
            _downloader(tmp_path, session).download(self.LOCATION, MessageKind.AUDIO, "m1")

        assert _leftovers(tmp_path) == []

    def test_http_error_leaves_nothing(self, tmp_path):
        session = MagicMock()
        session.get.return_value = _stream_response([], ok=False, status=403)

        with pytest.raises(MediaDownloadError, match="403"):
            _downloader(tmp_path, session).download(self.LOCATION, MessageKind.IMAGE, "m1")

        assert _leftovers(tmp_path) == []

    def test_connection_drop_leaves_nothing(self, tmp_path):
        session = MagicMock()
        response = _stream_response([])
        response.iter_content.side_effect = requests.ConnectionError("reset")
        session.get.return_value = response

        with pytest.raises(MediaDownloadError):
            _downloader(tmp_path, session).download(self.LOCATION, MessageKind.VIDEO, "m1")

        assert _leftovers(tmp_path) == []

    def test_unsafe_id_sanitized(self, tmp_path):
        session = MagicMock()
        session.get.return_value = _stream_response([b"x"])

        asset = _downloader(tmp_path, session).download(
            MediaLocation(url="u", mime_type="image/png"), MessageKind.IMAGE, "../../etc/passwd"
        )

        assert asset.local_path.parent == tmp_path / "scratch"
        assert asset.local_path.name == "etcpasswd.png"

    def test_fetch_runs_both_steps(self, tmp_path):
        session = MagicMock()
        session.get.side_effect = [
            _metadata_response({"url": "https://lookaside.example/m2", "mime_type": "image/jpeg"}),
            _stream_response([b"jpeg"], content_length=4),
        ]

        asset = _downloader(tmp_path, session).fetch("m2", MessageKind.IMAGE)

        assert asset.local_path.name == "m2.jpg"
        assert session.get.call_count == 2
        assert session.get.call_args_list[1].kwargs["stream"] is True


class TestInferExtension:
    def test_known_types(self):
        assert infer_extension("image/png", MessageKind.IMAGE) == ".png"
        assert infer_extension("audio/mpeg", MessageKind.AUDIO) == ".mp3"
        assert infer_extension("AUDIO/OGG; codecs=opus", MessageKind.AUDIO) == ".ogg"

    def test_fallbacks(self):
        assert infer_extension("application/x-weird", MessageKind.VIDEO) == ".mp4"
        assert infer_extension(None, MessageKind.IMAGE) == ".jpg"
        assert infer_extension("text/plain", MessageKind.TEXT) == ".bin"
