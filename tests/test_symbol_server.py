"""Tests for the remote dSYM store client."""
import io
import zipfile
from unittest.mock import MagicMock

import requests

from mobile_crash_analyzer.symbol_server import SymbolServerClient, find_cached_dsym

UUID = "A1B2C3D4-E5F6-7890-ABCD-EF1234567890"


def _dsym_zip():
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as zf:
        zf.writestr("TestApp.app.dSYM/Contents/Resources/DWARF/TestApp", b"\xcf\xfa\xed\xfe")
        zf.writestr("TestApp.app.dSYM/Contents/Info.plist", b"<plist/>")
    return buffer.getvalue()


def _client(tmp_path, response=None, error=None):
    client = SymbolServerClient("https://symbols.example.com/dsyms/", tmp_path / "cache")
    session = MagicMock()
    if error is not None:
        session.get.side_effect = error
    else:
        session.get.return_value = response
    client._session = session
    return client, session


def _response(status_code=200, content=b""):
    response = MagicMock()
    response.status_code = status_code
    response.iter_content.return_value = [content]
    return response


def test_dsym_url_uses_canonical_uuid(tmp_path):
    """URLs are keyed by the normalized UUID."""
    client = SymbolServerClient("https://symbols.example.com/dsyms/", tmp_path)
    assert client.dsym_url("a1b2c3d4e5f67890abcdef1234567890", "TestApp") == \
        f"https://symbols.example.com/dsyms/{UUID}/TestApp.dSYM.zip"


def test_fetch_downloads_and_extracts(tmp_path):
    """A zipped bundle is extracted into the cache and the archive removed."""
    client, session = _client(tmp_path, _response(content=_dsym_zip()))

    dsym = client.fetch(UUID, "TestApp")

    assert dsym is not None
    assert dsym.name == "TestApp.app.dSYM"
    assert (dsym / "Contents" / "Resources" / "DWARF" / "TestApp").is_file()
    assert not (tmp_path / "cache" / UUID / "TestApp.dSYM.zip").exists()
    session.get.assert_called_once()
    assert session.get.call_args[1]["stream"] is True


def test_fetch_uses_cache(tmp_path):
    """A previously extracted bundle is returned without a request."""
    cached = tmp_path / "cache" / UUID / "TestApp.app.dSYM"
    cached.mkdir(parents=True)
    client, session = _client(tmp_path, _response())

    assert client.fetch(UUID, "TestApp") == cached
    session.get.assert_not_called()


def test_fetch_http_error(tmp_path):
    """Non-200 responses yield None."""
    client, _ = _client(tmp_path, _response(status_code=404))
    assert client.fetch(UUID, "TestApp") is None


def test_fetch_connection_error(tmp_path):
    """Network failures yield None."""
    client, _ = _client(tmp_path, error=requests.ConnectionError("connection refused"))
    assert client.fetch(UUID, "TestApp") is None


def test_fetch_bad_archive(tmp_path):
    """A corrupt archive yields None and is cleaned up."""
    client, _ = _client(tmp_path, _response(content=b"not a zip"))
    assert client.fetch(UUID, "TestApp") is None
    assert not (tmp_path / "cache" / UUID / "TestApp.dSYM.zip").exists()


def test_fetch_without_uuid(tmp_path):
    """Images without a UUID are never requested."""
    client, session = _client(tmp_path, _response())
    assert client.fetch("", "TestApp") is None
    session.get.assert_not_called()


def test_session_has_retries(tmp_path):
    """The HTTP session retries transient server errors."""
    session = SymbolServerClient("https://symbols.example.com", tmp_path)._get_session()
    adapter = session.get_adapter("https://symbols.example.com/x")
    assert adapter.max_retries.total == 3
    assert 503 in adapter.max_retries.status_forcelist
    assert session.headers["User-Agent"].startswith("MobileCrashAnalyzer")


def test_find_cached_dsym_missing_dir(tmp_path):
    """A missing cache directory has no bundle."""
    assert find_cached_dsym(tmp_path / "absent") is None
