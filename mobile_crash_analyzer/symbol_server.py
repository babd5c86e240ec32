"""Remote dSYM store client.

Downloads zipped dSYM bundles laid out as ``<server>/<UUID>/<name>.dSYM.zip``
and caches the extracted bundle under ``<cache>/<UUID>/``.
"""
from __future__ import annotations

import zipfile
from pathlib import Path
from typing import Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .logging_utils import get_logger
from .models import normalize_uuid

logger = get_logger(__name__)

USER_AGENT = 'MobileCrashAnalyzer/1.0 (dSYM Download)'


def find_cached_dsym(directory: Path) -> Optional[Path]:
    """First ``*.dSYM`` bundle below ``directory``, if any."""
    if not directory.is_dir():
        return None
    for candidate in sorted(directory.rglob('*.dSYM')):
        if candidate.is_dir():
            return candidate
    return None


class SymbolServerClient:
    """Fetches dSYM bundles by binary UUID."""

    def __init__(self, server_url: str, cache_dir: Path, timeout: float = 30.0):
        self.server_url = server_url.rstrip('/')
        self.cache_dir = Path(cache_dir)
        self.timeout = timeout
        self._session: Optional[requests.Session] = None

    def _get_session(self) -> requests.Session:
        """Get or create HTTP session with retry configuration."""
        if self._session is None:
            self._session = requests.Session()
            retry_strategy = Retry(
                total=3,
                backoff_factor=0.5,
                status_forcelist=[429, 500, 502, 503, 504],
            )
            adapter = HTTPAdapter(max_retries=retry_strategy)
            self._session.mount("http://", adapter)
            self._session.mount("https://", adapter)
            self._session.headers.update({'User-Agent': USER_AGENT})
        return self._session

    def dsym_url(self, uuid: str, name: str) -> str:
        return f"{self.server_url}/{normalize_uuid(uuid)}/{name}.dSYM.zip"

    def fetch(self, uuid: str, name: str) -> Optional[Path]:
        """
        Return a local dSYM bundle for ``uuid``, downloading it if needed.

        Returns None when the server has no bundle or the download fails.
        """
        if not uuid:
            return None

        target_dir = self.cache_dir / normalize_uuid(uuid)
        cached = find_cached_dsym(target_dir)
        if cached:
            logger.info(f"dSYM cache hit: {cached}")
            return cached

        url = self.dsym_url(uuid, name)
        archive = target_dir / f"{name}.dSYM.zip"
        logger.info(f"Downloading dSYM: {url}")

        try:
            response = self._get_session().get(url, stream=True, timeout=self.timeout)
            if response.status_code != 200:
                logger.warning(f"Symbol server returned HTTP {response.status_code} for {url}")
                return None

            target_dir.mkdir(parents=True, exist_ok=True)
            with open(archive, 'wb') as f:
                for chunk in response.iter_content(chunk_size=65536):
                    if chunk:
                        f.write(chunk)

            with zipfile.ZipFile(archive) as zf:
                zf.extractall(target_dir)
        except requests.RequestException as e:
            logger.warning(f"dSYM download failed: {e}")
            return None
        except (zipfile.BadZipFile, OSError) as e:
            logger.warning(f"dSYM archive unusable: {e}")
            return None
        finally:
            if archive.exists():
                archive.unlink()

        dsym = find_cached_dsym(target_dir)
        if dsym is None:
            logger.warning(f"Downloaded archive holds no .dSYM bundle: {url}")
        return dsym
