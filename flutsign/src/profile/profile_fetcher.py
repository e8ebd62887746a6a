import shutil
from pathlib import Path
from typing import Optional
from urllib.parse import unquote, urlparse

import requests

from flutsign.logger import log_info, log_success
from flutsign.src.core.errors import DownloadError


class ProfileFetcher:
    """Fetches profiles, certificates and keys from a URL or local path"""

    def __init__(self, timeout: float = 60.0, chunk_size: int = 1024 * 1024):
        self.timeout = timeout
        self.chunk_size = chunk_size

    def fetch(self, source: Optional[str], dest_dir: Path, filename: str) -> Optional[Path]:
        """Download or copy ``source`` to ``dest_dir/filename``.

        Returns None when no source was given; callers treat that as
        "not configured", not as a failure.
        """
        if not source or not source.strip():
            return None
        source = source.strip()

        dest_dir = Path(dest_dir)
        dest_dir.mkdir(parents=True, exist_ok=True)
        destination = dest_dir / filename

        scheme = urlparse(source).scheme.lower()
        if scheme in ("http", "https"):
            self._download(source, destination)
        elif scheme == "file":
            self._copy(Path(unquote(urlparse(source).path)), destination, source)
        else:
            self._copy(Path(source).expanduser(), destination, source)

        return destination

    def _download(self, url: str, destination: Path) -> None:
        log_info(f"📥 Downloading {destination.name} from: {url}")
        try:
            with requests.get(url, stream=True, timeout=self.timeout) as response:
                response.raise_for_status()
                with open(destination, "wb") as f:
                    for chunk in response.iter_content(chunk_size=self.chunk_size):
                        if chunk:
                            f.write(chunk)
        except requests.exceptions.RequestException as e:
            destination.unlink(missing_ok=True)
            raise DownloadError(url, str(e)) from e

        if destination.stat().st_size == 0:
            destination.unlink(missing_ok=True)
            raise DownloadError(url, "response body was empty")

        log_success(f"Downloaded {destination.name} to {destination}")

    def _copy(self, path: Path, destination: Path, source: str) -> None:
        if not path.is_file():
            raise DownloadError(source, "file not found")
        if path.resolve() != destination.resolve():
            shutil.copyfile(path, destination)
        log_success(f"Copied {destination.name} from {path}")
