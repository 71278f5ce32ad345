"""Network fetches with progress tracking and bounded retries.

This module handles downloading backend source archives, querying the crates.io
registry, and retrying flaky network operations with exponential backoff.
"""

import logging
import tarfile
import time
from pathlib import Path
from typing import Any, Callable, Optional, Tuple, Type, TypeVar
from urllib.parse import urlparse

import requests
from tqdm import tqdm

from .. import __version__

T = TypeVar("T")

USER_AGENT = f"spvforge/{__version__} (https://github.com/spvforge/spvforge)"

DEFAULT_ATTEMPTS = 3
DEFAULT_BASE_DELAY = 1.0


class DownloadError(Exception):
    """Raised when download fails."""

    pass


class ExtractionError(Exception):
    """Raised when archive extraction fails."""

    pass


class RetryableError(Exception):
    """Raised by an operation to request another attempt."""

    pass


def retry_with_backoff(
    operation: Callable[[], T],
    description: str,
    attempts: int = DEFAULT_ATTEMPTS,
    base_delay: float = DEFAULT_BASE_DELAY,
    retry_on: Tuple[Type[BaseException], ...] = (RetryableError, requests.ConnectionError, requests.Timeout),
    sleep: Optional[Callable[[float], None]] = None,
) -> T:
    """Run a network operation, retrying transient failures.

    The delay doubles after each failed attempt (1s, 2s, 4s, ...). The last
    failure is re-raised unchanged.

    Args:
        operation: Zero-argument callable to run
        description: Human-readable name used in log messages
        attempts: Maximum number of attempts
        base_delay: Delay before the second attempt, in seconds
        retry_on: Exception types that trigger another attempt
        sleep: Sleep function (default: time.sleep)

    Returns:
        Whatever operation returns
    """
    for attempt in range(1, attempts + 1):
        try:
            return operation()
        except retry_on as e:
            if attempt >= attempts:
                logging.error(f"{description} failed after {attempts} attempts: {e}")
                raise
            delay = base_delay * (2 ** (attempt - 1))
            logging.warning(
                f"{description} failed (attempt {attempt}/{attempts}): {e}; retrying in {delay:.1f}s"
            )
            (sleep or time.sleep)(delay)
    raise AssertionError("unreachable")


class PackageDownloader:
    """Downloads and extracts source archives with progress tracking."""

    def __init__(self, chunk_size: int = 8192, attempts: int = DEFAULT_ATTEMPTS):
        """Initialize downloader.

        Args:
            chunk_size: Size of chunks for downloading and hashing
            attempts: Maximum attempts per network request
        """
        self.chunk_size = chunk_size
        self.attempts = attempts
        self.session = requests.Session()
        self.session.headers["User-Agent"] = USER_AGENT

    def get_json(self, url: str, timeout: float = 30) -> Optional[Any]:
        """Fetch a JSON document.

        Args:
            url: URL to fetch
            timeout: Per-request timeout in seconds

        Returns:
            Decoded JSON, or None if the server answered 404

        Raises:
            DownloadError: If the request fails after all retries
        """

        def fetch() -> Optional[Any]:
            response = self.session.get(url, timeout=timeout)
            if response.status_code == 404:
                return None
            if response.status_code >= 500 or response.status_code == 429:
                raise RetryableError(f"HTTP {response.status_code} from {url}")
            response.raise_for_status()
            return response.json()

        try:
            return retry_with_backoff(fetch, f"GET {url}", attempts=self.attempts)
        except (requests.RequestException, RetryableError, ValueError) as e:
            raise DownloadError(f"Failed to fetch {url}: {e}") from e

    def download(
        self,
        url: str,
        dest_path: Path,
        show_progress: bool = True,
    ) -> Path:
        """Download a file from a URL.

        Args:
            url: URL to download from
            dest_path: Destination file path
            show_progress: Whether to show progress bar

        Returns:
            Path to the downloaded file

        Raises:
            DownloadError: If download fails
        """
        dest_path = Path(dest_path)
        dest_path.parent.mkdir(parents=True, exist_ok=True)

        # Use temporary file during download
        temp_file = dest_path.with_suffix(dest_path.suffix + ".tmp")

        try:
            retry_with_backoff(
                lambda: self._stream_to_file(url, temp_file, show_progress),
                f"Download {url}",
                attempts=self.attempts,
            )
            temp_file.replace(dest_path)
            return dest_path

        except (requests.RequestException, RetryableError) as e:
            temp_file.unlink(missing_ok=True)
            raise DownloadError(f"Failed to download {url}: {e}") from e

        except BaseException:
            temp_file.unlink(missing_ok=True)
            raise

    def _stream_to_file(self, url: str, temp_file: Path, show_progress: bool) -> None:
        response = self.session.get(url, stream=True, timeout=30)
        if response.status_code >= 500 or response.status_code == 429:
            raise RetryableError(f"HTTP {response.status_code} from {url}")
        response.raise_for_status()

        # Get file size for progress bar
        total_size = int(response.headers.get("content-length", 0))

        progress_bar = None
        if show_progress:
            filename = Path(urlparse(url).path).name
            progress_bar = tqdm(
                total=total_size or None,
                unit="B",
                unit_scale=True,
                unit_divisor=1024,
                desc=f"Downloading {filename}",
            )

        try:
            with open(temp_file, "wb") as f:
                for chunk in response.iter_content(chunk_size=self.chunk_size):
                    if chunk:
                        f.write(chunk)
                        if progress_bar:
                            progress_bar.update(len(chunk))
        finally:
            if progress_bar:
                progress_bar.close()

    def extract_archive(self, archive_path: Path, dest_dir: Path) -> Path:
        """Extract an archive file.

        Supports .tar.gz, .tar.bz2 and .tar.xz formats.

        Args:
            archive_path: Path to the archive file
            dest_dir: Destination directory for extraction

        Returns:
            Path to the extracted directory

        Raises:
            ExtractionError: If extraction fails
        """
        archive_path = Path(archive_path)
        dest_dir = Path(dest_dir)

        if not archive_path.exists():
            raise ExtractionError(f"Archive not found: {archive_path}")

        dest_dir.mkdir(parents=True, exist_ok=True)

        try:
            if archive_path.name.endswith((".tar.gz", ".tar.bz2", ".tar.xz")):
                with tarfile.open(archive_path, "r:*") as tar:
                    if hasattr(tarfile, "data_filter"):
                        tar.extractall(dest_dir, filter="data")
                    else:
                        tar.extractall(dest_dir)
            else:
                raise ExtractionError(
                    f"Unsupported archive format: {archive_path.suffix}"
                )
            return dest_dir

        except ExtractionError:
            raise
        except (OSError, tarfile.TarError) as e:
            raise ExtractionError(f"Failed to extract {archive_path}: {e}") from e
