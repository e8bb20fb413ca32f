"""
Download and cache manager.

Resolves the upstream version, fetches the installer artifact into a
local cache, verifies it and hands back its path.

Fetch pipeline:
    1. HTTPS enforcement, before any network activity
    2. Cache hit: artifact present, younger than 24h, same source URL
    3. Transfer to a per-process ``*.part`` sibling, linear backoff
    4. Checksum verification (when a digest is supplied and enabled)
    5. ``os.replace`` into place, provenance sidecar written

Version resolution order:
    JSON endpoint → page scrape → cached value (< 1h) → fallback

The cache directory is shared between runs without locking. Two racing
runs never write into the same temp file; the final rename is
last-writer-wins.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import re
import shutil
import time
import urllib.request
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from desktop_installer.core.models.reports import DownloadRecord
from desktop_installer.core.reliability.errors import (
    ChecksumMismatchError,
    ConfigurationError,
    DownloadError,
)
from desktop_installer.core.reliability.retry import retry

if TYPE_CHECKING:
    from desktop_installer.core.config.loader import ConfigStore

logger = logging.getLogger(__name__)

ARTIFACT_FRESHNESS_SECONDS = 24 * 3600
VERSION_FRESHNESS_SECONDS = 3600
STALE_PART_SECONDS = 3600

VERSION_CACHE_FILE = "latest_version"
RECORD_SUFFIX = ".record.json"
CHECKSUM_ALGORITHMS = ("sha256", "sha1", "sha512", "md5")

_SEMVER = re.compile(r"\d+\.\d+\.\d+")
_VERSION_FIELD = re.compile(r"""version["'\s]*:\s*["'\s]*(\d+\.\d+\.\d+)""")

_USER_AGENT = "desktop-installer"
_CHUNK = 64 * 1024

TransferFn = Callable[[str, Path, float], int]
TextFetchFn = Callable[[str, float], str]


# ── HTTP primitives ─────────────────────────────────────────────


def urllib_transfer(url: str, dest: Path, timeout: float) -> int:
    """Stream ``url`` into ``dest``. Returns the number of bytes written."""
    req = urllib.request.Request(url, headers={"User-Agent": _USER_AGENT})
    written = 0
    with urllib.request.urlopen(req, timeout=timeout) as resp, dest.open("wb") as out:
        while True:
            chunk = resp.read(_CHUNK)
            if not chunk:
                break
            out.write(chunk)
            written += len(chunk)
    return written


def urllib_get_text(url: str, timeout: float) -> str:
    req = urllib.request.Request(url, headers={"User-Agent": _USER_AGENT})
    with urllib.request.urlopen(req, timeout=timeout) as resp:
        charset = resp.headers.get_content_charset() or "utf-8"
        return resp.read().decode(charset, errors="replace")


# ── Helpers ─────────────────────────────────────────────────────


def calculate_checksum(path: Path, algorithm: str = "sha256") -> str:
    """Hex digest of a file.

    Raises:
        ConfigurationError: Unsupported algorithm.
        FileNotFoundError: Missing file.
    """
    algorithm = algorithm.lower()
    if algorithm not in CHECKSUM_ALGORITHMS:
        raise ConfigurationError(f"Unknown checksum algorithm: {algorithm}")
    digest = hashlib.new(algorithm)
    with Path(path).open("rb") as f:
        for chunk in iter(lambda: f.read(_CHUNK), b""):
            digest.update(chunk)
    return digest.hexdigest()


def record_path(artifact: Path) -> Path:
    """Sidecar file holding the DownloadRecord of an artifact."""
    return artifact.with_name(artifact.name + RECORD_SUFFIX)


def _human_size(size: int) -> str:
    if size >= 1024 * 1024:
        return f"{size / (1024 * 1024):.1f}MB"
    if size >= 1024:
        return f"{size / 1024:.1f}KB"
    return f"{size}B"


@dataclass
class FetchResult:
    """Where the artifact ended up and how it got there."""

    path: Path
    url: str
    cached: bool
    size_bytes: int
    checksum: str | None = None
    attempts: int = 0
    duration_ms: int = 0


# ── Downloader ──────────────────────────────────────────────────


class Downloader:
    """Version resolution, cached fetch and verification.

    The transfer and text-fetch primitives, ``sleep`` and ``clock`` are
    injectable so tests never touch the network or wait.
    """

    def __init__(
        self,
        cache_dir: Path,
        *,
        timeout: float = 300,
        max_attempts: int = 3,
        retry_delay: float = 5.0,
        https_only: bool = True,
        verify: bool = True,
        version_api_url: str = "",
        version_check_url: str = "",
        fallback_version: str = "",
        download_url_template: str = "",
        transfer: TransferFn = urllib_transfer,
        get_text: TextFetchFn = urllib_get_text,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.time,
    ):
        self.cache_dir = Path(cache_dir).expanduser()
        self.timeout = timeout
        self.max_attempts = max(1, max_attempts)
        self.retry_delay = retry_delay
        self.https_only = https_only
        self.verify = verify
        self.version_api_url = version_api_url
        self.version_check_url = version_check_url
        self.fallback_version = fallback_version
        self.download_url_template = download_url_template
        self._transfer = transfer
        self._get_text = get_text
        self._sleep = sleep
        self._clock = clock

    @classmethod
    def from_config(cls, config: ConfigStore, **kwargs) -> Downloader:
        """Build from the ``downloader``, ``security`` and ``application`` keys."""
        settings = {
            "timeout": config.get_int("downloader.timeout", 300),
            "max_attempts": config.get_int("installer.max_retries", 3),
            "retry_delay": config.get_float("downloader.retry_delay_seconds", 5.0),
            "https_only": config.get_bool("security.use_https_only", True),
            "verify": config.get_bool("security.verify_downloads", True),
            "version_api_url": config.get("application.version_api_url", ""),
            "version_check_url": config.get("application.version_check_url", ""),
            "fallback_version": config.get("application.fallback_version", ""),
            "download_url_template": config.get("application.download_url", ""),
        }
        settings.update(kwargs)
        cache_dir = settings.pop("cache_dir", None) or config.get_path(
            "downloader.cache_directory", "~/.cache/desktop-installer"
        )
        return cls(cache_dir, **settings)

    # ── Version ─────────────────────────────────────────────────

    def resolve_version(self) -> str:
        """Latest upstream version, falling back gracefully."""
        logger.info("Checking latest application version")

        version = self._version_from_api() or self._version_from_page()
        if version:
            self._write_version_cache(version)
            logger.info("Latest version: %s", version)
            return version

        version = self._version_from_cache()
        if version:
            return version

        logger.warning("Could not determine latest version, using fallback: %s", self.fallback_version)
        return self.fallback_version

    def download_url_for(self, version: str) -> str:
        """Expand the ``{version}`` placeholder of the download URL."""
        if not self.download_url_template:
            raise ConfigurationError("No download URL configured (application.download_url)")
        return self.download_url_template.replace("{version}", version)

    def _version_from_api(self) -> str | None:
        if not self.version_api_url:
            return None
        logger.debug("Version API: %s", self.version_api_url)
        try:
            data = json.loads(self._get_text(self.version_api_url, min(self.timeout, 30)))
        except (OSError, ValueError) as e:
            logger.debug("Version API lookup failed: %s", e)
            return None
        version = data.get("version") if isinstance(data, dict) else None
        if isinstance(version, str) and _SEMVER.fullmatch(version.strip()):
            return version.strip()
        logger.debug("Version API returned no usable version: %r", version)
        return None

    def _version_from_page(self) -> str | None:
        if not self.version_check_url:
            return None
        logger.debug("Version check page: %s", self.version_check_url)
        try:
            page = self._get_text(self.version_check_url, min(self.timeout, 30))
        except (OSError, ValueError) as e:
            logger.debug("Version page lookup failed: %s", e)
            return None
        m = _VERSION_FIELD.search(page) or _SEMVER.search(page)
        if m is None:
            return None
        return m.group(1) if m.groups() else m.group(0)

    def _version_from_cache(self) -> str | None:
        cache = self.cache_dir / VERSION_CACHE_FILE
        if not cache.is_file():
            return None
        try:
            age = self._clock() - cache.stat().st_mtime
            if age > VERSION_FRESHNESS_SECONDS:
                logger.debug("Cached version is stale (age: %ds)", age)
                return None
            version = cache.read_text(encoding="utf-8").strip()
        except OSError as e:
            logger.debug("Cannot read version cache: %s", e)
            return None
        if not _SEMVER.fullmatch(version):
            return None
        logger.debug("Using cached version: %s (age: %ds)", version, age)
        return version

    def _write_version_cache(self, version: str) -> None:
        try:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
            (self.cache_dir / VERSION_CACHE_FILE).write_text(version + "\n", encoding="utf-8")
        except OSError as e:
            logger.debug("Cannot write version cache: %s", e)

    # ── Fetch ───────────────────────────────────────────────────

    def fetch(
        self,
        url: str,
        dest: Path,
        checksum: str | None = None,
        algorithm: str = "sha256",
    ) -> FetchResult:
        """Download ``url`` to ``dest`` unless a fresh copy is cached.

        Raises:
            DownloadError: Non-HTTPS URL under enforcement, or every
                attempt failed, or the result was empty.
            ChecksumMismatchError: Digest did not match; nothing is
                left at ``dest``.
        """
        start = time.monotonic()
        dest = Path(dest).expanduser()
        checksum = (checksum or "").strip().lower() or None

        if self.https_only and not url.lower().startswith("https://"):
            raise DownloadError(f"HTTPS-only mode enabled, but URL is not HTTPS: {url}", command=url)

        logger.info("Downloading: %s", dest.name)
        logger.debug("URL: %s", url)
        logger.debug("Output: %s", dest)

        cached = self._cached(url, dest, checksum, algorithm)
        if cached is not None:
            cached.duration_ms = int((time.monotonic() - start) * 1000)
            return cached

        dest.parent.mkdir(parents=True, exist_ok=True)
        part = dest.with_name(f"{dest.name}.{os.getpid()}.part")

        def attempt() -> int:
            try:
                size = self._transfer(url, part, self.timeout)
                size = part.stat().st_size if part.exists() else size
                if size <= 0:
                    raise DownloadError("Downloaded file is empty", command=url)
                return size
            except BaseException:
                part.unlink(missing_ok=True)
                raise

        outcome = retry(
            self.max_attempts,
            attempt,
            base_delay=self.retry_delay,
            backoff="linear",
            description=f"download of {dest.name}",
            sleep=self._sleep,
        )
        if not outcome.ok:
            part.unlink(missing_ok=True)
            raise DownloadError(
                f"Download failed after {outcome.attempts} attempts: {outcome.error}",
                command=url,
            )

        size: int = outcome.value
        logger.info("Downloaded %s", _human_size(size))

        digest = None
        if checksum and self.verify:
            digest = self._verify(part, checksum, algorithm)
            if digest is None:
                part.unlink(missing_ok=True)
                dest.unlink(missing_ok=True)
                record_path(dest).unlink(missing_ok=True)
                raise ChecksumMismatchError(f"Checksum mismatch for {dest.name}", command=url)
        elif checksum:
            logger.debug("Download verification disabled, checksum not checked")
        else:
            logger.debug("No checksum provided, skipping verification")

        os.replace(part, dest)
        self._write_record(DownloadRecord(
            url=url,
            path=str(dest),
            checksum=digest or checksum,
            algorithm=algorithm,
            size_bytes=size,
            cached_at=self._clock(),
        ))

        duration_ms = int((time.monotonic() - start) * 1000)
        logger.info("File saved to: %s (%dms)", dest, duration_ms)
        return FetchResult(
            path=dest,
            url=url,
            cached=False,
            size_bytes=size,
            checksum=digest,
            attempts=outcome.attempts,
            duration_ms=duration_ms,
        )

    def _cached(
        self,
        url: str,
        dest: Path,
        checksum: str | None,
        algorithm: str,
    ) -> FetchResult | None:
        """A FetchResult for a usable cached artifact, else None."""
        if not dest.is_file():
            return None

        stat = dest.stat()
        age = self._clock() - stat.st_mtime
        if age >= ARTIFACT_FRESHNESS_SECONDS:
            logger.info("Cached artifact is outdated, downloading fresh copy")
            return None

        record = self._read_record(dest)
        if record is not None and record.url != url:
            logger.info("Cached artifact came from a different URL, downloading fresh copy")
            return None

        digest = None
        if checksum and self.verify:
            digest = self._verify(dest, checksum, algorithm)
            if digest is None:
                logger.warning("Cached artifact failed verification, discarding it")
                dest.unlink(missing_ok=True)
                record_path(dest).unlink(missing_ok=True)
                return None

        logger.info("Using cached artifact (age: %dh, %s)", age // 3600, _human_size(stat.st_size))
        return FetchResult(
            path=dest,
            url=url,
            cached=True,
            size_bytes=stat.st_size,
            checksum=digest,
        )

    def _verify(self, path: Path, expected: str, algorithm: str) -> str | None:
        """The digest when it matches ``expected``, else None."""
        logger.info("Verifying download integrity")
        actual = calculate_checksum(path, algorithm)
        if actual == expected:
            logger.info("Download verification successful")
            return actual
        logger.error("Download verification failed")
        logger.error("Expected: %s", expected)
        logger.error("Actual: %s", actual)
        return None

    def _read_record(self, artifact: Path) -> DownloadRecord | None:
        sidecar = record_path(artifact)
        if not sidecar.is_file():
            return None
        try:
            return DownloadRecord.model_validate_json(sidecar.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.debug("Ignoring unreadable download record %s: %s", sidecar, e)
            return None

    def _write_record(self, record: DownloadRecord) -> None:
        sidecar = record_path(Path(record.path))
        try:
            sidecar.write_text(record.model_dump_json(indent=2) + "\n", encoding="utf-8")
        except OSError as e:
            logger.warning("Cannot write download record %s: %s", sidecar, e)

    # ── Maintenance ─────────────────────────────────────────────

    def clean_cache(self, max_age_days: int = 7) -> list[Path]:
        """Remove cached files older than ``max_age_days`` and stale ``*.part`` files."""
        if not self.cache_dir.is_dir():
            return []

        logger.info("Cleaning download cache older than %d days", max_age_days)
        now = self._clock()
        removed = []
        for path in sorted(self.cache_dir.rglob("*")):
            if not path.is_file():
                continue
            try:
                age = now - path.stat().st_mtime
            except OSError:
                continue
            limit = STALE_PART_SECONDS if path.name.endswith(".part") else max_age_days * 86400
            if age > limit:
                path.unlink(missing_ok=True)
                removed.append(path)
                logger.debug("Removed %s", path)

        for directory in sorted(self.cache_dir.rglob("*"), reverse=True):
            if directory.is_dir() and not any(directory.iterdir()):
                shutil.rmtree(directory, ignore_errors=True)

        logger.debug("Cache cleanup completed (%d files removed)", len(removed))
        return removed
