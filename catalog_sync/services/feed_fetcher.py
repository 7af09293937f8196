"""Download of the marketplace catalog feed.

The feed is streamed to a temporary file, gunzipped into the final CSV when
the response is gzip-encoded, and otherwise renamed into place. Temporary and
partial files never outlive a failed fetch.
"""
import asyncio
import gzip
import os
import shutil
import zlib
from datetime import datetime
from pathlib import Path
from typing import Optional, Union
from uuid import uuid4
from zoneinfo import ZoneInfo

import httpx
import structlog

from catalog_sync.config import MarketplaceSettings
from catalog_sync.errors import (
    ConfigurationError,
    EmptyFeed,
    FeedFetchError,
    InvalidCatalogType,
)
from catalog_sync.services.auth import MarketplaceAuth

logger = structlog.get_logger(__name__)

CATALOG_TYPES = ("full", "segment")
GZIP_ENCODINGS = ("gzip", "x-gzip")
CHUNK_SIZE = 64 * 1024


def validate_catalog_type(catalog_type: str) -> str:
    if catalog_type not in CATALOG_TYPES:
        raise InvalidCatalogType(
            f"Invalid catalog type {catalog_type!r}; expected one of {', '.join(CATALOG_TYPES)}"
        )
    return catalog_type


def feed_filename(catalog_type: str, as_of: datetime) -> str:
    """Return the dated feed filename.

    full    -> full-YYYYMMDD.csv.gz
    segment -> segment-YYYYMMDD_HH.csv.gz
    """
    validate_catalog_type(catalog_type)
    if catalog_type == "full":
        return f"full-{as_of:%Y%m%d}.csv.gz"
    return f"segment-{as_of:%Y%m%d_%H}.csv.gz"


def _gunzip(source: Path, destination: Path) -> None:
    with gzip.open(source, "rb") as f_in, open(destination, "wb") as f_out:
        shutil.copyfileobj(f_in, f_out, CHUNK_SIZE)


def _remove_quietly(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        logger.warning("feed_cleanup_failed", path=str(path), error=str(e))


class FeedFetcher:
    """Fetches catalog feeds into a local download directory.

    Usage:
        fetcher = FeedFetcher(settings, download_dir="./tmp_downloads")
        csv_path = await fetcher.fetch("segment")
    """

    def __init__(
        self,
        settings: MarketplaceSettings,
        download_dir: Union[str, Path],
        http_client: Optional[httpx.AsyncClient] = None,
        auth: Optional[MarketplaceAuth] = None,
    ):
        self.settings = settings
        self.download_dir = Path(download_dir)
        self._http = http_client
        self._auth = auth

    @property
    def auth(self) -> MarketplaceAuth:
        if self._auth is None:
            self._auth = MarketplaceAuth(self.settings.access_key, self.settings.secret_key)
        return self._auth

    def resolve_as_of(self, as_of: Optional[datetime] = None) -> datetime:
        """Express as_of in the feed timezone; naive values are taken as already local."""
        tz = ZoneInfo(self.settings.feed_timezone)
        if as_of is None:
            return datetime.now(tz)
        if as_of.tzinfo is None:
            return as_of.replace(tzinfo=tz)
        return as_of.astimezone(tz)

    def feed_url(self, catalog_type: str, filename: str) -> str:
        if not self.settings.catalog_api_url:
            raise ConfigurationError("MARKETPLACE_CATALOG_API_URL is not configured")
        base = self.settings.catalog_api_url.rstrip("/")
        return f"{base}/catalog/{catalog_type}/{filename}"

    def _timeout(self) -> httpx.Timeout:
        return httpx.Timeout(
            connect=10.0,
            read=self.settings.catalog_download_timeout,
            write=10.0,
            pool=10.0,
        )

    async def _stream_to_file(self, url: str, dest: Path) -> str:
        """Stream the raw response body to dest; return the content-encoding."""
        headers = self.auth.headers()
        if self._http is not None:
            client = self._http
            owns_client = False
        else:
            client = httpx.AsyncClient(timeout=self._timeout())
            owns_client = True
        try:
            async with client.stream("GET", url, headers=headers, timeout=self._timeout()) as response:
                response.raise_for_status()
                encoding = response.headers.get("content-encoding", "").strip().lower()
                with open(dest, "wb") as f:
                    # aiter_raw: keep the body exactly as sent, decompression happens below
                    async for chunk in response.aiter_raw(CHUNK_SIZE):
                        f.write(chunk)
                return encoding
        finally:
            if owns_client:
                await client.aclose()

    async def fetch(self, catalog_type: str, as_of: Optional[datetime] = None) -> Path:
        """Download the feed for catalog_type dated as_of and return the local CSV path.

        Raises:
            InvalidCatalogType: For a type other than full or segment
            ConfigurationError: If the feed URL or credentials are missing
            EmptyFeed: If the downloaded body is empty
            FeedFetchError: For any other download or decompression failure
        """
        validate_catalog_type(catalog_type)
        local_as_of = self.resolve_as_of(as_of)
        filename = feed_filename(catalog_type, local_as_of)
        url = self.feed_url(catalog_type, filename)
        # Fail on missing credentials before touching the filesystem
        _ = self.auth

        self.download_dir.mkdir(parents=True, exist_ok=True)
        base_name = filename[: -len(".csv.gz")]
        temp_path = self.download_dir / f"{base_name}_{uuid4().hex}.tmp"
        final_path = self.download_dir / f"{base_name}.csv"
        log = logger.bind(catalog_type=catalog_type, filename=filename)

        log.info("feed_download_started", url=url)
        succeeded = False
        try:
            encoding = await self._stream_to_file(url, temp_path)
            size = temp_path.stat().st_size
            log.info("feed_download_completed", size_bytes=size, content_encoding=encoding or None)
            if size == 0:
                raise EmptyFeed(f"Downloaded feed {filename} is empty")

            if encoding in GZIP_ENCODINGS:
                await asyncio.to_thread(_gunzip, temp_path, final_path)
                log.info("feed_decompressed", path=str(final_path))
            else:
                os.replace(temp_path, final_path)

            if final_path.stat().st_size == 0:
                raise EmptyFeed(f"Feed {filename} decompressed to an empty file")

            succeeded = True
            return final_path
        except FeedFetchError as e:
            log.error("feed_fetch_failed", error=e.message)
            raise
        except (httpx.HTTPError, OSError, EOFError, zlib.error) as e:
            status = e.response.status_code if isinstance(e, httpx.HTTPStatusError) else None
            log.error("feed_fetch_failed", error=str(e), status_code=status)
            raise FeedFetchError(f"Failed to fetch catalog feed {url}: {e}", cause=e) from e
        finally:
            _remove_quietly(temp_path)
            if not succeeded:
                _remove_quietly(final_path)
