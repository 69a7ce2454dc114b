from __future__ import annotations

import http.client
import io
import zipfile
import zlib
from urllib.error import HTTPError
from urllib.request import Request, urlopen

from stockdata.errors import ArchiveError
from stockdata.logging_config import get_logger

logger = get_logger(__name__)


def download_archive(url: str, timeout_seconds: float) -> bytes:
    request = Request(url, headers={"User-Agent": "stockdata/0.1"})
    logger.info("Downloading master archive %s", url)
    try:
        with urlopen(request, timeout=timeout_seconds) as response:
            return response.read()
    except HTTPError as exc:
        raise ArchiveError(f"Download failed for {url}: {exc.code}") from exc
    # URLError, timeouts and resets are OSError; truncated bodies are HTTPException.
    except (http.client.HTTPException, OSError) as exc:
        raise ArchiveError(f"Download failed for {url}: {exc!r}") from exc


def extract_single_entry(archive: bytes) -> bytes:
    """Return the contents of the archive's first file entry."""
    try:
        with zipfile.ZipFile(io.BytesIO(archive)) as bundle:
            entries = [info for info in bundle.infolist() if not info.is_dir()]
            if not entries:
                raise ArchiveError("Archive contains no file entries.")
            if len(entries) > 1:
                logger.warning(
                    "Archive has %d entries, using %s", len(entries), entries[0].filename
                )
            return bundle.read(entries[0])
    except (zipfile.BadZipFile, zlib.error, EOFError) as exc:
        raise ArchiveError(f"Invalid archive: {exc}") from exc


def decode_text(raw: bytes, encoding: str) -> str:
    # Undecodable sequences become U+FFFD so one bad name does not drop the segment.
    try:
        return raw.decode(encoding, errors="replace")
    except LookupError as exc:
        raise ArchiveError(f"Unknown master file encoding: {encoding}") from exc
