import logging
import httpx
from pdfrag.core.exceptions import UpstreamError

logger = logging.getLogger(__name__)

class SourceFetcher:
    """Downloads source documents. One attempt per call; retrying is the caller's decision."""

    def __init__(self, timeout: float = 60.0):
        self.timeout = timeout

    def fetch(self, url: str) -> bytes:
        try:
            with httpx.Client(timeout=self.timeout, follow_redirects=True) as client:
                response = client.get(url)
        except httpx.HTTPError as e:
            raise UpstreamError("fetch", f"Download failed for {url}: {e}") from e

        if not response.is_success:
            raise UpstreamError("fetch", f"Download failed for {url}: HTTP {response.status_code}",
                                {"status_code": response.status_code})

        logger.info(f"Fetched {len(response.content)} bytes from {url}")
        return response.content
