"""Concierge storage client for archiving gauge images.

The concierge service keeps uploaded "luggage" for a limited time and serves
it back under ``{addr}/luggage/{key}``.

Example:
    >>> client = ConciergeClient("https://concierge.example", token="secret")
    >>> with open("gauge.jpg", "rb") as f:
    ...     url = client.post_image(f, "image/jpeg")
"""

import logging
from typing import BinaryIO, Optional

import httpx

logger = logging.getLogger(__name__)

DEFAULT_TTL_MINUTES = 60 * 24 * 2  # 2 days


class ArchiveError(IOError):
    """Uploading an image to the concierge service failed."""


class ConciergeClient:
    """Upload images to the concierge service.

    Args:
        addr: Base URL of the service.
        token: Bearer token.
        ttl_minutes: How long the service keeps the image.
        timeout: Request timeout in seconds.
        client: Optional preconfigured httpx.Client (for testing).
    """

    def __init__(
        self,
        addr: str,
        token: str = "",
        ttl_minutes: int = DEFAULT_TTL_MINUTES,
        timeout: float = 30.0,
        client: Optional[httpx.Client] = None,
    ):
        self._addr = addr.rstrip("/")
        self._token = token
        self._ttl_minutes = ttl_minutes
        self._client = client or httpx.Client(timeout=timeout)

    @property
    def addr(self) -> str:
        return self._addr

    def post_image(self, image: BinaryIO, mime_type: str) -> str:
        """Upload an image and return where it is stored.

        The image is streamed from ``image`` as the request body is sent.

        Args:
            image: Readable binary stream with the image bytes.
            mime_type: MIME type of the image (e.g., "image/jpeg").

        Returns:
            URL of the stored image.

        Raises:
            ArchiveError: On transport errors, error responses or a response
                without a key.
        """
        url = f"{self._addr}/luggage"
        headers = {}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"

        try:
            response = self._client.post(
                url,
                headers=headers,
                data={"mime": mime_type, "ttl": str(self._ttl_minutes)},
                files={"file": ("image", image, mime_type)},
            )
            response.raise_for_status()
            body = response.json()
            key = body.get("key") if isinstance(body, dict) else None
        except httpx.HTTPStatusError as e:
            raise ArchiveError(
                f"Concierge returned {e.response.status_code}: {e.response.text[:200]}"
            ) from e
        except httpx.HTTPError as e:
            raise ArchiveError(f"Concierge request failed: {e}") from e
        except ValueError as e:
            raise ArchiveError(f"Invalid concierge response: {e}") from e

        if not key:
            raise ArchiveError("Concierge response has no key")

        stored_url = f"{self._addr}/luggage/{key}"
        logger.info(f"Posted image to concierge: {stored_url}")
        return stored_url

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "ConciergeClient":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
