"""Durable storage for generated images.

Copies the provider's (expiring) output URL into a storage bucket under a
deterministic path ``{folder_prefix}/{user_id}/{job_id}.png`` and returns the
public URL of the stored object.
"""

from typing import Optional
from uuid import UUID

import httpx
import structlog

from lumina.services.exceptions import StorageTransferFailedError

logger = structlog.get_logger(__name__)

REQUEST_TIMEOUT_SECONDS = 30.0


class AssetStorage:
    """Storage bucket client (Supabase Storage REST API)."""

    def __init__(
        self,
        base_url: str,
        service_key: str,
        bucket: str = "ai-generated-images",
        folder_prefix: str = "generations",
        client: Optional[httpx.AsyncClient] = None,
    ):
        """Initialize storage client.

        Args:
            base_url: Project URL (e.g., https://xyz.supabase.co)
            service_key: Service role key (server-side only)
            bucket: Bucket holding generated images
            folder_prefix: Top-level folder inside the bucket
            client: Optional shared HTTP client (a new one is created per call otherwise)
        """
        self.base_url = base_url.rstrip("/")
        self.bucket = bucket
        self.folder_prefix = folder_prefix.strip("/")
        self.headers = {
            "Authorization": f"Bearer {service_key}",
            "apikey": service_key,
        }
        self._client = client

    def object_path(self, user_id: UUID | str, job_id: UUID | str) -> str:
        return f"{self.folder_prefix}/{user_id}/{job_id}.png"

    def public_url(self, path: str) -> str:
        return f"{self.base_url}/storage/v1/object/public/{self.bucket}/{path}"

    def _http(self) -> httpx.AsyncClient:
        return self._client or httpx.AsyncClient(timeout=REQUEST_TIMEOUT_SECONDS)

    async def transfer(self, source_url: str, user_id: UUID | str, job_id: UUID | str) -> str:
        """Download source_url and upload it to the job's storage path (overwriting).

        Args:
            source_url: Provider output URL
            user_id: Owner of the job
            job_id: Generation job id

        Returns:
            Public URL of the stored image

        Raises:
            StorageTransferFailedError: On any download/upload failure
        """
        path = self.object_path(user_id, job_id)
        client = self._http()

        try:
            image_response = await client.get(source_url)
            image_response.raise_for_status()
            content_type = image_response.headers.get("content-type", "image/png")

            response = await client.post(
                f"{self.base_url}/storage/v1/object/{self.bucket}/{path}",
                headers={**self.headers, "Content-Type": content_type, "x-upsert": "true"},
                content=image_response.content,
            )

            if response.status_code in (401, 403):
                raise StorageTransferFailedError(
                    f"Storage rejected credentials ({response.status_code}). "
                    "Check SUPABASE_SERVICE_KEY configuration."
                )
            if response.status_code >= 400:
                raise StorageTransferFailedError(
                    f"Storage upload failed ({response.status_code}): {response.text}"
                )

        except StorageTransferFailedError:
            raise
        except httpx.TimeoutException as e:
            raise StorageTransferFailedError(
                f"Request timeout after {REQUEST_TIMEOUT_SECONDS:.0f}s: {str(e)}"
            ) from e
        except httpx.HTTPError as e:
            raise StorageTransferFailedError(f"Network error: {str(e)}") from e
        except httpx.InvalidURL as e:
            raise StorageTransferFailedError(f"Invalid URL: {str(e)}") from e
        except Exception as e:
            raise StorageTransferFailedError(f"Unexpected error: {str(e)}") from e
        finally:
            if self._client is None:
                await client.aclose()

        logger.info("storage.uploaded", path=path, bytes=len(image_response.content))
        return self.public_url(path)

    async def remove(self, user_id: UUID | str, job_id: UUID | str) -> None:
        """Delete the job's stored image.

        Raises:
            StorageTransferFailedError: If the delete request failed
        """
        path = self.object_path(user_id, job_id)
        client = self._http()

        try:
            response = await client.request(
                "DELETE",
                f"{self.base_url}/storage/v1/object/{self.bucket}",
                headers=self.headers,
                json={"prefixes": [path]},
            )
            if response.status_code >= 400:
                raise StorageTransferFailedError(
                    f"Storage delete failed ({response.status_code}): {response.text}"
                )
        except StorageTransferFailedError:
            raise
        except httpx.HTTPError as e:
            raise StorageTransferFailedError(f"Network error: {str(e)}") from e
        except Exception as e:
            raise StorageTransferFailedError(f"Unexpected error: {str(e)}") from e
        finally:
            if self._client is None:
                await client.aclose()

        logger.info("storage.removed", path=path)
