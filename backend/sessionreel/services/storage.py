"""Supabase Storage service for rendered video uploads."""
import base64
import os
from dataclasses import dataclass
from typing import Dict, Optional
from urllib.parse import quote, urljoin

import httpx

from sessionreel.config import settings
from sessionreel.constants import UploadMode
from sessionreel.utils.exceptions import ArtifactValidationError, UploadError
from sessionreel.utils.logger import logger

TUS_VERSION = "1.0.0"


@dataclass
class UploadResult:
    """Result of a file upload operation."""
    success: bool
    url: Optional[str] = None
    error: Optional[str] = None


def encode_object_path(path: str) -> str:
    """Quote each path segment but keep the slashes."""
    return "/".join(quote(segment, safe="") for segment in path.split("/"))


def _tus_metadata(values: Dict[str, str]) -> str:
    return ",".join(
        f"{key} {base64.b64encode(value.encode('utf-8')).decode('ascii')}"
        for key, value in values.items()
    )


class StorageService:
    """Uploads files to Supabase Storage using its REST and TUS endpoints."""

    def __init__(
        self,
        supabase_url: Optional[str] = None,
        supabase_key: Optional[str] = None,
        bucket: Optional[str] = None,
        upload_mode: Optional[str] = None,
        chunk_size: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.supabase_url = (supabase_url or settings.supabase_url or "").rstrip("/")
        self.supabase_key = supabase_key or settings.supabase_secret_key
        self.bucket = bucket or settings.storage_bucket
        self.upload_mode = upload_mode or settings.upload_mode
        self.chunk_size = chunk_size or settings.upload_chunk_size
        self.storage_url = f"{self.supabase_url}/storage/v1"
        self._transport = transport
        self._bucket_public: Dict[str, bool] = {}  # Cache bucket public status

    def _client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=timeout, transport=self._transport)

    def _headers(self, **extra: str) -> Dict[str, str]:
        headers = {
            "apikey": self.supabase_key,
            "Authorization": f"Bearer {self.supabase_key}",
        }
        headers.update(extra)
        return headers

    def _resolve_mode(self) -> str:
        if self.upload_mode == UploadMode.AUTO:
            return UploadMode.RESUMABLE if settings.is_production else UploadMode.DIRECT
        return self.upload_mode

    async def _ensure_bucket_exists(self, bucket: str) -> bool:
        """Ensure the storage bucket exists, create it (public) if it doesn't."""
        if bucket in self._bucket_public:
            return True

        headers = self._headers(**{"Content-Type": "application/json"})
        async with self._client(10.0) as client:
            check_response = await client.get(f"{self.storage_url}/bucket/{bucket}", headers=headers)

            if check_response.status_code == 200:
                self._bucket_public[bucket] = bool(check_response.json().get("public", False))
                return True

            # Supabase answers 400 with a "not found" body for missing buckets
            if check_response.status_code in (400, 404):
                create_response = await client.post(
                    f"{self.storage_url}/bucket",
                    headers=headers,
                    json={"id": bucket, "name": bucket, "public": True},
                )
                if create_response.status_code in (200, 201):
                    logger.info(f"[STORAGE] Created public bucket {bucket}")
                    self._bucket_public[bucket] = True
                    return True
                logger.error(
                    f"[STORAGE] Failed to create bucket {bucket}: "
                    f"{create_response.status_code} - {create_response.text}"
                )
                return False

            logger.error(
                f"[STORAGE] Failed to check bucket {bucket}: "
                f"{check_response.status_code} - {check_response.text}"
            )
            return False

    async def upload_video(
        self,
        video_path: str,
        object_path: str,
        bucket: Optional[str] = None,
    ) -> UploadResult:
        """
        Upload a rendered video and return a URL for it.

        Args:
            video_path: Local path to the video
            object_path: Path inside the bucket, e.g. "videos/{project}/{recording}/replay.webm"
            bucket: Bucket name, defaults to the configured bucket

        Returns:
            UploadResult with a public URL, or a signed URL for private buckets

        Raises:
            ArtifactValidationError: If the file is too small to be a real video
        """
        bucket = bucket or self.bucket
        size = os.path.getsize(video_path) if os.path.exists(video_path) else 0
        if size < settings.min_video_bytes:
            raise ArtifactValidationError(size)

        if not self.supabase_url or not self.supabase_key:
            return UploadResult(
                success=False,
                error="Supabase URL and secret key must be configured. "
                "Set SUPABASE_URL and SUPABASE_SECRET_KEY environment variables.",
            )

        try:
            if not await self._ensure_bucket_exists(bucket):
                return UploadResult(
                    success=False,
                    error=f"Storage bucket '{bucket}' does not exist and could not be created.",
                )

            content_type = self._get_content_type(video_path)
            mode = self._resolve_mode()
            logger.info(f"[STORAGE] Uploading {video_path} ({size} bytes) to {bucket}/{object_path} via {mode}")

            if mode == UploadMode.RESUMABLE:
                await self._upload_resumable(video_path, bucket, object_path, content_type, size)
            else:
                await self._upload_direct(video_path, bucket, object_path, content_type)

            if self._bucket_public.get(bucket):
                url = self.public_url(bucket, object_path)
            else:
                url = await self._create_signed_url(bucket, object_path, settings.signed_url_expiry_seconds)
                if not url:
                    return UploadResult(success=False, error="Failed to generate signed URL for private bucket")

            logger.info(f"[STORAGE] Upload successful: {url}")
            return UploadResult(success=True, url=url)

        except (UploadError, httpx.HTTPError) as e:
            logger.error(f"[STORAGE] Failed to upload {video_path} to {bucket}/{object_path}: {e}", exc_info=True)
            return UploadResult(success=False, error=str(e))

    async def _upload_direct(self, file_path: str, bucket: str, object_path: str, content_type: str) -> None:
        """Single-shot upload of the whole file."""
        upload_url = f"{self.storage_url}/object/{bucket}/{encode_object_path(object_path)}"
        with open(file_path, "rb") as f:
            file_content = f.read()

        async with self._client(60.0) as client:
            response = await client.post(
                upload_url,
                headers=self._headers(**{"Content-Type": content_type, "x-upsert": "true"}),
                content=file_content,
            )
        if response.status_code not in (200, 201):
            raise UploadError(f"Upload failed: {response.status_code} - {response.text}")

    async def _upload_resumable(
        self,
        file_path: str,
        bucket: str,
        object_path: str,
        content_type: str,
        size: int,
    ) -> None:
        """
        TUS upload in fixed-size chunks.

        A failed chunk resumes from the offset the server acknowledged; if
        that keeps failing the upload is restarted once from scratch.
        """
        async with self._client(120.0) as client:
            for restart in range(2):
                location = await self._create_resumable_upload(client, bucket, object_path, content_type, size)
                try:
                    await self._send_chunks(client, location, file_path, size)
                    return
                except UploadError as e:
                    if restart:
                        raise
                    logger.warning(f"[STORAGE] Resumable upload stalled, restarting: {e}")

    async def _create_resumable_upload(
        self,
        client: httpx.AsyncClient,
        bucket: str,
        object_path: str,
        content_type: str,
        size: int,
    ) -> str:
        create_url = f"{self.storage_url}/upload/resumable"
        response = await client.post(
            create_url,
            headers=self._headers(**{
                "Tus-Resumable": TUS_VERSION,
                "Upload-Length": str(size),
                "Upload-Metadata": _tus_metadata({
                    "bucketName": bucket,
                    "objectName": object_path,
                    "contentType": content_type,
                    "cacheControl": "3600",
                }),
                "x-upsert": "true",
            }),
        )
        location = response.headers.get("Location")
        if response.status_code != 201 or not location:
            raise UploadError(f"Could not create resumable upload: {response.status_code} - {response.text}")
        return urljoin(create_url + "/", location)

    async def _server_offset(self, client: httpx.AsyncClient, location: str, fallback: int) -> int:
        try:
            response = await client.head(location, headers=self._headers(**{"Tus-Resumable": TUS_VERSION}))
        except httpx.TransportError as e:
            logger.warning(f"[STORAGE] Could not read upload offset: {e}")
            return fallback
        if response.status_code != 200 or "Upload-Offset" not in response.headers:
            return fallback
        return int(response.headers["Upload-Offset"])

    async def _send_chunks(self, client: httpx.AsyncClient, location: str, file_path: str, size: int) -> None:
        offset = 0
        failures = 0
        with open(file_path, "rb") as f:
            while offset < size:
                f.seek(offset)
                chunk = f.read(self.chunk_size)
                try:
                    response = await client.patch(
                        location,
                        headers=self._headers(**{
                            "Tus-Resumable": TUS_VERSION,
                            "Upload-Offset": str(offset),
                            "Content-Type": "application/offset+octet-stream",
                        }),
                        content=chunk,
                    )
                except httpx.TransportError as e:
                    error = f"{type(e).__name__}: {e}"
                else:
                    if response.status_code in (200, 204):
                        offset = int(response.headers.get("Upload-Offset", offset + len(chunk)))
                        failures = 0
                        continue
                    error = f"{response.status_code} - {response.text}"

                failures += 1
                if failures >= settings.upload_max_attempts:
                    raise UploadError(f"Chunk upload failed at offset {offset}: {error}")
                offset = await self._server_offset(client, location, fallback=offset)
                logger.warning(f"[STORAGE] Chunk failed ({error}), resuming at offset {offset}")

    def public_url(self, bucket: str, object_path: str) -> str:
        return f"{self.storage_url}/object/public/{bucket}/{encode_object_path(object_path)}"

    async def _create_signed_url(self, bucket: str, object_path: str, expires_in: int) -> Optional[str]:
        """Create a signed URL for a file in a private bucket."""
        sign_url = f"{self.storage_url}/object/sign/{bucket}/{encode_object_path(object_path)}"
        async with self._client(10.0) as client:
            response = await client.post(
                sign_url,
                headers=self._headers(**{"Content-Type": "application/json"}),
                json={"expiresIn": expires_in},
            )

        if response.status_code != 200:
            logger.error(f"[STORAGE] Failed to create signed URL: {response.status_code} - {response.text}")
            return None

        signed_path = response.json().get("signedURL", "")
        if signed_path.startswith("/"):
            # Supabase returns the path relative to /storage/v1
            return f"{self.storage_url}{signed_path}"
        return signed_path or None

    def _get_content_type(self, file_path: str) -> str:
        """Get content type from file extension."""
        ext = os.path.splitext(file_path)[1].lower()
        content_types = {
            ".mp4": "video/mp4",
            ".webm": "video/webm",
        }
        return content_types.get(ext, "application/octet-stream")


# Singleton instance
storage_service = StorageService()
