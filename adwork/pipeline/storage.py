"""
R2 media sink — turns generated bytes into permanent public URLs.

All generated assets are stored under:
  adwork/{folder}/{uuid}.{ext}

The object key doubles as the media id used to delete the asset later.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass
from io import BytesIO
from typing import Optional

from PIL import Image, ImageOps

from .. import config

logger = logging.getLogger(__name__)

KEY_PREFIX = "adwork"

THUMBNAIL_SIZE = (1280, 720)

EXTENSIONS = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/webp": "webp",
    "video/mp4": "mp4",
}


@dataclass
class StoredMedia:
    url: str
    media_id: str


def media_key(folder: str, content_type: str) -> str:
    ext = EXTENSIONS.get(content_type.split(";")[0], "bin")
    return f"{KEY_PREFIX}/{folder}/{uuid.uuid4().hex}.{ext}"


def render_thumbnail(image_bytes: bytes, size: tuple[int, int] = THUMBNAIL_SIZE) -> bytes:
    """Cover-crop an image to the thumbnail size and encode it as JPEG."""
    img = Image.open(BytesIO(image_bytes))
    img = ImageOps.exif_transpose(img).convert("RGB")
    thumb = ImageOps.fit(img, size, method=Image.LANCZOS)
    out = BytesIO()
    thumb.save(out, format="JPEG", quality=85)
    return out.getvalue()


class R2MediaSink:
    """Upload/delete against Cloudflare R2 through the S3 API."""

    def __init__(
        self,
        bucket: Optional[str] = None,
        public_url: Optional[str] = None,
        s3_client=None,
    ):
        self.bucket = bucket or config.R2_BUCKET_NAME
        self.public_url = (public_url if public_url is not None else config.R2_PUBLIC_URL).rstrip("/")
        self._s3 = s3_client

    def _client(self):
        if self._s3 is None:
            import boto3
            from botocore.config import Config as BotoConfig

            self._s3 = boto3.client(
                "s3",
                endpoint_url=f"https://{config.R2_ACCOUNT_ID}.r2.cloudflarestorage.com",
                aws_access_key_id=config.R2_ACCESS_KEY_ID,
                aws_secret_access_key=config.R2_SECRET_ACCESS_KEY,
                config=BotoConfig(signature_version="s3v4"),
                region_name="auto",
            )
        return self._s3

    def public_url_for(self, key: str) -> str:
        return f"{self.public_url}/{key}"

    async def upload(self, data: bytes, folder: str, content_type: str) -> StoredMedia:
        key = media_key(folder, content_type)
        try:
            await asyncio.to_thread(
                self._client().put_object,
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
            )
        except Exception as e:
            logger.error(f"R2 upload failed for key={key}: {e}")
            raise

        url = self.public_url_for(key)
        logger.info(f"Uploaded to R2: {url} ({len(data) // 1024}KB)")
        return StoredMedia(url=url, media_id=key)

    async def delete(self, media_id: str) -> None:
        await asyncio.to_thread(self._client().delete_object, Bucket=self.bucket, Key=media_id)
        logger.info(f"Deleted from R2: {media_id}")
