import hashlib
import hmac
import os
import re
import time
from typing import Optional, Protocol, Tuple

import httpx

from apps.bliss.errors import StorageFailure
from config.settings import STORAGE_BACKEND, LOCAL_STORAGE_PATH, LOCAL_PUBLIC_URL, LOCAL_SIGNING_SECRET, \
    S3_ENDPOINT, AWS_REGION, AWS_ACCESS_KEY_ID, AWS_SECRET_ACCESS_KEY
from utils.sigv4 import SigV4Signer


DEFAULT_CONTENT_TYPE = 'application/octet-stream'


class StorageInterface(Protocol):
    bucket: str

    async def put(self, key: str, data: bytes, content_type: str = DEFAULT_CONTENT_TYPE) -> bool:
        ...

    async def exists(self, key: str) -> bool:
        ...

    async def delete(self, key: str) -> None:
        ...

    async def signed_download_url(self, key: str, ttl_seconds: int) -> Tuple[str, int]:
        ...


class LocalStorage:
    """Filesystem bucket. Download URLs are HMAC signed and served by /media."""

    def __init__(self, base_path: str, bucket: str,
                 public_url: str = LOCAL_PUBLIC_URL,
                 secret: str = LOCAL_SIGNING_SECRET):
        self.bucket = bucket
        self.base_path = os.path.join(base_path, bucket)
        self.public_url = public_url.rstrip('/')
        self.secret = secret
        os.makedirs(self.base_path, exist_ok=True)

    def _path(self, key: str) -> str:
        return os.path.join(self.base_path, str(key))

    async def put(self, key: str, data: bytes, content_type: str = DEFAULT_CONTENT_TYPE) -> bool:
        path = self._path(key)
        try:
            with open(path, 'wb') as f:
                f.write(data)
            with open(f'{path}.content-type', 'w') as f:
                f.write(content_type or DEFAULT_CONTENT_TYPE)
        except OSError as e:
            raise StorageFailure(f'Local PUT failed for {self.bucket}/{key}: {e}') from e
        return True

    async def get(self, key: str) -> Optional[Tuple[bytes, str]]:
        path = self._path(key)
        if not os.path.exists(path):
            return None
        with open(path, 'rb') as f:
            data = f.read()
        content_type = DEFAULT_CONTENT_TYPE
        if os.path.exists(f'{path}.content-type'):
            with open(f'{path}.content-type') as f:
                content_type = f.read().strip() or DEFAULT_CONTENT_TYPE
        return data, content_type

    async def exists(self, key: str) -> bool:
        return os.path.isfile(self._path(key))

    async def delete(self, key: str) -> None:
        for path in (self._path(key), f'{self._path(key)}.content-type'):
            try:
                os.remove(path)
            except FileNotFoundError:
                pass
            except OSError as e:
                raise StorageFailure(f'Local DELETE failed for {self.bucket}/{key}: {e}') from e

    def signature(self, key: str, expires: int) -> str:
        msg = f'{self.bucket}/{key}:{expires}'.encode('utf-8')
        return hmac.new(self.secret.encode('utf-8'), msg, hashlib.sha256).hexdigest()

    def verify(self, key: str, expires: int, signature: str) -> bool:
        if expires < int(time.time()):
            return False
        return hmac.compare_digest(self.signature(key, expires), signature)

    async def signed_download_url(self, key: str, ttl_seconds: int) -> Tuple[str, int]:
        expires = int(time.time()) + int(ttl_seconds)
        url = (f'{self.public_url}/{self.bucket}/{key}'
               f'?expires={expires}&signature={self.signature(key, expires)}')
        return url, ttl_seconds


class S3HTTPStorage:

    def __init__(
        self,
        endpoint: str,
        bucket: str,
        access_key: str,
        secret_key: str,
        region: str | None = None,
        virtual_host: bool = False,
    ):
        self.endpoint = endpoint.rstrip('/')
        self.bucket = bucket
        self.virtual_host = virtual_host
        self.region = region or self._extract_region(self.endpoint)
        self.signer = SigV4Signer(access_key, secret_key, self.region, 's3')

    def _extract_region(self, endpoint: str) -> str:
        """Auto-detect region from endpoint URL"""
        patterns = [
            r's3[.-]([a-z0-9-]+)\.amazonaws\.com',
            r'([a-z0-9-]+)\.digitaloceanspaces\.com',
            r'([a-z0-9-]+)\.linodeobjects\.com',
        ]
        for p in patterns:
            match = re.search(p, endpoint)
            if match:
                return match.group(1)

        # MinIO and generic S3 services commonly use "us-east-1"
        return "us-east-1"

    def _make_url(self, key: str) -> str:
        """
        Supports both:
            - path-style:       https://endpoint/bucket/key
            - virtual-host:     https://bucket.endpoint/key
        """
        if self.virtual_host:
            return f"{self.endpoint.replace('//', f'//{self.bucket}.')}/{key}"
        return f"{self.endpoint}/{self.bucket}/{key}"

    async def _send(self, method: str, key: str, content: bytes = b'', headers: dict | None = None):
        url = self._make_url(key)
        signed = self.signer.sign_headers(method, url, headers, content)
        try:
            async with httpx.AsyncClient() as client:
                return await client.request(method, url, content=content or None, headers=signed)
        except httpx.HTTPError as e:
            raise StorageFailure(f"S3 {method} failed for {self.bucket}/{key}: {e}") from e

    async def put(self, key: str, data: bytes, content_type: str = DEFAULT_CONTENT_TYPE) -> bool:
        resp = await self._send('PUT', key, data, {'Content-Type': content_type or DEFAULT_CONTENT_TYPE})
        if resp.status_code not in (200, 201):
            raise StorageFailure(f"S3 PUT failed: {resp.status_code} {resp.text}")
        return True

    async def exists(self, key: str) -> bool:
        resp = await self._send('HEAD', key)
        if resp.status_code == 200:
            return True
        if resp.status_code == 404:
            return False
        raise StorageFailure(f"S3 HEAD failed: {resp.status_code} {resp.text}")

    async def delete(self, key: str) -> None:
        resp = await self._send('DELETE', key)
        if resp.status_code not in (200, 204, 404):
            raise StorageFailure(f"S3 DELETE failed: {resp.status_code} {resp.text}")

    async def signed_download_url(self, key: str, ttl_seconds: int) -> Tuple[str, int]:
        if not self.signer.has_credentials:
            raise StorageFailure(f"Cannot sign a download URL for {self.bucket}/{key} without credentials")
        return self.signer.presign_url('GET', self._make_url(key), ttl_seconds), ttl_seconds


def pick_storage(bucket: str) -> StorageInterface:
    """Pick the blob store for ``bucket`` based on STORAGE_BACKEND."""
    storage_type = STORAGE_BACKEND.lower()
    if storage_type == 's3':
        return S3HTTPStorage(endpoint=S3_ENDPOINT, bucket=bucket, region=AWS_REGION,
                             access_key=AWS_ACCESS_KEY_ID, secret_key=AWS_SECRET_ACCESS_KEY,
                             virtual_host=False)
    # default local
    return LocalStorage(LOCAL_STORAGE_PATH, bucket)
