"""CloudFront signed URLs (canned policy).

The policy is signed with RSA-SHA1 using the key pair registered with the
distribution, then base64 encoded with CloudFront's URL-safe alphabet.
"""
import base64
import json
import time
from typing import Callable, Tuple

from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding


def _cloudfront_b64(data: bytes) -> str:
    return (base64.b64encode(data).decode('ascii')
            .replace('+', '-').replace('=', '_').replace('/', '~'))


def load_private_key(pem: bytes):
    return serialization.load_pem_private_key(pem, password=None)


class CloudFrontSigner:

    def __init__(self, base_url: str, access_key_id: str, private_key_pem: bytes,
                 now: Callable[[], float] = time.time):
        self.base_url = base_url.rstrip('/')
        self.access_key_id = access_key_id
        self._private_key = load_private_key(private_key_pem)
        self._now = now

    def canned_policy(self, url: str, expires_at: int) -> str:
        policy = {
            'Statement': [{
                'Resource': url,
                'Condition': {'DateLessThan': {'AWS:EpochTime': expires_at}},
            }]
        }
        return json.dumps(policy, separators=(',', ':'))

    def sign(self, message: bytes) -> bytes:
        return self._private_key.sign(message, padding.PKCS1v15(), hashes.SHA1())

    def signed_url(self, key: str, ttl_seconds: int) -> str:
        url = f"{self.base_url}/{key}"
        expires_at = int(self._now()) + int(ttl_seconds)
        signature = self.sign(self.canned_policy(url, expires_at).encode('utf-8'))
        sep = '&' if '?' in url else '?'
        return (f"{url}{sep}Expires={expires_at}"
                f"&Signature={_cloudfront_b64(signature)}"
                f"&Key-Pair-Id={self.access_key_id}")

    async def signed_download_url(self, key: str, ttl_seconds: int) -> Tuple[str, int]:
        return self.signed_url(key, ttl_seconds), ttl_seconds
