"""AWS Signature Version 4 for plain httpx calls.

Covers the two shapes the bliss adapters need: an ``Authorization`` header
for S3/SNS/DynamoDB requests, and a presigned query string for S3 GETs.
"""
import hashlib
import hmac
from datetime import datetime, timezone
from typing import Callable, Dict, Optional
from urllib.parse import quote, urlparse, parse_qsl

ALGORITHM = 'AWS4-HMAC-SHA256'
UNSIGNED_PAYLOAD = 'UNSIGNED-PAYLOAD'


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _encode(value: str, safe: str = '-_.~') -> str:
    return quote(value, safe=safe)


class SigV4Signer:

    def __init__(
        self,
        access_key: str,
        secret_key: str,
        region: str,
        service: str,
        now: Callable[[], datetime] = _utcnow,
    ):
        self.access_key = access_key
        self.secret_key = secret_key
        self.region = region
        self.service = service
        self._now = now

    @property
    def has_credentials(self) -> bool:
        return bool(self.access_key and self.secret_key)

    def _sign(self, key: bytes, msg: str) -> bytes:
        return hmac.new(key, msg.encode('utf-8'), hashlib.sha256).digest()

    def _get_signature_key(self, date_stamp: str) -> bytes:
        k_date = self._sign(f"AWS4{self.secret_key}".encode('utf-8'), date_stamp)
        k_region = self._sign(k_date, self.region)
        k_service = self._sign(k_region, self.service)
        return self._sign(k_service, 'aws4_request')

    def _scope(self, date_stamp: str) -> str:
        return f"{date_stamp}/{self.region}/{self.service}/aws4_request"

    def _signature(self, date_stamp: str, amz_date: str, canonical_request: str) -> str:
        string_to_sign = (
            f"{ALGORITHM}\n"
            f"{amz_date}\n"
            f"{self._scope(date_stamp)}\n"
            f"{hashlib.sha256(canonical_request.encode('utf-8')).hexdigest()}"
        )
        return hmac.new(
            self._get_signature_key(date_stamp),
            string_to_sign.encode('utf-8'),
            hashlib.sha256,
        ).hexdigest()

    @staticmethod
    def _canonical_query(params) -> str:
        pairs = sorted((_encode(k), _encode(v)) for k, v in params)
        return '&'.join(f"{k}={v}" for k, v in pairs)

    def sign_headers(
        self,
        method: str,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        payload: bytes = b'',
    ) -> Dict[str, str]:
        """Return the headers to send, ``Authorization`` included.

        Without credentials the caller's headers come back untouched, which
        lets local S3-compatible services run unauthenticated.
        """
        out = dict(headers or {})
        if not self.has_credentials:
            return out

        now = self._now()
        amz_date = now.strftime('%Y%m%dT%H%M%SZ')
        date_stamp = now.strftime('%Y%m%d')
        parsed = urlparse(url)
        payload_hash = hashlib.sha256(payload).hexdigest()

        out['x-amz-date'] = amz_date
        if self.service == 's3':
            out['x-amz-content-sha256'] = payload_hash

        to_sign = {k.lower(): ' '.join(str(v).split()) for k, v in out.items()}
        to_sign['host'] = parsed.netloc
        signed_headers = ';'.join(sorted(to_sign))
        canonical_headers = ''.join(f"{k}:{to_sign[k]}\n" for k in sorted(to_sign))

        canonical_request = (
            f"{method}\n"
            f"{_encode(parsed.path or '/', safe='/-_.~')}\n"
            f"{self._canonical_query(parse_qsl(parsed.query, keep_blank_values=True))}\n"
            f"{canonical_headers}\n"
            f"{signed_headers}\n"
            f"{payload_hash}"
        )
        signature = self._signature(date_stamp, amz_date, canonical_request)

        out['Authorization'] = (
            f"{ALGORITHM} "
            f"Credential={self.access_key}/{self._scope(date_stamp)}, "
            f"SignedHeaders={signed_headers}, "
            f"Signature={signature}"
        )
        return out

    def presign_url(self, method: str, url: str, expires: int) -> str:
        """Query-string presigned URL, valid ``expires`` seconds from now."""
        now = self._now()
        amz_date = now.strftime('%Y%m%dT%H%M%SZ')
        date_stamp = now.strftime('%Y%m%d')
        parsed = urlparse(url)

        params = parse_qsl(parsed.query, keep_blank_values=True) + [
            ('X-Amz-Algorithm', ALGORITHM),
            ('X-Amz-Credential', f"{self.access_key}/{self._scope(date_stamp)}"),
            ('X-Amz-Date', amz_date),
            ('X-Amz-Expires', str(int(expires))),
            ('X-Amz-SignedHeaders', 'host'),
        ]
        query = self._canonical_query(params)
        canonical_request = (
            f"{method}\n"
            f"{_encode(parsed.path or '/', safe='/-_.~')}\n"
            f"{query}\n"
            f"host:{parsed.netloc}\n\n"
            f"host\n"
            f"{UNSIGNED_PAYLOAD}"
        )
        signature = self._signature(date_stamp, amz_date, canonical_request)
        base = f"{parsed.scheme}://{parsed.netloc}{parsed.path}"
        return f"{base}?{query}&X-Amz-Signature={signature}"
