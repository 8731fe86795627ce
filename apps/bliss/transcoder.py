from typing import Protocol

import httpx

from apps.bliss.errors import StorageFailure
from config.settings import TRANSCODER_URL


class Transcoder(Protocol):
    async def transmux(self, data: bytes, mime_type: str) -> bytes:
        ...


class PassthroughTranscoder:
    """Delivers the uploaded bytes unchanged to the output bucket."""

    async def transmux(self, data: bytes, mime_type: str) -> bytes:
        return data


class HTTPTranscoder:

    def __init__(self, url: str, timeout: float = 300.0):
        self.url = url
        self.timeout = timeout

    async def transmux(self, data: bytes, mime_type: str) -> bytes:
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.post(self.url, content=data, headers={'Content-Type': mime_type})
        except httpx.HTTPError as e:
            raise StorageFailure(f'Transmux failed: {e}') from e
        if resp.status_code != 200:
            raise StorageFailure(f'Transmux failed: {resp.status_code} {resp.text}')
        return resp.content


def pick_transcoder() -> Transcoder:
    if TRANSCODER_URL:
        return HTTPTranscoder(TRANSCODER_URL)
    return PassthroughTranscoder()
