import json
from typing import Any, Optional

from pydantic import BaseModel, Field


class BlissRequest(BaseModel):
    id: int
    client_id: str
    celeb_name: str
    payload: Optional[Any] = None
    video_present: bool = False
    created_at: int
    expire_at: int

    def to_item(self) -> dict:
        item = {
            'BLISS_ID': self.id,
            'BLISS_REQUESTER': self.client_id,
            'BLISS_RESPONDER': self.celeb_name,
            'VIDEO_EXISTS': self.video_present,
            'CREATED_AT': self.created_at,
            'EXPIRE_TIME': self.expire_at,
        }
        if self.payload is not None:
            item['BLISS_REQUEST_DATA'] = json.dumps(self.payload)
        return item


class BlissResponse(BaseModel):
    id: int
    request_id: int
    client_id: str
    celeb_name: str
    created_at: int
    expire_at: int

    def to_item(self) -> dict:
        return {
            'BLISS_ID': self.id,
            'BLISS_REQUEST_ID': self.request_id,
            'BLISS_REQUESTER': self.client_id,
            'BLISS_RESPONDER': self.celeb_name,
            'CREATED_AT': self.created_at,
            'EXPIRE_TIME': self.expire_at,
        }


class BlissRequestData(BaseModel):
    """Possibly partial view of a stored request."""
    id: int
    client_id: Optional[str] = None
    celeb_name: Optional[str] = None
    payload: Optional[Any] = None
    video_present: Optional[bool] = None

    @classmethod
    def from_item(cls, bliss_id: int, item: dict) -> 'BlissRequestData':
        payload = item.get('BLISS_REQUEST_DATA')
        if isinstance(payload, str):
            try:
                payload = json.loads(payload)
            except ValueError:
                pass
        return cls(
            id=bliss_id,
            client_id=item.get('BLISS_REQUESTER'),
            celeb_name=item.get('BLISS_RESPONDER'),
            payload=payload,
            video_present=item.get('VIDEO_EXISTS'),
        )


class SignedUrl(BaseModel):
    url: str
    expire_time: int


class PublishResult(BaseModel):
    ok: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


class BlissSubmitted(BaseModel):
    id: int
    notified: bool


class BlissCanceled(BaseModel):
    id: int
    notified: bool
    video_deleted: bool = False


# request bodies

class BlissDataRequestIn(BaseModel):
    client_id: str = Field(..., min_length=1)
    celeb_name: str = Field(..., min_length=1)
    bliss_request_data: Any = Field(...)
    client_name: Optional[str] = None


class BlissCancelIn(BaseModel):
    bliss_request_id: int
