"""Bliss lifecycle coordinator.

Sequences blob uploads, metadata writes and notifications for the request,
response and cancellation workflows. Nothing is held between calls: every
fact lives in the blob stores or the metadata tables, and the three stores
are written one after another without a shared transaction.

Step order per workflow is fixed. A storage or metadata failure stops the
workflow where it is; earlier steps are not rolled back, so an uploaded blob
can outlive a failed metadata write. A notification failure is reported in
the result but does not fail the workflow.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Protocol, Tuple

import structlog

from apps.bliss.errors import InvalidTransition, NotFound, ValidationFailure, require
from apps.bliss.identifiers import BlissClock
from apps.bliss.metadata import MetadataStore, pick_metadata_backend
from apps.bliss.notifications import NotificationPublisher, bliss_event, pick_publisher, \
    BLISS_REQUEST_RECEIVED, BLISS_RESPONSE_SENT, BLISS_REQUEST_CANCELED
from apps.bliss.schema import BlissRequest, BlissResponse, BlissRequestData, BlissSubmitted, \
    BlissCanceled, SignedUrl
from apps.bliss.storage import StorageInterface, pick_storage
from apps.bliss.transcoder import Transcoder, pick_transcoder
from config import settings
from utils.cdn import CloudFrontSigner

logger = structlog.get_logger(__name__)

REQUEST_DATA_PROJECTION = ('BLISS_REQUESTER', 'BLISS_RESPONDER', 'BLISS_REQUEST_DATA', 'VIDEO_EXISTS')
REQUEST_IDENTITY_PROJECTION = ('BLISS_REQUESTER', 'BLISS_RESPONDER')


class BlissState(str, Enum):
    CREATED_NO_VIDEO = 'CREATED_NO_VIDEO'
    CREATED_WITH_VIDEO = 'CREATED_WITH_VIDEO'
    RESPONDED = 'RESPONDED'
    CANCELED = 'CANCELED'
    EXPIRED = 'EXPIRED'


TRANSITIONS = {
    None: {BlissState.CREATED_NO_VIDEO, BlissState.CREATED_WITH_VIDEO},
    BlissState.CREATED_NO_VIDEO: {BlissState.CREATED_WITH_VIDEO, BlissState.RESPONDED,
                                  BlissState.CANCELED, BlissState.EXPIRED},
    BlissState.CREATED_WITH_VIDEO: {BlissState.RESPONDED, BlissState.CANCELED, BlissState.EXPIRED},
    BlissState.RESPONDED: {BlissState.EXPIRED},
    BlissState.CANCELED: set(),
    BlissState.EXPIRED: set(),
}


def can_transition(current: Optional[BlissState], target: BlissState) -> bool:
    return target in TRANSITIONS.get(current, set())


class UrlSigner(Protocol):
    async def signed_download_url(self, key: str, ttl_seconds: int) -> Tuple[str, int]:
        ...


@dataclass(frozen=True)
class BlissTopics:
    request_received: str
    response_sent: str
    request_canceled: str


def _as_id(value: Any, name: str) -> int:
    require(**{name: value})
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationFailure(f'{name} must be an integer, got {value!r}')


class BlissCoordinator:

    def __init__(
        self,
        *,
        clock: BlissClock,
        request_videos: StorageInterface,
        response_videos: StorageInterface,
        response_output: StorageInterface,
        response_urls: UrlSigner,
        requests: MetadataStore,
        responses: MetadataStore,
        publisher: NotificationPublisher,
        topics: BlissTopics,
        transcoder: Optional[Transcoder] = None,
        request_url_ttl: int = settings.BLISS_REQUEST_URL_TTL,
        response_url_ttl: int = settings.BLISS_RESPONSE_URL_TTL,
        cancel_deletes_video: bool = False,
    ):
        self.clock = clock
        self.request_videos = request_videos
        self.response_videos = response_videos
        self.response_output = response_output
        self.response_urls = response_urls
        self.requests = requests
        self.responses = responses
        self.publisher = publisher
        self.topics = topics
        self.transcoder = transcoder
        self.request_url_ttl = request_url_ttl
        self.response_url_ttl = response_url_ttl
        self.cancel_deletes_video = cancel_deletes_video

    def request_date_and_time(self, request_id: int) -> Tuple[str, int]:
        return self.clock.request_date_and_time(request_id)

    # requests

    async def submit_data_request(self, client_id: str, celeb_name: str, payload: Any) -> BlissSubmitted:
        require(client_id=client_id, celeb_name=celeb_name, bliss_request_data=payload)
        bliss_id, created_at, expire_at = self.clock.next_id()
        log = logger.bind(bliss_id=bliss_id, state=BlissState.CREATED_NO_VIDEO.value)

        await self.requests.put(BlissRequest(
            id=bliss_id, client_id=client_id, celeb_name=celeb_name, payload=payload,
            video_present=False, created_at=created_at, expire_at=expire_at,
        ))
        log.info('bliss.request.stored')

        result = await self.publisher.send(self.topics.request_received, bliss_event(
            BLISS_REQUEST_RECEIVED, bliss_request_id=bliss_id, client_id=client_id, celeb_name=celeb_name))
        return BlissSubmitted(id=bliss_id, notified=result.ok)

    async def submit_video_request(self, client_id: str, celeb_name: str,
                                   data: bytes, mime_type: str) -> BlissSubmitted:
        require(client_id=client_id, celeb_name=celeb_name, bliss_video=data)
        bliss_id, created_at, expire_at = self.clock.next_id()
        log = logger.bind(bliss_id=bliss_id, state=BlissState.CREATED_WITH_VIDEO.value)

        # bytes first, so VIDEO_EXISTS is never claimed for a missing blob
        await self.request_videos.put(str(bliss_id), data, mime_type)
        log.info('bliss.request.video_uploaded', size=len(data))
        await self.requests.put(BlissRequest(
            id=bliss_id, client_id=client_id, celeb_name=celeb_name,
            video_present=True, created_at=created_at, expire_at=expire_at,
        ))
        log.info('bliss.request.stored')

        result = await self.publisher.send(self.topics.request_received, bliss_event(
            BLISS_REQUEST_RECEIVED, bliss_request_id=bliss_id, client_id=client_id, celeb_name=celeb_name))
        return BlissSubmitted(id=bliss_id, notified=result.ok)

    async def attach_request_video(self, request_id: Any, data: bytes, mime_type: str) -> BlissSubmitted:
        """Upload a video for an existing data-only request and flip VIDEO_EXISTS."""
        bliss_id = _as_id(request_id, 'bliss_request_id')
        require(bliss_video=data)
        item = await self.requests.get(bliss_id)
        if not item:
            raise NotFound(f"Request Doesn't Exist! RequestId: {bliss_id}")
        current = BlissState.CREATED_WITH_VIDEO if item.get('VIDEO_EXISTS') else BlissState.CREATED_NO_VIDEO
        if not can_transition(current, BlissState.CREATED_WITH_VIDEO):
            raise InvalidTransition(f"Request Already Has A Video! RequestId: {bliss_id}")

        await self.request_videos.put(str(bliss_id), data, mime_type)
        await self.requests.put(BlissRequest(
            id=bliss_id,
            client_id=item['BLISS_REQUESTER'],
            celeb_name=item['BLISS_RESPONDER'],
            payload=BlissRequestData.from_item(bliss_id, item).payload,
            video_present=True,
            created_at=item.get('CREATED_AT') or self.clock.timestamp_ms(bliss_id) // 1000,
            expire_at=item['EXPIRE_TIME'],
        ))
        logger.info('bliss.request.video_attached', bliss_id=bliss_id,
                    state=BlissState.CREATED_WITH_VIDEO.value)
        return BlissSubmitted(id=bliss_id, notified=False)

    async def fetch_request_video_url(self, request_id: Any) -> SignedUrl:
        bliss_id = _as_id(request_id, 'bliss_request_id')
        if not await self.request_videos.exists(str(bliss_id)):
            raise NotFound(f"Video Doesn't Exist! VideoId: {bliss_id}")
        url, ttl = await self.request_videos.signed_download_url(str(bliss_id), self.request_url_ttl)
        return SignedUrl(url=url, expire_time=ttl)

    async def fetch_request_data(self, request_id: Any) -> BlissRequestData:
        """Whatever the table holds right now; a write still in flight may show partially.

        An absent id raises NotFound instead of answering DONE with empty
        data, so callers can tell a missing request from an empty one.
        """
        bliss_id = _as_id(request_id, 'bliss_request_id')
        item = await self.requests.get(bliss_id, REQUEST_DATA_PROJECTION)
        if item is None:
            raise NotFound(f"Request Doesn't Exist! RequestId: {bliss_id}")
        return BlissRequestData.from_item(bliss_id, item)

    async def cancel_request(self, request_id: Any) -> BlissCanceled:
        """Delete the request record and announce it.

        Safe to repeat. Only a cancel that found the record publishes, so a
        repeated or unknown cancel stays silent. The request video stays in
        its bucket unless the coordinator was built with ``cancel_deletes_video``.
        """
        bliss_id = _as_id(request_id, 'bliss_request_id')
        item = await self.requests.get(bliss_id, REQUEST_IDENTITY_PROJECTION)
        await self.requests.delete(bliss_id)

        video_deleted = False
        if self.cancel_deletes_video:
            await self.request_videos.delete(str(bliss_id))
            video_deleted = True
        logger.info('bliss.request.canceled', bliss_id=bliss_id, state=BlissState.CANCELED.value,
                    video_deleted=video_deleted, found=item is not None)
        if item is None:
            return BlissCanceled(id=bliss_id, notified=False, video_deleted=video_deleted)

        request_date, request_time = self.request_date_and_time(bliss_id)
        result = await self.publisher.send(self.topics.request_canceled, bliss_event(
            BLISS_REQUEST_CANCELED,
            bliss_request_id=bliss_id,
            client_id=item.get('BLISS_REQUESTER'),
            celeb_name=item.get('BLISS_RESPONDER'),
            bliss_request_date=request_date,
            bliss_request_time=request_time,
        ))
        return BlissCanceled(id=bliss_id, notified=result.ok, video_deleted=video_deleted)

    # responses

    async def submit_response(self, request_id: Any, client_id: str, celeb_name: str,
                              data: bytes, mime_type: str) -> BlissSubmitted:
        """Store a responder's video and announce it to the client.

        The request id is not looked up: a response for an unknown or
        expired request is still stored.
        """
        origin_id = _as_id(request_id, 'bliss_request_id')
        require(client_id=client_id, celeb_name=celeb_name, bliss_video=data)
        response_id, created_at, expire_at = self.clock.next_id()
        request_date, request_time = self.request_date_and_time(origin_id)
        log = logger.bind(bliss_id=response_id, bliss_request_id=origin_id)

        await self.response_videos.put(str(response_id), data, mime_type)
        log.info('bliss.response.video_uploaded', size=len(data))
        if self.transcoder is not None:
            output = await self.transcoder.transmux(data, mime_type)
            await self.response_output.put(str(response_id), output, mime_type)
            log.info('bliss.response.transmuxed', size=len(output))
        await self.responses.put(BlissResponse(
            id=response_id, request_id=origin_id, client_id=client_id, celeb_name=celeb_name,
            created_at=created_at, expire_at=expire_at,
        ))
        log.info('bliss.response.stored', state=BlissState.RESPONDED.value)

        result = await self.publisher.send(self.topics.response_sent, bliss_event(
            BLISS_RESPONSE_SENT,
            bliss_response_id=response_id,
            bliss_request_id=origin_id,
            client_id=client_id,
            celeb_name=celeb_name,
            bliss_request_date=request_date,
            bliss_request_time=request_time,
        ))
        return BlissSubmitted(id=response_id, notified=result.ok)

    async def fetch_response_video_url(self, response_id: Any) -> SignedUrl:
        bliss_id = _as_id(response_id, 'bliss_response_id')
        if not await self.response_output.exists(str(bliss_id)):
            raise NotFound(f"Response Doesn't Exist! VideoId: {bliss_id}")
        url, ttl = await self.response_urls.signed_download_url(str(bliss_id), self.response_url_ttl)
        return SignedUrl(url=url, expire_time=ttl)


def _response_url_signer(response_output: StorageInterface) -> UrlSigner:
    if settings.BLISS_RESPONSE_CDN_URL and settings.CLOUDFRONT_ACCESS_KEY_ID and settings.CLOUDFRONT_PRIVATE_KEY_PATH:
        with open(settings.CLOUDFRONT_PRIVATE_KEY_PATH, 'rb') as f:
            pem = f.read()
        return CloudFrontSigner(settings.BLISS_RESPONSE_CDN_URL, settings.CLOUDFRONT_ACCESS_KEY_ID, pem)
    logger.warning('bliss.cdn.unconfigured', fallback=response_output.bucket)
    return response_output


def build_coordinator() -> BlissCoordinator:
    """Construct the coordinator and its adapters from settings."""
    backend = pick_metadata_backend()
    response_output = pick_storage(settings.BLISS_RESPONSE_OUTPUT_BUCKET)
    return BlissCoordinator(
        clock=BlissClock(),
        request_videos=pick_storage(settings.BLISS_REQUEST_BUCKET),
        response_videos=pick_storage(settings.BLISS_RESPONSE_BUCKET),
        response_output=response_output,
        response_urls=_response_url_signer(response_output),
        requests=MetadataStore(backend, settings.BLISS_REQUEST_DB_TABLE_NAME),
        responses=MetadataStore(backend, settings.BLISS_RESPONSE_DB_TABLE_NAME),
        publisher=pick_publisher(),
        topics=BlissTopics(
            request_received=settings.BLISS_REQUEST_SNS_ARN,
            response_sent=settings.BLISS_RESPONSE_SNS_ARN,
            request_canceled=settings.BLISS_REQUEST_CANCEL_SNS_ARN,
        ),
        transcoder=pick_transcoder() if settings.BLISS_TRANSMUX_ENABLED else None,
        cancel_deletes_video=settings.BLISS_CANCEL_DELETES_VIDEO,
    )
