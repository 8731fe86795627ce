"""Best-effort lifecycle notifications.

Delivery is at most once: a failed publish is logged and reported back as
``PublishResult(ok=False)``, never raised, so it cannot undo an upload or a
metadata write that already happened.
"""
import asyncio
import json
import uuid
from typing import Optional, Protocol, Set
from xml.etree import ElementTree

import httpx
import structlog

from apps.bliss.errors import NotificationFailure
from apps.bliss.schema import PublishResult
from config.settings import NOTIFICATION_BACKEND, SNS_ENDPOINT, AWS_REGION, AWS_ACCESS_KEY_ID, \
    AWS_SECRET_ACCESS_KEY
from utils.sigv4 import SigV4Signer

logger = structlog.get_logger(__name__)

BLISS_REQUEST_RECEIVED = 'BLISS_REQUEST_RECEIVED'
BLISS_RESPONSE_SENT = 'BLISS_RESPONSE_SENT'
BLISS_REQUEST_CANCELED = 'BLISS_REQUEST_CANCELED'


def bliss_event(kind: str, **fields) -> dict:
    """Flat event record: the kind tag plus upper-cased identifiers."""
    event = {'EVENT': kind}
    event.update({name.upper(): value for name, value in fields.items()})
    return event


class TopicTransport(Protocol):
    async def publish(self, topic: str, message: str) -> str:
        ...


class LogTransport:
    """Writes events to the log instead of a topic. Used for local runs."""

    async def publish(self, topic: str, message: str) -> str:
        message_id = uuid.uuid4().hex
        logger.info('notification.logged', topic=topic, message=message, message_id=message_id)
        return message_id


class SNSTransport:
    VERSION = '2010-03-31'
    NS = {'sns': 'http://sns.amazonaws.com/doc/2010-03-31/'}

    def __init__(self, endpoint: str, access_key: str, secret_key: str, region: str):
        self.endpoint = endpoint.rstrip('/') + '/'
        self.signer = SigV4Signer(access_key, secret_key, region, 'sns')

    async def publish(self, topic: str, message: str) -> str:
        body = httpx.QueryParams({
            'Action': 'Publish',
            'TopicArn': topic,
            'Message': message,
            'Version': self.VERSION,
        })
        payload = str(body).encode('utf-8')
        headers = self.signer.sign_headers('POST', self.endpoint, {
            'Content-Type': 'application/x-www-form-urlencoded; charset=utf-8',
        }, payload)
        try:
            async with httpx.AsyncClient() as client:
                resp = await client.post(self.endpoint, content=payload, headers=headers)
        except httpx.HTTPError as e:
            raise NotificationFailure(f'SNS Publish failed: {e}') from e
        if resp.status_code != 200:
            raise NotificationFailure(f'SNS Publish failed: {resp.status_code} {resp.text}')
        return self._message_id(resp.text)

    def _message_id(self, text: str) -> str:
        try:
            node = ElementTree.fromstring(text).find('.//sns:MessageId', self.NS)
        except ElementTree.ParseError as e:
            raise NotificationFailure(f'SNS Publish returned unreadable body: {e}') from e
        if node is None or not node.text:
            raise NotificationFailure('SNS Publish returned no MessageId')
        return node.text


class NotificationPublisher:

    def __init__(self, transport: TopicTransport):
        self.transport = transport
        self._pending: Set[asyncio.Task] = set()

    async def publish(self, topic: str, event: dict) -> PublishResult:
        kind = event.get('EVENT')
        try:
            message_id = await self.transport.publish(topic, json.dumps(event))
        except NotificationFailure as e:
            logger.error('notification.failed', topic=topic, kind=kind, error=e.message)
            return PublishResult(ok=False, error=e.message)
        except Exception as e:
            logger.error('notification.failed', topic=topic, kind=kind, error=repr(e), exc_info=True)
            return PublishResult(ok=False, error=f'{type(e).__name__}: {e}')
        logger.info('notification.sent', topic=topic, kind=kind, message_id=message_id)
        return PublishResult(ok=True, message_id=message_id)

    def dispatch(self, topic: str, event: dict) -> 'asyncio.Task[PublishResult]':
        """Start publishing in its own task and return it.

        The task is held until it finishes, so the caller being cancelled
        does not cancel a notification that was already dispatched.
        """
        task = asyncio.get_running_loop().create_task(self.publish(topic, event))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def send(self, topic: str, event: dict) -> PublishResult:
        return await asyncio.shield(self.dispatch(topic, event))

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def drain(self, timeout: Optional[float] = None) -> None:
        if self._pending:
            await asyncio.wait(set(self._pending), timeout=timeout)


def pick_publisher() -> NotificationPublisher:
    if NOTIFICATION_BACKEND.lower() == 'sns':
        return NotificationPublisher(
            SNSTransport(SNS_ENDPOINT, AWS_ACCESS_KEY_ID, AWS_SECRET_ACCESS_KEY, AWS_REGION))
    return NotificationPublisher(LogTransport())
