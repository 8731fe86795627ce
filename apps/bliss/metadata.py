"""Metadata persistence for bliss requests and responses.

Backends speak a flat item API (``put_item``/``get_item``/``delete_item``)
keyed by table name. ``MetadataStore`` binds one backend to one table.
Writes are plain upserts: the last writer wins.
"""
import json
import time
from typing import Callable, Dict, Optional, Protocol, Sequence, Type, Union

import httpx
import structlog
from tortoise import models
from tortoise.exceptions import BaseORMException
from tortoise.transactions import in_transaction

from apps.bliss.errors import MetadataFailure
from apps.bliss.models import BlissRequestItem, BlissResponseItem
from apps.bliss.schema import BlissRequest, BlissResponse
from config.settings import METADATA_BACKEND, DYNAMODB_ENDPOINT, AWS_REGION, AWS_ACCESS_KEY_ID, \
    AWS_SECRET_ACCESS_KEY
from utils.sigv4 import SigV4Signer

logger = structlog.get_logger(__name__)

KEY_ATTRIBUTE = 'BLISS_ID'

Record = Union[BlissRequest, BlissResponse]


class ItemBackend(Protocol):
    async def put_item(self, table: str, item: dict) -> None:
        ...

    async def get_item(self, table: str, key: dict, projection: Optional[Sequence[str]] = None) -> Optional[dict]:
        ...

    async def delete_item(self, table: str, key: dict) -> None:
        ...


class TortoiseItemBackend:
    """Items stored in relational tables through Tortoise ORM.

    Rows past their EXPIRE_TIME are invisible to reads, standing in for the
    store-side TTL a managed table would apply.
    """

    def __init__(self, tables: Optional[Dict[str, Type[models.Model]]] = None,
                 now: Callable[[], float] = time.time):
        if tables is None:
            tables = {m._meta.db_table: m for m in (BlissRequestItem, BlissResponseItem)}
        self.tables = tables
        self._now = now

    def _model(self, table: str) -> Type[models.Model]:
        try:
            return self.tables[table]
        except KeyError:
            raise MetadataFailure(f'Unknown metadata table: {table}')

    async def put_item(self, table: str, item: dict) -> None:
        model = self._model(table)
        values = {model.ATTRIBUTES[k]: v for k, v in item.items() if k in model.ATTRIBUTES}
        pk = values.pop('id')
        try:
            async with in_transaction():
                existing = await model.filter(id=pk).first()
                if existing:
                    existing.update_from_dict(values)
                    await existing.save()
                else:
                    await model.create(id=pk, **values)
        except BaseORMException as e:
            raise MetadataFailure(f'PutItem failed on {table}: {e}') from e

    async def get_item(self, table: str, key: dict, projection: Optional[Sequence[str]] = None) -> Optional[dict]:
        model = self._model(table)
        attributes = list(projection or model.ATTRIBUTES)
        columns = {a: model.ATTRIBUTES[a] for a in attributes if a in model.ATTRIBUTES}
        try:
            rows = await model.filter(id=key[KEY_ATTRIBUTE], expire_time__gt=int(self._now())) \
                .values(*columns.values())
        except BaseORMException as e:
            raise MetadataFailure(f'GetItem failed on {table}: {e}') from e
        if not rows:
            return None
        row = rows[0]
        return {attr: row[col] for attr, col in columns.items()}

    async def delete_item(self, table: str, key: dict) -> None:
        model = self._model(table)
        try:
            await model.filter(id=key[KEY_ATTRIBUTE]).delete()
        except BaseORMException as e:
            raise MetadataFailure(f'DeleteItem failed on {table}: {e}') from e


def _marshal(value) -> dict:
    if isinstance(value, bool):
        return {'BOOL': value}
    if isinstance(value, (int, float)):
        return {'N': str(value)}
    return {'S': str(value)}


def _unmarshal(value: dict):
    if 'BOOL' in value:
        return value['BOOL']
    if 'N' in value:
        n = value['N']
        return int(n) if n.lstrip('-').isdigit() else float(n)
    if 'NULL' in value:
        return None
    return value.get('S')


class DynamoDBItemBackend:
    """DynamoDB JSON API over httpx. TTL deletion is left to the table."""

    API_VERSION = 'DynamoDB_20120810'

    def __init__(self, endpoint: str, access_key: str, secret_key: str, region: str):
        self.endpoint = endpoint.rstrip('/') + '/'
        self.signer = SigV4Signer(access_key, secret_key, region, 'dynamodb')

    async def _call(self, action: str, body: dict) -> dict:
        payload = json.dumps(body).encode('utf-8')
        headers = self.signer.sign_headers('POST', self.endpoint, {
            'Content-Type': 'application/x-amz-json-1.0',
            'X-Amz-Target': f'{self.API_VERSION}.{action}',
        }, payload)
        try:
            async with httpx.AsyncClient() as client:
                resp = await client.post(self.endpoint, content=payload, headers=headers)
        except httpx.HTTPError as e:
            raise MetadataFailure(f'DynamoDB {action} failed: {e}') from e
        if resp.status_code != 200:
            raise MetadataFailure(f'DynamoDB {action} failed: {resp.status_code} {resp.text}')
        return resp.json() if resp.content else {}

    async def put_item(self, table: str, item: dict) -> None:
        await self._call('PutItem', {
            'TableName': table,
            'Item': {k: _marshal(v) for k, v in item.items() if v is not None},
        })

    async def get_item(self, table: str, key: dict, projection: Optional[Sequence[str]] = None) -> Optional[dict]:
        body = {'TableName': table, 'Key': {k: _marshal(v) for k, v in key.items()}}
        if projection:
            names = {f'#p{i}': attr for i, attr in enumerate(projection)}
            body['ProjectionExpression'] = ', '.join(names)
            body['ExpressionAttributeNames'] = names
        data = await self._call('GetItem', body)
        item = data.get('Item')
        if not item:
            return None
        return {k: _unmarshal(v) for k, v in item.items()}

    async def delete_item(self, table: str, key: dict) -> None:
        await self._call('DeleteItem', {
            'TableName': table,
            'Key': {k: _marshal(v) for k, v in key.items()},
        })


class MetadataStore:

    def __init__(self, backend: ItemBackend, table: str):
        self.backend = backend
        self.table = table

    @staticmethod
    def _key(bliss_id: int) -> dict:
        return {KEY_ATTRIBUTE: int(bliss_id)}

    async def put(self, record: Record) -> int:
        await self.backend.put_item(self.table, record.to_item())
        logger.info('metadata.put', table=self.table, bliss_id=record.id)
        return record.id

    async def get(self, bliss_id: int, projection: Optional[Sequence[str]] = None) -> Optional[dict]:
        """Point lookup; None when the key is absent."""
        return await self.backend.get_item(self.table, self._key(bliss_id), projection)

    async def delete(self, bliss_id: int) -> None:
        await self.backend.delete_item(self.table, self._key(bliss_id))
        logger.info('metadata.delete', table=self.table, bliss_id=bliss_id)


def pick_metadata_backend() -> ItemBackend:
    if METADATA_BACKEND.lower() == 'dynamodb':
        return DynamoDBItemBackend(DYNAMODB_ENDPOINT, AWS_ACCESS_KEY_ID, AWS_SECRET_ACCESS_KEY, AWS_REGION)
    return TortoiseItemBackend()
