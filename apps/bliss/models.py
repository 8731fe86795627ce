"""Tortoise tables backing the bliss metadata store.

Rows are flat and mirror the item attributes one to one; ``ATTRIBUTES``
maps the canonical attribute name onto the column.
"""
from tortoise import fields, models

from config.settings import BLISS_REQUEST_DB_TABLE_NAME, BLISS_RESPONSE_DB_TABLE_NAME


class BlissRequestItem(models.Model):
    id = fields.BigIntField(pk=True, generated=False)
    requester = fields.CharField(max_length=255)
    responder = fields.CharField(max_length=255)
    request_data = fields.TextField(null=True)
    video_exists = fields.BooleanField(default=False)
    created_at = fields.BigIntField()
    expire_time = fields.BigIntField(index=True)

    ATTRIBUTES = {
        'BLISS_ID': 'id',
        'BLISS_REQUESTER': 'requester',
        'BLISS_RESPONDER': 'responder',
        'BLISS_REQUEST_DATA': 'request_data',
        'VIDEO_EXISTS': 'video_exists',
        'CREATED_AT': 'created_at',
        'EXPIRE_TIME': 'expire_time',
    }

    class Meta:
        default_connection = "default"
        table = BLISS_REQUEST_DB_TABLE_NAME


class BlissResponseItem(models.Model):
    # request_id is a lookup reference only, not a foreign key
    id = fields.BigIntField(pk=True, generated=False)
    request_id = fields.BigIntField(index=True)
    requester = fields.CharField(max_length=255)
    responder = fields.CharField(max_length=255)
    created_at = fields.BigIntField()
    expire_time = fields.BigIntField(index=True)

    ATTRIBUTES = {
        'BLISS_ID': 'id',
        'BLISS_REQUEST_ID': 'request_id',
        'BLISS_REQUESTER': 'requester',
        'BLISS_RESPONDER': 'responder',
        'CREATED_AT': 'created_at',
        'EXPIRE_TIME': 'expire_time',
    }

    class Meta:
        default_connection = "default"
        table = BLISS_RESPONSE_DB_TABLE_NAME
