from fastapi import FastAPI
from tortoise.contrib.fastapi import RegisterTortoise

from config.settings import DATABASE_URL

MODELS = ['apps.bliss.models']


def register_db(app: FastAPI, db_url: str = DATABASE_URL) -> RegisterTortoise:
    """Tortoise bound to the app lifespan; use as ``async with register_db(app):``."""
    return RegisterTortoise(app, db_url=db_url, modules={'models': MODELS}, generate_schemas=True)
