from contextlib import AsyncExitStack, asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, PlainTextResponse

from apps.bliss.routers import router as bliss_router, media_router
from apps.bliss.services import build_coordinator
from config.db import register_db
from config.logging import configure_logging
from config.middleware import RequestContextMiddleware
from config.settings import LOG_LEVEL, METADATA_BACKEND, PORT


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(LOG_LEVEL)
    async with AsyncExitStack() as stack:
        if METADATA_BACKEND.lower() == 'db':
            await stack.enter_async_context(register_db(app))
        app.state.coordinator = build_coordinator()
        yield
        await app.state.coordinator.publisher.drain(timeout=10)


app = FastAPI(title='bliss', lifespan=lifespan)
app.add_middleware(RequestContextMiddleware)
app.include_router(bliss_router)
app.include_router(media_router)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = '; '.join(f"{'.'.join(str(p) for p in e['loc'])}: {e['msg']}" for e in exc.errors())
    return JSONResponse(status_code=422, content={
        'ERR': errors, 'RESPONSE': 'Invalid Request!', 'CODE': 'VALIDATION_FAILED'})


@app.get('/ping', response_class=PlainTextResponse)
async def ping():
    return 'OK'


if __name__ == '__main__':
    import uvicorn

    uvicorn.run('main:app', host='0.0.0.0', port=PORT)
