import functools
from typing import Tuple

import structlog
from fastapi.responses import JSONResponse

from apps.bliss.errors import BlissError

logger = structlog.get_logger(__name__)


def failure_body(error: BlissError, response: str, code: str) -> dict:
    return {'ERR': error.message, 'RESPONSE': response, 'CODE': code}


def response_wrapper(view, failure: Tuple[str, str] = ('Request Failed!', 'BLISS_FAILED')):
    """Wrap a view so it always answers with an outcome body.

    The view returns the success fields (``RESPONSE``, ``CODE`` and any
    payload keys); a ``BlissError`` becomes ``{ERR, RESPONSE, CODE}`` with the
    error's status code.
    """
    failure_response, failure_code = failure

    @functools.wraps(view)
    async def wrapper(*args, **kwargs):
        try:
            result = await view(*args, **kwargs)
        except BlissError as e:
            logger.error('bliss.failed', code=failure_code, error_kind=e.code, error=e.message)
            return JSONResponse(status_code=e.status_code,
                                content=failure_body(e, failure_response, failure_code))
        if not isinstance(result, dict):
            return result
        return {'MESSAGE': 'DONE', **result}

    return wrapper
