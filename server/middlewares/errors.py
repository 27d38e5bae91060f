"""Error middleware: business errors become JSON responses."""
import logging
import time
from typing import Callable

from aiohttp import web

from core.exceptions import AffiliateLedgerError

logger = logging.getLogger(__name__)


@web.middleware
async def error_middleware(request: web.Request, handler: Callable):
    """Map ledger errors to 4xx JSON and log anything unexpected as a 500."""
    started = time.monotonic()
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except AffiliateLedgerError as e:
        logger.info(
            f"{request.method} {request.path} → {e.status_code} {type(e).__name__}: {e.message}",
            extra={"duration": round(time.monotonic() - started, 3)}
        )
        return web.json_response(
            {"error": e.message, "code": type(e).__name__, **e.details},
            status=e.status_code
        )
    except Exception as e:
        logger.error(
            f"Unhandled error on {request.method} {request.path}: {e}",
            exc_info=True,
            extra={"duration": round(time.monotonic() - started, 3)}
        )
        return web.json_response({"error": "Internal server error"}, status=500)
