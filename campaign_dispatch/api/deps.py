"""
Dependencies for the dispatch runtime and request authentication.
"""
import hmac

from fastapi import Depends, HTTPException, Request, status

from campaign_dispatch.exceptions import TriggerRejected
from campaign_dispatch.services.runtime import DispatchRuntime
from campaign_dispatch.services.trigger_auth import KEY_HEADER, SignedRequest
from campaign_dispatch.utils import get_logger
from campaign_dispatch.utils.observability import client_address

logger = get_logger(__name__)


def get_runtime(request: Request) -> DispatchRuntime:
    """
    Dispatch runtime built at startup (``app.state.dispatch``).

    Raises:
        HTTPException: 503 when the application has not finished starting
    """
    runtime = getattr(request.app.state, "dispatch", None)
    if runtime is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="DISPATCH_NOT_READY")
    return runtime


async def get_signed_request(request: Request) -> SignedRequest:
    """Capture the request exactly as transmitted for signature checks."""
    body = await request.body()
    return SignedRequest(
        method=request.method,
        path=request.url.path,
        body=body,
        headers=request.headers,
        client_ip=request.client.host if request.client else None,
    )


def require_cron_key(request: Request, runtime: DispatchRuntime = Depends(get_runtime)) -> None:
    """Static key gate for read-only operator endpoints."""
    expected = runtime.trigger_auth.cron_key
    supplied = request.headers.get(KEY_HEADER, "")
    if not expected:
        raise TriggerRejected("not_configured")
    if not supplied or not hmac.compare_digest(supplied.encode("utf-8"), expected.encode("utf-8")):
        logger.warning(
            "Cron key check failed",
            path=request.url.path,
            remote_addr=client_address(request),
        )
        raise TriggerRejected("bad_key")
