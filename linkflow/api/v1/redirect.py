from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import RedirectResponse
from linkflow.services.resolver import Resolver
from linkflow.dependencies import get_resolver

router = APIRouter(tags=["redirect"])


@router.get("/{short_code}")
async def redirect_to_long_url(
    short_code: str,
    request: Request,
    resolver: Resolver = Depends(get_resolver)
):
    """
    Redirect to the original URL.

    Flow:
    1. Look up the destination in the code store
    2. Hand a click event to the background publisher (never awaited)
    3. Redirect immediately

    Invalid codes give 400, unknown or expired codes 404, and an
    unreachable code store 503 (see the error handler in main.py).
    """
    long_url = await resolver.resolve(
        short_code,
        client_ip=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
        referer=request.headers.get("referer"),
    )
    return RedirectResponse(url=long_url, status_code=status.HTTP_302_FOUND)
