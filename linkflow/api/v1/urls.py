from fastapi import APIRouter, Depends, status
from linkflow.schemas.url import URLCreate, URLResponse
from linkflow.services.allocator import Allocator, USE_DEFAULT_TTL
from linkflow.services.url_service import URLService
from linkflow.dependencies import get_allocator, get_url_service
from linkflow.store.models import ShortCodeMapping

router = APIRouter(prefix="/urls", tags=["urls"])


def _to_response(mapping: ShortCodeMapping) -> URLResponse:
    return URLResponse(
        short_code=mapping.code,
        long_url=mapping.destination_url,
        expires_at=mapping.expires_at,
    )


@router.post("/", response_model=URLResponse, status_code=status.HTTP_201_CREATED)
async def create_short_url(
    url_data: URLCreate,
    allocator: Allocator = Depends(get_allocator)
):
    """Create a new short URL, optionally with a custom code"""
    ttl = USE_DEFAULT_TTL if url_data.ttl_seconds is None else url_data.ttl_seconds
    mapping = await allocator.allocate(
        str(url_data.long_url),
        custom_code=url_data.custom_code,
        ttl_seconds=ttl,
    )
    return _to_response(mapping)


@router.get("/{short_code}", response_model=URLResponse)
async def get_url_info(
    short_code: str,
    url_service: URLService = Depends(get_url_service)
):
    """Get information about a short URL"""
    return _to_response(await url_service.get_url_info(short_code))


@router.delete("/{short_code}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_url(
    short_code: str,
    url_service: URLService = Depends(get_url_service)
):
    """Delete a short URL"""
    await url_service.delete_url(short_code)
