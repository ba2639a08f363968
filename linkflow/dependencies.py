"""
FastAPI dependencies for dependency injection.

Infrastructure (code store, publisher, click store) is created once in the
application lifespan and kept on app.state; services are built per request
on top of it.
"""

from typing import Optional

from fastapi import Depends, Request

from linkflow.queue.publisher import ClickEventPublisher
from linkflow.services.allocator import Allocator
from linkflow.services.analytics_service import AnalyticsService
from linkflow.services.resolver import Resolver
from linkflow.services.url_service import URLService
from linkflow.storage.strategies import ClickStoreStrategy
from linkflow.store.strategies import CodeStoreStrategy


def get_code_store(request: Request) -> CodeStoreStrategy:
    return request.app.state.code_store


def get_publisher(request: Request) -> Optional[ClickEventPublisher]:
    return getattr(request.app.state, "publisher", None)


def get_click_store(request: Request) -> ClickStoreStrategy:
    return request.app.state.click_store


def get_allocator(store: CodeStoreStrategy = Depends(get_code_store)) -> Allocator:
    return Allocator(store)


def get_resolver(
    store: CodeStoreStrategy = Depends(get_code_store),
    publisher: Optional[ClickEventPublisher] = Depends(get_publisher),
) -> Resolver:
    return Resolver(store, publisher)


def get_url_service(store: CodeStoreStrategy = Depends(get_code_store)) -> URLService:
    return URLService(store)


def get_analytics_service(
    click_store: ClickStoreStrategy = Depends(get_click_store),
) -> AnalyticsService:
    return AnalyticsService(click_store)
