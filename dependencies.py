from typing import Callable, Optional

from fastapi import Request

from services.normalizer import BeaconNormalizer


def get_normalizer(request: Request) -> BeaconNormalizer:
    state = request.app.state
    return BeaconNormalizer(state.ua_classifier, state.geo_classifier)


def get_clock(request: Request) -> Callable:
    return request.app.state.clock


def get_client_ip(request: Request) -> Optional[str]:
    """First X-Forwarded-For hop when behind a proxy, else the peer address"""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    return request.client.host if request.client else None
