from __future__ import annotations

from collections.abc import Mapping

from fastapi import FastAPI, Request
from starlette.responses import Response

# Uploaded files are served as stored, so the browser must not sniff their type.
DEFAULT_RESPONSE_HEADERS: dict[str, str] = {
    'X-Robots-Tag': 'noindex, nofollow, noarchive',
    'X-Content-Type-Options': 'nosniff',
    'Referrer-Policy': 'same-origin',
}


def install_security_headers(app: FastAPI, headers: Mapping[str, str] | None = None) -> None:
    extra = dict(DEFAULT_RESPONSE_HEADERS if headers is None else headers)

    @app.middleware('http')
    async def add_response_headers(request: Request, call_next):
        response: Response = await call_next(request)
        for name, value in extra.items():
            response.headers.setdefault(name, value)
        return response
