from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import PlainTextResponse

router = APIRouter(tags=['web'])


@router.get('/')
def index(request: Request):
    settings = request.app.state.settings
    return request.app.state.templates.TemplateResponse(
        request,
        'index.html',
        {
            'base_url': settings.base_url,
            'attachment_kinds': request.app.state.attachment_kinds,
        },
    )


@router.get('/robots.txt', response_class=PlainTextResponse)
def robots_txt() -> str:
    return 'User-agent: *\nDisallow: /\n'
