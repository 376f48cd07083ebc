"""
web/routes.py -- Jinja2 template routes for rendered posts.

These routes serve server-rendered HTML. They share app.state with the API
routes (same post service) but return HTML instead of JSON, including for
errors: a reader following a dead link gets a page, not a JSON envelope.

Route registration order matters. GET /{post_id} captures every single-segment
path, so asgi.py includes this router AFTER the API routers (and /health).

Routes:
  GET /{post_id}   -- rendered post page; 404 page for unknown ids
"""

from __future__ import annotations

import logging
from pathlib import Path

from fastapi import APIRouter, Request
from fastapi.responses import HTMLResponse
from fastapi.templating import Jinja2Templates

from core.errors import ErrorCode, ServiceError
from posts.service import PostService

logger = logging.getLogger("markpost.web")

templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))
router = APIRouter()


def _error_page(request: Request, status_code: int, title: str) -> HTMLResponse:
    return templates.TemplateResponse(
        request,
        "error.html",
        {"status_code": status_code, "title": title},
        status_code=status_code,
    )


@router.get("/{post_id}", response_class=HTMLResponse)
def view_post(request: Request, post_id: str) -> HTMLResponse:
    """Render a post as an HTML page. Raw HTML in the Markdown is escaped."""
    service: PostService = request.app.state.post_service
    try:
        post = service.render_post(post_id)
    except ServiceError as exc:
        if exc.code == ErrorCode.NOT_FOUND:
            return _error_page(request, 404, "Not Found")
        logger.error("Rendering post %s failed: %s", post_id, exc.message, exc_info=exc.__cause__)
        return _error_page(request, 500, "Internal Server Error")

    return templates.TemplateResponse(
        request,
        "post.html",
        {"title": post.title, "body": post.html, "created_at": post.created_at},
    )
