"""
posts/models.py -- Domain dataclasses for posts.

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class Post:
    """A stored Markdown document.

    id is a random URL-safe token and doubles as the public URL path
    (GET /{id}). created_at is a fixed-width ISO-8601 UTC string, so string
    comparison orders posts chronologically -- the retention sweeper relies
    on that.
    """

    id: str
    title: str
    body: str
    user_id: int
    created_at: str | None = None


@dataclass
class RenderedPost:
    id: str
    title: str
    html: str
    created_at: str | None = None
