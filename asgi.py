"""
asgi.py -- Application assembly for Markpost.

This is the ONLY file that imports from both api/ and web/. It joins the two
independent layers into a single ASGI app without coupling them to each other.
api/main.py knows nothing about web/; web/routes.py knows nothing about api/.

It is also an entry point: get_settings() is called here and the resulting
Settings is passed down explicitly. Invalid configuration raises at import,
so the server never starts with it.

Run with:  uvicorn asgi:app --reload
           python main.py serve
"""

from api.main import create_app
from core.config import get_settings
from web.routes import router as web_router

app = create_app(get_settings())

# Mount the web router last: GET /{post_id} would otherwise shadow API paths.
app.include_router(web_router, tags=["Web"])
