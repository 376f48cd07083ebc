"""posts/ -- Markdown posts: persistence, rendering, creation, and retention.

Layer rule: posts/ imports from core/ and auth/ (for the users table the
posts.user_id foreign key references). It does NOT import from api/ or web/.
"""
