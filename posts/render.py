"""
posts/render.py -- Markdown to HTML conversion.

Python-Markdown passes raw HTML through by default. Markpost serves pages
written by anyone holding a post key on its own origin, so raw HTML is
escaped instead: the html_block preprocessor and the inline html pattern are
deregistered, which leaves the serializer to escape "<" and "&" in the text.

Link and image targets are the other way in. _UnsafeURLCleaner blanks any
href/src whose scheme is javascript:, vbscript:, file: or data:, after
stripping the whitespace and control characters browsers ignore in a scheme.

A fresh Markdown instance is built per call -- instances keep per-document
state and are not safe to share across request threads.
"""

from __future__ import annotations

import xml.etree.ElementTree as etree

import markdown
from markdown.treeprocessors import Treeprocessor

_EXTENSIONS = ["fenced_code", "tables", "sane_lists"]

_UNSAFE_SCHEMES = ("javascript:", "vbscript:", "file:", "data:")
_URL_ATTRIBUTES = ("href", "src")


class ConversionError(Exception):
    """Raised when Markdown conversion fails."""


def is_unsafe_url(url: str) -> bool:
    """Return True if url uses a scheme that must never reach a rendered page."""
    normalized = "".join(ch for ch in url if ord(ch) > 0x20).lower()
    return normalized.startswith(_UNSAFE_SCHEMES)


class _UnsafeURLCleaner(Treeprocessor):
    """Blank dangerous link and image targets once inline parsing is done."""

    def run(self, root: etree.Element) -> None:
        for element in root.iter():
            for attr in _URL_ATTRIBUTES:
                value = element.get(attr)
                if value is not None and is_unsafe_url(value):
                    element.set(attr, "")


def _build() -> markdown.Markdown:
    md = markdown.Markdown(extensions=_EXTENSIONS, output_format="html")
    md.preprocessors.deregister("html_block")
    md.inlinePatterns.deregister("html")
    # Lowest priority: after "inline" builds <a>/<img> and "unescape" (0) resolves backslash escapes.
    md.treeprocessors.register(_UnsafeURLCleaner(md), "unsafe_urls", -1)
    return md


def render_markdown(text: str) -> str:
    """Convert Markdown source to an HTML fragment with raw HTML and unsafe URLs neutralized."""
    try:
        return _build().convert(text)
    except Exception as exc:  # noqa: BLE001 -- extensions may raise anything
        raise ConversionError(str(exc)) from exc
