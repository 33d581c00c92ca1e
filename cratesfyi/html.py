"""Splitting rustdoc HTML pages into head and body."""

from __future__ import annotations

import html5lib
from html5lib.serializer import HTMLSerializer

from cratesfyi.errors import CratesfyiError


def _find_head_and_body(root):
    head = body = None
    for element in root.iter():
        if element.tag == "head":
            if head is not None:
                raise CratesfyiError("duplicate <head> tag")
            head = element
        elif element.tag == "body":
            if body is not None:
                raise CratesfyiError("duplicate <body> tag")
            body = element
    if head is None:
        raise CratesfyiError("couldn't find <head> tag in rustdoc output")
    if body is None:
        raise CratesfyiError("couldn't find <body> tag in rustdoc output")
    return head, body


def _inner_html(element) -> str:
    walker = html5lib.getTreeWalker("etree")
    tokens = list(walker(element))[1:-1]
    serializer = HTMLSerializer(omit_optional_tags=False, quote_attr_values="always")
    return "".join(serializer.serialize(iter(tokens)))


def extract_head_and_body(html: str) -> tuple[str, str, str]:
    """Return the inner HTML of ``<head>`` and ``<body>`` and the body's classes."""
    root = html5lib.parse(html, treebuilder="etree", namespaceHTMLElements=False)
    head, body = _find_head_and_body(root)
    return _inner_html(head), _inner_html(body), body.get("class", "")