"""Notifying PubSubHubbub hubs that the release feed changed."""

from __future__ import annotations

import requests

from cratesfyi.errors import CratesfyiError

FEED_URL = "https://docs.rs/releases/feed"
HUBS = (
    "https://pubsubhubbub.appspot.com",
    "https://pubsubhubbub.superfeedr.com",
)


def ping_hub(url: str) -> requests.Response:
    """Tell the hub at ``url`` that the feed was published."""
    try:
        return requests.post(
            url, data={"hub.mode": "publish", "hub.url": FEED_URL}, timeout=30
        )
    except requests.RequestException as exc:
        raise CratesfyiError(f"failed to ping hub {url}: {exc}") from exc


def ping_hubs() -> int:
    """Ping every hub in turn; return how many were pinged, stopping at the first error."""
    count = 0
    for url in HUBS:
        ping_hub(url)
        count += 1
    return count