from urllib.parse import parse_qs

import pytest
import requests
import responses

from cratesfyi.errors import CratesfyiError
from cratesfyi.hubs import FEED_URL, HUBS, ping_hub, ping_hubs


@pytest.fixture
def mocked():
    with responses.RequestsMock(assert_all_requests_are_fired=False) as rsps:
        yield rsps


def test_ping_hub_sends_publish_form(mocked):
    mocked.add(responses.POST, HUBS[0], status=204)
    response = ping_hub(HUBS[0])
    assert response.status_code == 204
    body = parse_qs(mocked.calls[0].request.body)
    assert body == {"hub.mode": ["publish"], "hub.url": [FEED_URL]}


def test_ping_hubs_counts_every_hub(mocked):
    for url in HUBS:
        mocked.add(responses.POST, url, status=200)
    assert ping_hubs() == len(HUBS)
    assert [call.request.url.rstrip("/") for call in mocked.calls] == list(HUBS)


def test_ping_hubs_ignores_http_status(mocked):
    for url in HUBS:
        mocked.add(responses.POST, url, status=500)
    assert ping_hubs() == len(HUBS)


def test_ping_hubs_stops_at_first_error(mocked):
    mocked.add(responses.POST, HUBS[0], body=requests.ConnectionError("down"))
    mocked.add(responses.POST, HUBS[1], status=200)
    with pytest.raises(CratesfyiError):
        ping_hubs()
    assert len(mocked.calls) == 1