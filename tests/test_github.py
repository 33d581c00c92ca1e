import base64
from datetime import datetime, timedelta

import pytest
import responses

from cratesfyi.errors import CratesfyiError
from cratesfyi.github import GITHUB_API, get_github_fields, get_github_path


@pytest.fixture
def mocked():
    with responses.RequestsMock(assert_all_requests_are_fired=False) as rsps:
        yield rsps


@pytest.mark.parametrize(
    "url, expected",
    [
        ("https://github.com/onur/cratesfyi", "onur/cratesfyi"),
        ("http://github.com/onur/cratesfyi", "onur/cratesfyi"),
        ("https://github.com/onur/cratesfyi.git", "onur/cratesfyi"),
        ("https://github.com/onur23cmD_M_R_L_/crates_fy-i", "onur23cmD_M_R_L_/crates_fy-i"),
        ("https://github.com/docopt/docopt.rs", "docopt/docopt.rs"),
    ],
)
def test_get_github_path(url, expected):
    assert get_github_path(url) == expected


def test_get_github_path_rejects_other_hosts():
    assert get_github_path("https://gitlab.com/onur/cratesfyi") is None


def test_get_github_fields(monkeypatch, mocked):
    monkeypatch.setenv("CRATESFYI_GITHUB_USERNAME", "user")
    monkeypatch.setenv("CRATESFYI_GITHUB_ACCESSTOKEN", "token")
    mocked.add(
        responses.GET,
        f"{GITHUB_API}/onur/cratesfyi",
        json={
            "description": "docs host",
            "stargazers_count": 12,
            "forks_count": 3,
            "open_issues": 7,
            "pushed_at": "2016-05-23T10:20:30Z",
        },
    )
    fields = get_github_fields("onur/cratesfyi")
    assert fields.description == "docs host"
    assert (fields.stars, fields.forks, fields.issues) == (12, 3, 7)
    assert fields.last_commit == datetime(2016, 5, 23, 10, 20, 30)

    request = mocked.calls[0].request
    assert request.headers["User-Agent"].startswith("cratesfyi/")
    scheme, _, encoded = request.headers["Authorization"].partition(" ")
    assert scheme == "Basic"
    assert base64.b64decode(encoded).decode() == "user:token"


def test_get_github_fields_defaults(mocked):
    mocked.add(responses.GET, f"{GITHUB_API}/a/b", json={"description": None})
    fields = get_github_fields("a/b")
    assert fields.description == ""
    assert (fields.stars, fields.forks, fields.issues) == (0, 0, 0)
    assert abs(datetime.utcnow() - fields.last_commit) < timedelta(minutes=1)


def test_get_github_fields_bad_status(mocked):
    mocked.add(responses.GET, f"{GITHUB_API}/a/missing", status=404, json={})
    with pytest.raises(CratesfyiError):
        get_github_fields("a/missing")


def test_get_github_fields_not_an_object(mocked):
    mocked.add(responses.GET, f"{GITHUB_API}/a/list", json=[1, 2])
    with pytest.raises(CratesfyiError):
        get_github_fields("a/list")