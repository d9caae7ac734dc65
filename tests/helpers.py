"""Scripted HTTP transport and canned WordPress responses shared by the tests."""
import json as _json

import requests
from requests.structures import CaseInsensitiveDict


class FakeResponse:
    def __init__(self, status_code=200, json=None, text=None, headers=None, reason=""):
        self.status_code = status_code
        self.headers = CaseInsensitiveDict(headers or {})
        if text is None:
            text = _json.dumps(json) if json is not None else ""
            if json is not None:
                self.headers.setdefault("Content-Type", "application/json; charset=UTF-8")
        self.text = text
        self.content = text.encode("utf-8")
        self.reason = reason

    @property
    def ok(self):
        return 200 <= self.status_code < 400

    def json(self):
        return _json.loads(self.text)


class FakeHTTP:
    """Scripted transport: routes (METHOD, url-substring) to a response or an exception.

    The longest matching substring wins (latest added on ties); every call is recorded.
    """

    def __init__(self):
        self.routes = []
        self.calls = []

    def add(self, method, url_part, response):
        self.routes.append((method.upper(), url_part, response))
        return self

    def request(self, method, url, **kwargs):
        self.calls.append({"method": method.upper(), "url": url, **kwargs})
        best = None
        for idx, (m, part, response) in enumerate(self.routes):
            if m == method.upper() and part in url:
                key = (len(part), idx)
                if best is None or key > best[0]:
                    best = (key, response)
        if best is not None:
            response = best[1]
            if isinstance(response, BaseException):
                raise response
            return response
        raise requests.exceptions.ConnectionError(f"No fake route for {method} {url}")

    def last(self, url_part=None):
        for call in reversed(self.calls):
            if url_part is None or url_part in call["url"]:
                return call
        return None


SITE = "https://example.com"

ADMIN_USER = {
    "id": 1,
    "name": "Site Admin",
    "username": "admin",
    "roles": ["administrator"],
    "capabilities": {"manage_options": True, "edit_posts": True},
}


def healthy_site(http=None, *, connector_version="2.1.0", server="Apache/2.4.58"):
    """A fully working WordPress install with the companion plugin."""
    http = http or FakeHTTP()
    http.add("HEAD", SITE, FakeResponse(200, headers={"Server": server}))
    http.add("GET", "/wp-json/wp/v2/users/me", FakeResponse(200, json=ADMIN_USER))
    http.add("GET", "/wp-json/dashboard/v1/site-health",
             FakeResponse(200, json={"connector_version": connector_version, "wp_version": "6.5"}))
    http.add("GET", "/wp-json/", FakeResponse(200, json={"name": "Example"}, headers={"Server": server}))
    return http

