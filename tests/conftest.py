import json

import httpx
import pytest

from modernizer.atelier import AtelierClient
from modernizer.config import ServerConnection, Settings

PREFIX = "/api/atelier/v1/USER/"


class FakeAtelier:
    """In-memory stand-in for the remote store, served through httpx.MockTransport."""

    def __init__(self, compile_errors=None, others=None, put_status=201, failing_gets=()):
        self.docs = {}
        self.compiled = []
        self.indexed = []
        self.compile_errors = compile_errors or []
        self.others = others or {}
        self.put_status = put_status
        self.failing_gets = set(failing_gets)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        rel = request.url.path[len(PREFIX):]

        if request.method == "PUT" and rel.startswith("doc/"):
            name = rel[len("doc/"):]
            if self.put_status >= 400:
                return httpx.Response(
                    self.put_status,
                    json={"status": {"errors": [{"error": "conflict"}]}},
                )
            self.docs[name] = json.loads(request.content)["content"]
            return httpx.Response(self.put_status, json={"status": {"errors": []}, "result": {"name": name}})

        if request.method == "GET" and rel.startswith("doc/"):
            name = rel[len("doc/"):]
            if name in self.failing_gets:
                return httpx.Response(500, json={"status": {"errors": [{"error": "unavailable"}]}})
            content = self.docs.get(name, ["// generated"])
            return httpx.Response(200, json={"status": {"errors": []}, "result": {"name": name, "content": content}})

        if request.method == "POST" and rel == "action/compile":
            names = json.loads(request.content)
            self.compiled.append((names, request.url.params["flags"]))
            return httpx.Response(200, json={"status": {"errors": self.compile_errors}, "result": {"content": []}})

        if request.method == "POST" and rel == "action/index":
            names = json.loads(request.content)
            self.indexed.extend(names)
            content = [{"name": n, "others": self.others.get(n, [])} for n in names]
            return httpx.Response(200, json={"status": {"errors": []}, "result": {"content": content}})

        return httpx.Response(404, json={"status": {"errors": [{"error": "not found"}]}})


@pytest.fixture
def settings():
    return Settings(conn=ServerConnection(active=True))


@pytest.fixture
def fake_store():
    return FakeAtelier(others={"Demo.Person.cls": ["Demo.Person.1.int"]})


@pytest.fixture
def make_client(settings):
    def _make(store):
        return AtelierClient(settings, transport=httpx.MockTransport(store))
    return _make
