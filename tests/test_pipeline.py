from pathlib import Path

import httpx
import pytest

from modernizer.atelier import AtelierClient
from modernizer.config import ServerConnection, Settings
from modernizer.errors import CompileError, ConnectionInactiveError, RemoteStoreError
from modernizer.pipeline import (
    SourceFile,
    discover_sources,
    document_name,
    import_and_compile,
    import_folder,
    load_changes,
    load_source_file,
    namespace_compile,
)
from modernizer.rules import NAMESPACE_PATTERNS

from conftest import FakeAtelier

MODERN = "Class Demo.Person [ syntax = modern ]\n{\n    x = 5\n    ..Save()\n}\n"


def test_document_name_from_headers():
    assert document_name(Path("a.cls"), "/// doc\nClass Demo.Person Extends %Persistent\n{\n}\n") == "Demo.Person.cls"
    assert document_name(Path("util.MAC"), "ROUTINE Demo.Util [Type=MAC]\n") == "Demo.Util.mac"
    assert document_name(Path("loose.int"), " write 1\n") == "loose.int"


def test_discover_sources_is_recursive_and_case_insensitive(tmp_path):
    (tmp_path / "sub").mkdir()
    (tmp_path / "A.CLS").write_text("Class A {}\n")
    (tmp_path / "sub" / "b.mac").write_text("ROUTINE b\n")
    (tmp_path / "notes.txt").write_text("x = 1\n")

    assert discover_sources(tmp_path) == [tmp_path / "A.CLS", tmp_path / "sub" / "b.mac"]


def test_settings_from_env():
    settings = Settings.from_env({
        "MODERNIZER_ACTIVE": "true",
        "MODERNIZER_HOST": "iris.local",
        "MODERNIZER_PORT": "443",
        "MODERNIZER_HTTPS": "1",
        "MODERNIZER_NAMESPACE": "DEV",
        "MODERNIZER_PATH_PREFIX": "/iris/",
        "MODERNIZER_COMPILE_FLAGS": "ck",
    })
    assert settings.conn.active is True
    assert settings.compile_flags == "ck"
    assert settings.conn.base_url == "https://iris.local:443/iris/api/atelier/v1/DEV"


def test_settings_defaults():
    settings = Settings.from_env({})
    assert settings.conn.active is False
    assert settings.compile_flags == "cuk"
    assert settings.conn.base_url == "http://localhost:52773/api/atelier/v1/USER"


@pytest.mark.asyncio
async def test_import_and_compile_round_trip(tmp_path, settings, fake_store, make_client):
    path = tmp_path / "person.cls"
    path.write_text(MODERN)
    source = load_source_file(path)
    seen = []

    async with make_client(fake_store) as client:
        result = await import_and_compile(settings, source, client=client, on_others=seen.append)

    assert fake_store.docs["Demo.Person.cls"] == [
        "Class Demo.Person [  ]", "{", "    SET x = 5", "    DO ..Save()", "}", "",
    ]
    assert fake_store.compiled == [(["Demo.Person.cls"], "cuk")]
    assert result.message == "Demo.Person.cls: Compile succeeded"
    assert result.others == {"Demo.Person.cls": ["Demo.Person.1.int"]}
    assert seen == [["Demo.Person.1.int"]]
    assert path.read_text() == "\n".join(fake_store.docs["Demo.Person.cls"])


@pytest.mark.asyncio
async def test_import_and_compile_raises_on_compile_errors(settings, make_client):
    store = FakeAtelier(compile_errors=[{"error": "ERROR #5030"}])
    source = SourceFile(name="Demo.Person.cls", content=MODERN)

    async with make_client(store) as client:
        with pytest.raises(CompileError) as exc_info:
            await import_and_compile(settings, source, flags="ck", client=client)

    assert str(exc_info.value) == "Demo.Person.cls: Compile error"
    assert exc_info.value.errors == [{"error": "ERROR #5030"}]
    assert store.indexed == []


@pytest.mark.asyncio
async def test_failed_import_still_compiles(settings, make_client):
    store = FakeAtelier(put_status=409)
    source = SourceFile(name="Demo.Person.cls", content=MODERN)

    async with make_client(store) as client:
        result = await import_and_compile(settings, source, client=client)

    assert store.docs == {}
    assert store.compiled == [(["Demo.Person.cls"], "cuk")]
    assert result.others == {"Demo.Person.cls": []}


@pytest.mark.asyncio
async def test_inactive_connection_is_rejected():
    inactive = Settings(conn=ServerConnection(active=False))
    source = SourceFile(name="Demo.Person.cls", content=MODERN)

    with pytest.raises(ConnectionInactiveError, match="No Active Connection"):
        await import_and_compile(inactive, source)
    with pytest.raises(ConnectionInactiveError):
        await namespace_compile(inactive)


@pytest.mark.asyncio
async def test_namespace_compile(settings, fake_store, make_client):
    source = SourceFile(name="Demo.Person.cls", content=MODERN)

    async with make_client(fake_store) as client:
        result = await namespace_compile(settings, files=[source], client=client)

    assert fake_store.compiled == [(NAMESPACE_PATTERNS, "cuk")]
    assert result.message == "Compiling Namespace: USER Success"
    assert result.others == {"Demo.Person.cls": ["Demo.Person.1.int"]}


@pytest.mark.asyncio
async def test_namespace_compile_cancelled(settings, fake_store, make_client):
    async with make_client(fake_store) as client:
        assert await namespace_compile(settings, client=client, cancelled=True) is None
    assert fake_store.compiled == []


@pytest.mark.asyncio
async def test_namespace_compile_error(settings, make_client):
    store = FakeAtelier(compile_errors=[{"error": "boom"}])
    async with make_client(store) as client:
        with pytest.raises(CompileError, match="Compiling Namespace: USER Error"):
            await namespace_compile(settings, client=client)


@pytest.mark.asyncio
async def test_import_folder_compiles_everything_together(tmp_path, settings, fake_store, make_client):
    (tmp_path / "src").mkdir()
    (tmp_path / "src" / "Person.cls").write_text(MODERN)
    (tmp_path / "src" / "util.mac").write_text("ROUTINE Demo.Util\n set x = 1\n")
    (tmp_path / "README.md").write_text("x = 1\n")

    async with make_client(fake_store) as client:
        result = await import_folder(settings, tmp_path, client=client)

    assert sorted(fake_store.docs) == ["Demo.Person.cls", "Demo.Util.mac"]
    assert len(fake_store.compiled) == 1
    assert sorted(fake_store.compiled[0][0]) == ["Demo.Person.cls", "Demo.Util.mac"]
    assert result.message == "Compile succeeded"
    assert sorted(result.documents) == ["Demo.Person.cls", "Demo.Util.mac"]


@pytest.mark.asyncio
async def test_client_raises_on_http_error(settings):
    transport = httpx.MockTransport(lambda request: httpx.Response(500, json={"status": {"errors": ["down"]}}))
    async with AtelierClient(settings, transport=transport) as client:
        with pytest.raises(RemoteStoreError) as exc_info:
            await client.get_doc("Demo.Person.cls")

    assert exc_info.value.status_code == 500
    assert exc_info.value.errors == ["down"]


@pytest.mark.asyncio
async def test_load_changes_writes_nothing_when_a_fetch_fails(tmp_path, settings, make_client):
    store = FakeAtelier(failing_gets={"Demo.Bad.cls"})
    store.docs["Demo.Good.cls"] = ["Class Demo.Good", "{", "}"]
    good = tmp_path / "good.cls"
    good.write_text("original\n")
    files = [
        SourceFile(name="Demo.Good.cls", content="", path=good),
        SourceFile(name="Demo.Bad.cls", content="", path=tmp_path / "bad.cls"),
    ]

    async with make_client(store) as client:
        with pytest.raises(RemoteStoreError) as exc_info:
            await load_changes(client, files)

    assert exc_info.value.status_code == 500
    assert good.read_text() == "original\n"
    assert not (tmp_path / "bad.cls").exists()
    assert store.indexed == []
