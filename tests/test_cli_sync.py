import json
import textwrap
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from urllib.parse import parse_qs, urlparse

import pytest

from shortsync.cli import main


def _initial_state():
    return {
        1: [
            {"idString": "l_keep", "path": "keep", "originalURL": "https://k.example", "tags": ["managed"]},
            {"idString": "l_chg", "path": "chg", "originalURL": "https://old.example", "tags": ["managed"]},
            {"idString": "l_old", "path": "old", "originalURL": "https://o.example", "tags": ["managed"]},
            {"idString": "l_stray", "path": "stray", "originalURL": "https://s.example", "tags": []},
        ]
    }


class _Srv(BaseHTTPRequestHandler):
    calls = {"domains": 0, "list": 0, "create": [], "update": [], "delete": []}
    state = _initial_state()
    domains = [{"id": 1, "hostname": "short.io"}]

    protocol_version = "HTTP/1.1"

    def _send_json(self, status, obj):
        raw = json.dumps(obj).encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(raw)))
        self.end_headers()
        self.wfile.write(raw)

    def do_GET(self):  # noqa: N802
        url = urlparse(self.path)
        if self.headers.get("authorization") != "KEY":
            self._send_json(401, {"message": "Unauthorized"})
        elif url.path == "/api/domains":
            _Srv.calls["domains"] += 1
            self._send_json(200, _Srv.domains)
        elif url.path == "/api/links":
            _Srv.calls["list"] += 1
            domain_id = int(parse_qs(url.query)["domain_id"][0])
            self._send_json(200, {"links": _Srv.state.get(domain_id, []), "nextPageToken": None})
        else:
            self._send_json(404, {"error": "not found"})

    def do_POST(self):  # noqa: N802
        path = urlparse(self.path).path
        length = int(self.headers.get("Content-Length", "0"))
        body = json.loads(self.rfile.read(length).decode("utf-8")) if length else {}
        if path == "/links":
            _Srv.calls["create"].append(body)
            if body.get("path") == "broken":
                self._send_json(400, {"message": "Invalid path"})
            else:
                self._send_json(200, {"idString": "l_new"})
        elif path.startswith("/links/"):
            _Srv.calls["update"].append((path.rsplit("/", 1)[1], body))
            self._send_json(200, {})
        else:
            self._send_json(404, {"error": "not found"})

    def do_DELETE(self):  # noqa: N802
        _Srv.calls["delete"].append(urlparse(self.path).path.rsplit("/", 1)[1])
        self._send_json(200, {"success": True})

    def log_message(self, fmt, *args):
        return


@pytest.fixture()
def server():
    _Srv.calls = {"domains": 0, "list": 0, "create": [], "update": [], "delete": []}
    _Srv.state = _initial_state()
    _Srv.domains = [{"id": 1, "hostname": "short.io"}]
    srv = ThreadingHTTPServer(("127.0.0.1", 0), _Srv)
    thread = threading.Thread(target=srv.serve_forever, daemon=True)
    thread.start()
    yield f"http://{srv.server_address[0]}:{srv.server_address[1]}"
    srv.shutdown()
    thread.join(timeout=1.0)


@pytest.fixture(autouse=True)
def _isolated(tmp_path, monkeypatch):
    for name in ("SHORTIO_API_KEY", "INPUT_API_KEY", "INPUT_CONFIG_PATH", "INPUT_DRY_RUN",
                 "SHORTSYNC_SHORTIO__API_KEY", "GITHUB_ACTIONS"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("GITHUB_OUTPUT", str(tmp_path / "gh_output.txt"))
    monkeypatch.chdir(tmp_path)


def _links_file(tmp_path, extra=""):
    p = tmp_path / "shortio.yaml"
    p.write_text(textwrap.dedent("""
        domain: short.io
        links:
          docs:
            url: https://docs.example
            tags: [docs]
          keep:
            url: https://k.example
          chg:
            url: https://new.example
    """) + extra, encoding="utf-8")
    return p


def _run(base_url, tmp_path, *extra):
    return main([
        "sync",
        "--config", str(tmp_path / "shortio.yaml"),
        "--api-key", "KEY",
        "--base-url", base_url,
        "--retries", "0",
        "--logs-dir", str(tmp_path / "logs"),
        *extra,
    ])


def _outputs(tmp_path):
    return (tmp_path / "gh_output.txt").read_text(encoding="utf-8")


def test_sync_applies_diff(server, tmp_path, capsys):
    _links_file(tmp_path)
    rc = _run(server, tmp_path)
    assert rc == 0

    assert [b["path"] for b in _Srv.calls["create"]] == ["docs"]
    assert _Srv.calls["create"][0]["tags"] == ["docs", "managed"]
    assert _Srv.calls["update"] == [
        ("l_chg", {"originalURL": "https://new.example", "title": "", "tags": ["managed"]}),
    ]
    # unmanaged "stray" survives
    assert _Srv.calls["delete"] == ["l_old"]
    assert _Srv.calls["domains"] == 1

    out = capsys.readouterr().out
    assert "Sync completed:" in out and "Created: 1" in out

    outputs = _outputs(tmp_path)
    assert "created=1\n" in outputs and "updated=1\n" in outputs and "deleted=1\n" in outputs
    assert "summary<<ghadelimiter_" in outputs


def test_dry_run_changes_nothing(server, tmp_path, capsys):
    _links_file(tmp_path)
    rc = _run(server, tmp_path, "--dry-run")
    assert rc == 0
    assert _Srv.calls["create"] == [] and _Srv.calls["update"] == [] and _Srv.calls["delete"] == []
    assert _Srv.calls["list"] == 1
    assert "[DRY RUN] Sync completed:" in capsys.readouterr().out
    assert "created=1\n" in _outputs(tmp_path)


def test_in_sync_reports_no_changes(server, tmp_path, capsys):
    p = tmp_path / "shortio.yaml"
    p.write_text(textwrap.dedent("""
        domain: short.io
        links:
          keep: {url: "https://k.example"}
          chg: {url: "https://old.example"}
          old: {url: "https://o.example"}
    """), encoding="utf-8")
    assert _run(server, tmp_path) == 0
    assert "No changes needed" in capsys.readouterr().out
    assert "summary=No changes needed\n" in _outputs(tmp_path)
    assert "created=0\n" in _outputs(tmp_path)


def test_item_failure_exits_1(server, tmp_path, monkeypatch, capsys):
    monkeypatch.setenv("GITHUB_ACTIONS", "true")
    _links_file(tmp_path, "  broken:\n    url: https://b.example\n")
    rc = _run(server, tmp_path)
    assert rc == 1
    # the other changes were still applied
    assert _Srv.calls["delete"] == ["l_old"]
    out = capsys.readouterr().out
    assert "Errors: 1" in out
    assert "::error::Sync completed with 1 errors" in out


def test_unknown_domain_exits_3(server, tmp_path):
    (tmp_path / "shortio.yaml").write_text(
        "domain: other.io\nlinks:\n  x: {url: 'https://x.example'}\n", encoding="utf-8"
    )
    assert _run(server, tmp_path) == 3
    assert _Srv.calls["list"] == 0
    assert _Srv.calls["create"] == []


def test_malformed_domain_listing_exits_3(server, tmp_path):
    _Srv.domains = [{"hostname": "short.io"}]
    _links_file(tmp_path)
    assert _run(server, tmp_path) == 3
    assert _Srv.calls["list"] == 0


def test_missing_api_key_exits_2(tmp_path, capsys):
    _links_file(tmp_path)
    rc = main(["sync", "--config", str(tmp_path / "shortio.yaml"), "--logs-dir", str(tmp_path / "logs")])
    assert rc == 2
    assert "shortio.api_key" in capsys.readouterr().err


def test_invalid_links_file_exits_2(server, tmp_path):
    (tmp_path / "shortio.yaml").write_text("links:\n  x: {url: 'nope'}\n", encoding="utf-8")
    assert _run(server, tmp_path) == 2
    assert _Srv.calls["domains"] == 0


def test_validate_command(tmp_path, capsys):
    _links_file(tmp_path)
    assert main(["validate", "--config", str(tmp_path / "shortio.yaml")]) == 0
    assert "OK: 3 links across 1 domain(s)" in capsys.readouterr().out
