#!/usr/bin/env python3
"""
Production smoke test (backend-only).

Flow:
- health
- register + login (bearer token)
- upload a password-protected file
- info, rejected download, download with password
- list own files, delete, verify gone

Usage:
  SMOKE_BACKEND_URL="https://files.example.com" python3 scripts/prod_smoke_backend.py
"""

from __future__ import annotations

import json
import os
import time
import uuid
from dataclasses import dataclass
from typing import Dict, Optional, Tuple
from urllib.error import HTTPError, URLError
from urllib.parse import quote, urljoin
from urllib.request import Request, build_opener


def _now_iso() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())


def _json_loads(text: str):
    try:
        return json.loads(text)
    except ValueError:
        return None


def _multipart_encode(fields: Dict[str, str], files: Dict[str, Tuple[str, str, bytes]]):
    boundary = "----fs-smoke-" + uuid.uuid4().hex
    crlf = b"\r\n"
    body = bytearray()

    for name, value in fields.items():
        body.extend(f"--{boundary}".encode("utf-8"))
        body.extend(crlf)
        body.extend(f'Content-Disposition: form-data; name="{name}"'.encode("utf-8"))
        body.extend(crlf)
        body.extend(crlf)
        body.extend(value.encode("utf-8"))
        body.extend(crlf)

    for field, (filename, content_type, data) in files.items():
        body.extend(f"--{boundary}".encode("utf-8"))
        body.extend(crlf)
        body.extend(
            f'Content-Disposition: form-data; name="{field}"; filename="{filename}"'.encode("utf-8")
        )
        body.extend(crlf)
        body.extend(f"Content-Type: {content_type}".encode("utf-8"))
        body.extend(crlf)
        body.extend(crlf)
        body.extend(data)
        body.extend(crlf)

    body.extend(f"--{boundary}--".encode("utf-8"))
    body.extend(crlf)
    return boundary, bytes(body)


@dataclass
class HttpResp:
    status: int
    body: bytes

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="ignore")

    @property
    def json(self):
        return _json_loads(self.text)


class Client:
    def __init__(self, base: str):
        self.base = base.rstrip("/") + "/"
        self.opener = build_opener()
        self.token: Optional[str] = None

    def _request(self, method: str, path: str, body: bytes | None = None, headers: Dict[str, str] | None = None) -> HttpResp:
        url = urljoin(self.base, path.lstrip("/"))
        h = {"Accept": "application/json", **(headers or {})}
        if self.token:
            h["Authorization"] = f"Bearer {self.token}"
        req = Request(url, data=body, headers=h, method=method)
        try:
            with self.opener.open(req, timeout=30) as r:
                return HttpResp(status=getattr(r, "status", 200), body=r.read())
        except HTTPError as e:
            return HttpResp(status=getattr(e, "code", 0) or 0, body=e.read() if hasattr(e, "read") else b"")
        except URLError as e:
            return HttpResp(status=0, body=str(e).encode("utf-8"))

    def get(self, path: str) -> HttpResp:
        return self._request("GET", path)

    def delete(self, path: str) -> HttpResp:
        return self._request("DELETE", path)

    def post_json(self, path: str, payload: dict) -> HttpResp:
        body = json.dumps(payload).encode("utf-8")
        return self._request("POST", path, body=body, headers={"Content-Type": "application/json"})

    def post_multipart(self, path: str, fields: Dict[str, str], files: Dict[str, Tuple[str, str, bytes]]) -> HttpResp:
        boundary, body = _multipart_encode(fields, files)
        return self._request(
            "POST",
            path,
            body=body,
            headers={"Content-Type": f"multipart/form-data; boundary={boundary}"},
        )


def main() -> int:
    base = os.getenv("SMOKE_BACKEND_URL", "http://localhost:8000")
    c = Client(base)

    run_id = str(int(time.time()))
    email = f"e2e-smoke-{run_id}@example.com"
    password = f"SmokePass-{run_id}!"
    share_password = f"share-{run_id}"
    upload_name = f"e2e-smoke-{run_id}.txt"
    payload = f"smoke payload {run_id}\n".encode("utf-8") * 64

    print(f"[{_now_iso()}] smoke start")
    print(f"base: {base}")
    print(f"user: {email}")

    h = c.get("/health")
    if h.status != 200:
        print(f"FAIL health: {h.status} {h.text[:300]}")
        return 2
    print("OK health")

    reg = c.post_json("/auth/register", {"email": email, "password": password, "name": "E2E Smoke"})
    if reg.status != 200:
        print(f"FAIL register: {reg.status} {reg.text[:500]}")
        return 3
    print("OK register")

    login = c.post_json("/auth/login", {"email": email, "password": password})
    token = (login.json or {}).get("access_token") if isinstance(login.json, dict) else None
    if login.status != 200 or not token:
        print(f"FAIL login: {login.status} {login.text[:500]}")
        return 4
    c.token = token
    print("OK login")

    up = c.post_multipart(
        "/files",
        fields={"password": share_password, "expiresIn": "1"},
        files={"file": (upload_name, "text/plain", payload)},
    )
    created = up.json if isinstance(up.json, dict) else {}
    share_token = created.get("shareToken")
    if up.status != 200 or not share_token:
        print(f"FAIL upload: {up.status} {up.text[:800]}")
        return 5
    print(f"OK upload ({created.get('shareLink')})")

    info = c.get(f"/files/{share_token}")
    if info.status != 200 or not (info.json or {}).get("hasPassword"):
        print(f"FAIL info: {info.status} {info.text[:500]}")
        return 6
    print("OK info")

    denied = c.get(f"/files/{share_token}/content")
    if denied.status != 401:
        print(f"FAIL download without password should be 401, got {denied.status}")
        return 7
    print("OK download without password rejected")

    dl = c.get(f"/files/{share_token}/content?password={quote(share_password)}")
    if dl.status != 200 or dl.body != payload:
        print(f"FAIL download: {dl.status} ({len(dl.body)} bytes)")
        return 8
    print("OK download round-trip")

    mine = c.get("/files/mine")
    files = (mine.json or {}).get("files") if isinstance(mine.json, dict) else None
    if mine.status != 200 or not isinstance(files, list) or not any(f.get("shareToken") == share_token for f in files):
        print(f"FAIL list mine: {mine.status} {mine.text[:500]}")
        return 9
    print(f"OK list mine ({len(files)} files)")

    rm = c.delete(f"/files/{created.get('id')}")
    if rm.status != 200:
        print(f"FAIL delete: {rm.status} {rm.text[:500]}")
        return 10
    gone = c.get(f"/files/{share_token}")
    if gone.status != 404:
        print(f"FAIL deleted file still visible: {gone.status}")
        return 11
    print("OK delete")

    print(f"[{_now_iso()}] smoke PASS")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
