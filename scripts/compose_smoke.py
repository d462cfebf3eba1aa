#!/usr/bin/env python3
from __future__ import annotations

import json
import os
import sys
import time
from urllib.error import URLError
from urllib.request import Request, urlopen

SMOKE_USER = "smoke-test-user"
SMOKE_CHUNK = "The deadline is 15 September 2025."


def _get(url: str) -> str:
    with urlopen(url, timeout=5) as response:
        return response.read().decode("utf-8")


def _post(url: str, payload: dict, api_key: str | None) -> dict:
    headers = {"Content-Type": "application/json"}
    if api_key:
        headers["X-API-Key"] = api_key
    request = Request(url, data=json.dumps(payload).encode("utf-8"), headers=headers, method="POST")
    with urlopen(request, timeout=120) as response:
        return json.loads(response.read().decode("utf-8"))


def main() -> int:
    base_url = os.getenv("DOCHAT_API_URL", "http://localhost:8000").rstrip("/")
    api_key = os.getenv("DOCHAT_API_KEY")
    try:
        print("/healthz:", _get(f"{base_url}/healthz"))
        print("/livez:", _get(f"{base_url}/livez"))
        # Give the service a moment to finish boot
        time.sleep(0.5)
        print("/healthz/ready:", _get(f"{base_url}/healthz/ready"))
        indexed = _post(
            f"{base_url}/index/chunks",
            {"user_id": SMOKE_USER, "chunks": [{"text": SMOKE_CHUNK, "source_id": "smoke.txt"}]},
            api_key,
        )
        print("/index/chunks:", indexed["indexed"], "chunk(s)")
        answer = _post(f"{base_url}/query", {"user_id": SMOKE_USER, "question": "What is the deadline?"}, api_key)
        print("/query:", answer["diagnostics"].get("outcome"), answer["sources"])
    except (URLError, KeyError, ValueError, OSError) as exc:
        print(f"Compose smoke failed: {exc}", file=sys.stderr)
        return 1
    print("Compose smoke passed.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
