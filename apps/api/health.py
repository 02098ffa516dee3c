from __future__ import annotations

import sys

import requests

from libs.core.settings import get_settings


def main() -> None:
    """Container health probe: exit 0 when the API answers /health."""
    settings = get_settings()
    base = settings.public_url.rstrip("/")
    if not base:
        print("Missing PUBLIC_URL", file=sys.stderr)
        sys.exit(1)

    try:
        resp = requests.get(f"{base}/health", timeout=5)
        if resp.ok and resp.json().get("status") == "healthy":
            sys.exit(0)
        print(f"Unhealthy response: HTTP {resp.status_code}", file=sys.stderr)
    except (requests.RequestException, ValueError) as exc:  # pragma: no cover - network errors
        print(exc, file=sys.stderr)

    sys.exit(1)


if __name__ == "__main__":
    main()
