#!/usr/bin/env python3
"""
Generate production-grade secrets for deployment environments.

Prints values to stdout; do NOT commit the output.
"""

from __future__ import annotations

import secrets


def token(nbytes: int = 48) -> str:
    # URL-safe; ~ (4/3)*nbytes chars
    return secrets.token_urlsafe(nbytes)


def main() -> None:
    print("# Paste these into your secret manager / hosting env vars")
    print(f"JWT_SECRET_KEY={token(64)}")
    print("# Optional: protects /metrics in production")
    print(f"METRICS_TOKEN={token(32)}")


if __name__ == "__main__":
    main()
