"""
Click identity helpers: privacy-preserving hashes of connection metadata
and click id extraction from landing-page query parameters.
"""

from __future__ import annotations

import hashlib
import secrets
from typing import Mapping


# Checked in order; sub3 is what partner networks pass the click id through.
CLICK_ID_PARAMS = ("sub3", "click_id", "affiliate_id", "ref")
INTERNAL_REFS = {"internal", "direct"}


def _sha256_hex(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def hash_ip(ip: str) -> str:
    return _sha256_hex(ip.strip())


def hash_user_agent(user_agent: str) -> str:
    return _sha256_hex(user_agent)


def generate_click_id() -> str:
    return secrets.token_hex(16)


def extract_click_id(params: Mapping[str, object]) -> str | None:
    for key in CLICK_ID_PARAMS:
        value = params.get(key)
        if not isinstance(value, str) or not value.strip():
            continue
        if value.strip().lower() in INTERNAL_REFS:
            continue
        return value.strip()
    return None
