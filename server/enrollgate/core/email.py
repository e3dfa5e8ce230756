from __future__ import annotations


def normalize_email(raw: str) -> str:
    return raw.strip().lower()
