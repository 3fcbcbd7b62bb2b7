"""Validation helpers for identity flows."""

from __future__ import annotations

PASSWORD_MIN_LEN = 6
NAME_MAX_LEN = 80


def normalise_email(email: str) -> str:
	return email.strip().lower()


def normalise_name(value: str) -> str:
	return " ".join(value.split())
