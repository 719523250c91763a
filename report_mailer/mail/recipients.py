from __future__ import annotations

import json
import logging
import re
from pathlib import Path

"""Recipient parsing, validation and persistence.

Two different policies apply to the same comma-separated input:

- ``parse_valid_recipients`` (dispatch side) keeps the valid addresses and
  silently drops anything that does not look like an email address
- ``validate_recipient_input`` (save side) rejects the whole edit with a
  ``ValidationError`` when any entry is invalid, so the user can fix it before
  it is persisted

``RecipientStore`` persists the raw (whitespace-normalized) strings per group
in a flat JSON object.
"""

__all__ = [
    "EMAIL_PATTERN",
    "ValidationError",
    "split_recipients",
    "parse_valid_recipients",
    "normalize_recipient_input",
    "validate_recipient_input",
    "RecipientStore",
]

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


class ValidationError(Exception):
    """Raised when a recipient edit contains an invalid address."""

    def __init__(self, invalid: list[str]) -> None:
        self.invalid = invalid
        super().__init__(
            "One or more email addresses seem invalid. Please check them (use commas to separate): "
            + ", ".join(invalid)
        )


def split_recipients(raw: str | None) -> list[str]:
    """Split on commas, trim each candidate, drop empties."""
    if not raw:
        return []
    return [part.strip() for part in raw.split(",") if part.strip()]


def is_valid_email(candidate: str) -> bool:
    return EMAIL_PATTERN.match(candidate) is not None


def parse_valid_recipients(raw: str | None) -> list[str]:
    """Ordered list of syntactically valid addresses; invalid ones are dropped."""
    return [c for c in split_recipients(raw) if is_valid_email(c)]


def normalize_recipient_input(raw: str) -> str:
    """``" a@b.com ,c@d.com,, "`` -> ``"a@b.com, c@d.com"``."""
    return ", ".join(split_recipients(raw))


def validate_recipient_input(raw: str) -> str:
    """Normalize an edit and reject it if any entry is invalid.

    An empty edit is valid (it clears the recipients).

    Returns:
        the normalized string to persist
    """
    normalized = normalize_recipient_input(raw)
    invalid = [c for c in split_recipients(normalized) if not is_valid_email(c)]
    if invalid:
        raise ValidationError(invalid)
    return normalized


class RecipientStore:
    """Group name -> raw recipient string, backed by a JSON file.

    A missing file means no recipients configured. Every successful ``set``
    writes the file.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._mapping: dict[str, str] = {}

    def load(self) -> dict[str, str]:
        if not self.path.exists():
            self._mapping = {}
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            # 壊れたファイルは空扱いにせずエラーにする (上書き事故防止)
            raise ValueError(f"invalid recipients file {self.path}: {e}") from e
        if not isinstance(data, dict):
            raise ValueError(f"invalid recipients file {self.path}: expected a JSON object")
        self._mapping = {str(k): str(v) for k, v in data.items()}
        return dict(self._mapping)

    def save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(self._mapping, ensure_ascii=False, indent=2), encoding="utf-8")

    def get(self, group_name: str) -> str:
        return self._mapping.get(group_name, "")

    def set(self, group_name: str, raw: str) -> str:
        """Validate, normalize and persist one group's recipients.

        Raises:
            ValidationError: any entry is not a valid address (nothing is saved)
        """
        normalized = validate_recipient_input(raw)
        self._mapping[group_name] = normalized
        self.save()
        logger.info(f"recipients saved group={group_name} count={len(split_recipients(normalized))}")
        return normalized

    def as_dict(self) -> dict[str, str]:
        return dict(self._mapping)
