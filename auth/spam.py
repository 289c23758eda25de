"""
auth/spam.py -- Heuristic email screen applied to first-time signups only.

Structural checks, no network lookups:
  1. Domain block-list: the lowercased domain matches a configured entry.
  2. Numeric plus-alias: the local part ends in "+<digits>" (name+1@x.com),
     the usual way one inbox is turned into many throwaway signups.

Malformed addresses (not exactly one "@", or an empty side) are NOT spam.
Address validation belongs to the request schema; this filter fails open.

The block-list is Settings.spam_domains (comma separated) plus the JSON array
in Settings.spam_domains_file. Both are read once, at construction.
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Iterable

from core.config import Settings

logger = logging.getLogger("authcore.auth.spam")

_PLUS_DIGITS = re.compile(r"\+\d+$")


def load_domains_file(path: str | Path) -> set[str]:
    """Read a JSON array of domains. A missing or unreadable file is logged and yields an empty set."""
    file_path = Path(path)
    try:
        entries = json.loads(file_path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        logger.warning("Could not load spam domain list from %s: %s", file_path, e)
        return set()
    if not isinstance(entries, list):
        logger.warning("Spam domain list %s is not a JSON array -- ignored", file_path)
        return set()
    return {str(entry).strip().lower() for entry in entries if str(entry).strip()}


class SpamFilter:
    def __init__(self, domains: Iterable[str] = ()) -> None:
        self._domains = frozenset(d.strip().lower() for d in domains if d and d.strip())

    @classmethod
    def from_settings(cls, settings: Settings) -> "SpamFilter":
        domains = set(settings.spam_domain_list)
        if settings.spam_domains_file:
            domains |= load_domains_file(settings.spam_domains_file)
        logger.info("Spam filter loaded (%d blocked domains)", len(domains))
        return cls(domains)

    @property
    def domains(self) -> frozenset[str]:
        return self._domains

    def is_spam_email(self, email: str) -> bool:
        parts = email.split("@")
        if len(parts) != 2 or not parts[0] or not parts[1]:
            return False
        local_part, domain = parts
        if domain.lower() in self._domains:
            return True
        return bool(_PLUS_DIGITS.search(local_part))
