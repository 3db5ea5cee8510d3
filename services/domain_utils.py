from __future__ import annotations

import re
import unicodedata
from typing import Any, Dict, Optional
from urllib.parse import unquote, urlparse

import tldextract


_INVISIBLE = ("​", "‌", "‍", "﻿")
# Country/mobile subdomains (fr., de., m.) all point at the same profile
_LINKEDIN_HOST = re.compile(r"^(?:[a-z]{2,3}\.|m\.)?linkedin\.com$")


def extract_apex_domain(url_or_domain: Optional[str]) -> Optional[str]:
    if not url_or_domain:
        return None
    text = str(url_or_domain).strip().lower()
    if not text.startswith("http://") and not text.startswith("https://"):
        text = f"http://{text}"
    ext = tldextract.extract(text)
    if ext.domain and ext.suffix:
        return f"{ext.domain}.{ext.suffix}"
    return None


def normalize_linkedin_profile_url(url: Optional[str]) -> Optional[str]:
    """Canonical https://linkedin.com/in/{slug} form, or None for non-profile URLs."""
    if not url:
        return None
    u = urlparse(str(url).strip())
    host = (u.netloc or "").lower()
    if host.startswith("www."):
        host = host[4:]
    if not _LINKEDIN_HOST.match(host):
        return None
    parts = [p for p in (u.path or "").split("/") if p]
    if len(parts) < 2 or parts[0] != "in":
        return None
    # Keep only /in/{slug}; drop trailing locale segments (e.g. /fr, /en)
    slug = unicodedata.normalize("NFKC", unquote(parts[1])).strip().lower()
    for ch in _INVISIBLE:
        slug = slug.replace(ch, "")
    if not slug:
        return None
    return f"https://linkedin.com/in/{slug}"


def subject_key_for(payload: Dict[str, Any]) -> Optional[str]:
    """Identity of the post author used for lead deduplication."""
    normalized = normalize_linkedin_profile_url(payload.get("author_profile_url"))
    if normalized:
        return normalized
    profile_id = payload.get("author_profile_id")
    if profile_id:
        return f"id:{str(profile_id).strip()}"
    return None
