from __future__ import annotations

import re
from typing import Any, Dict, Iterable, List, Optional, Tuple

from models.stage_results import Categorization, HiringVerdict, TargetingVerdict
from pipelines.errors import ClassificationParseError


MAX_ROLES = 3

CATEGORIES: List[str] = [
    "Tech",
    "Business",
    "Product",
    "Data",
    "HR",
    "Executive Search",
    "Freelance",
    "Other",
]


# --- Prompts -----------------------------------------------------------------

HIRING_SYSTEM_PROMPT = """You analyse a social network post to decide whether the AUTHOR is actively
hiring for their OWN company (not for a client).

Return a JSON object:
{"is_hiring": true | false, "roles": ["role 1", "role 2"]}

- is_hiring is true only for an active, targeted recruitment for the author's company
  ("we are hiring", "join our team", "open position", link to a job offer).
- roles: at most 3 precise job titles; empty list when none is clear.
- is_hiring is false when the author is a freelancer, agency or consultancy recruiting
  for an external client, when the author is looking for a job, when only internships,
  apprenticeships, technicians or assistants are sought, when more than 3 different
  roles are listed, or when the post is vague.
"""

TARGETING_SYSTEM_PROMPT = """You check whether a recruitment post targets our markets.

Return a JSON object:
{"is_target": true | false, "language": "<ISO 639-1 code>", "location": "<detected location or null>"}

- language: main language of the post.
- location: the job or company location if stated, else the author's location, else null.
- is_target is true when the language is one of {languages} and the location, if any,
  is in one of: {locations}.
"""

CATEGORIZATION_SYSTEM_PROMPT = """You classify the roles of a recruitment post into exactly ONE category.

Categories: {categories}.

Return a JSON object:
{{"category": "<one category>", "selected_roles": ["normalized role", ...], "justification": "<one sentence>"}}

- Pick the dominant category; use "Other" when none fits.
- selected_roles: only the roles that belong to the chosen category, with normalized titles.
"""


def build_post_prompt(payload: Dict[str, Any], extra: Optional[Dict[str, Any]] = None) -> str:
    lines = [
        f"Title: {payload.get('title') or 'No title'}",
        "",
        f"Content: {payload.get('text') or ''}",
        "",
        f"Author: {payload.get('author_name') or 'Unknown'}",
    ]
    if payload.get("author_headline"):
        lines.append(f"Author headline: {payload['author_headline']}")
    if payload.get("author_location"):
        lines.append(f"Author location: {payload['author_location']}")
    for key, value in (extra or {}).items():
        lines.append(f"{key}: {value}")
    return "\n".join(lines)


# --- Reply parsing -----------------------------------------------------------

def _as_bool(value: Any, field: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("yes", "oui", "true", "1"):
        return True
    if isinstance(value, str) and value.strip().lower() in ("no", "non", "false", "0"):
        return False
    raise ClassificationParseError(f"Field {field} is not a boolean: {value!r}")


def _as_roles(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        value = value.split(",")
    if not isinstance(value, list):
        raise ClassificationParseError(f"Roles must be a list, got {type(value).__name__}")
    return [str(v).strip() for v in value if str(v).strip()]


def parse_hiring_reply(data: Dict[str, Any]) -> HiringVerdict:
    if "is_hiring" not in data:
        raise ClassificationParseError("Reply lacks is_hiring")
    roles = _as_roles(data.get("roles"))
    is_hiring = _as_bool(data["is_hiring"], "is_hiring")
    if len(roles) > MAX_ROLES:
        return HiringVerdict(is_hiring=False, roles=[])
    return HiringVerdict(is_hiring=is_hiring, roles=roles)


def parse_targeting_reply(data: Dict[str, Any]) -> TargetingVerdict:
    if "is_target" not in data:
        raise ClassificationParseError("Reply lacks is_target")
    language = data.get("language")
    location = data.get("location")
    return TargetingVerdict(
        is_target=_as_bool(data["is_target"], "is_target"),
        language=str(language).lower() if language else None,
        location=str(location) if location else None,
    )


def parse_categorization_reply(data: Dict[str, Any]) -> Categorization:
    category = data.get("category")
    if not category:
        raise ClassificationParseError("Reply lacks category")
    matched = {c.lower(): c for c in CATEGORIES}.get(str(category).strip().lower(), "Other")
    return Categorization(
        category=matched,
        selected_roles=_as_roles(data.get("selected_roles")),
        justification=(str(data["justification"]) if data.get("justification") else None),
    )


# --- Deterministic heuristics ------------------------------------------------

_HIRING_PHRASES = (
    "we are hiring",
    "we're hiring",
    "is hiring",
    "hiring a",
    "hiring an",
    "join our team",
    "open position",
    "job opening",
    "nous recrutons",
    "on recrute",
    "je recrute",
    "rejoignez notre équipe",
    "rejoindre notre équipe",
    "poste ouvert",
    "offre d'emploi",
)

_NOT_OWN_HIRING_PHRASES = (
    "for a client",
    "for our client",
    "pour un client",
    "pour notre client",
    "looking for a job",
    "open to work",
    "je cherche un",
    "je recherche un poste",
)

_JUNIOR_ONLY = ("intern", "internship", "stage", "stagiaire", "alternance", "alternant", "apprenti")

_ROLE_PATTERNS = (
    re.compile(r"hiring\s+(?:an?\s+|our\s+(?:next|new)\s+)?((?:[A-Z][\w+#./-]*\s*){1,4})"),
    re.compile(r"recrut\w*\s+(?:un|une|des)?\s*((?:[A-Z][\w+#./-]*\s*){1,4})"),
    re.compile(r"(?:looking for|recherchons|cherchons)\s+(?:an?\s+|un\s+|une\s+)?((?:[A-Z][\w+#./-]*\s*){1,4})"),
)


def extract_roles(text: str) -> List[str]:
    roles: List[str] = []
    for pattern in _ROLE_PATTERNS:
        for match in pattern.finditer(text or ""):
            role = match.group(1).strip().rstrip(".,!")
            if role and role not in roles:
                roles.append(role)
    return roles


def detect_hiring(text: str, title: str = "") -> HiringVerdict:
    haystack = f"{title}\n{text}".lower()
    if any(p in haystack for p in _NOT_OWN_HIRING_PHRASES):
        return HiringVerdict(is_hiring=False, roles=[], fallback=True)
    if not any(p in haystack for p in _HIRING_PHRASES):
        return HiringVerdict(is_hiring=False, roles=[], fallback=True)
    roles = extract_roles(f"{title}\n{text}")
    if len(roles) > MAX_ROLES:
        return HiringVerdict(is_hiring=False, roles=[], fallback=True)
    if roles and all(any(j in r.lower().split() for j in _JUNIOR_ONLY) for r in roles):
        return HiringVerdict(is_hiring=False, roles=roles, fallback=True)
    return HiringVerdict(is_hiring=True, roles=roles, fallback=True)


_STOPWORDS: Dict[str, Tuple[str, ...]] = {
    "en": ("the", "and", "we", "are", "our", "for", "with", "you", "is", "to", "a", "of"),
    "fr": ("le", "la", "les", "et", "nous", "pour", "avec", "vous", "est", "des", "une", "un", "de"),
    "de": ("der", "die", "das", "und", "wir", "für", "mit", "sie", "ist", "ein", "eine"),
    "es": ("el", "los", "las", "y", "nosotros", "para", "con", "es", "una", "del"),
}


def detect_language(text: str) -> Optional[str]:
    words = re.findall(r"[a-zà-ÿ']+", (text or "").lower())
    if not words:
        return None
    scores = {lang: sum(1 for w in words if w in stop) for lang, stop in _STOPWORDS.items()}
    lang, score = max(scores.items(), key=lambda kv: kv[1])
    return lang if score > 0 else None


def detect_location(candidates: Iterable[Optional[str]], targets: Iterable[str]) -> Tuple[Optional[str], bool]:
    """First non-empty location candidate and whether it mentions a target location."""
    target_list = [t.lower() for t in targets]
    for candidate in candidates:
        if not candidate:
            continue
        lowered = candidate.lower()
        return candidate, any(t in lowered for t in target_list)
    return None, True


def detect_targeting(payload: Dict[str, Any], languages: Iterable[str], locations: Iterable[str]) -> TargetingVerdict:
    text = f"{payload.get('title') or ''}\n{payload.get('text') or ''}"
    language = detect_language(text)
    location, location_ok = detect_location([payload.get("author_location")], locations)
    is_target = language in set(languages) and location_ok
    return TargetingVerdict(is_target=is_target, language=language, location=location, fallback=True)


# Checked in order; first category with the most hits wins
_CATEGORY_KEYWORDS: List[Tuple[str, Tuple[str, ...]]] = [
    ("Data", ("data", "analyst", "machine learning", "scientist", "bi ", "analytics")),
    ("Product", ("product manager", "product owner", "ux", "ui designer", "designer", "product")),
    ("Tech", ("engineer", "developer", "développeur", "devops", "backend", "frontend", "fullstack", "full stack", "software", "sre", "cto", "architect", "ingénieur")),
    ("HR", ("hr", "rh", "recruiter", "recruteur", "talent", "people partner", "ressources humaines")),
    ("Executive Search", ("ceo", "cfo", "coo", "vp ", "vice president", "director", "directeur", "head of", "general manager")),
    ("Business", ("sales", "account executive", "account manager", "business developer", "commercial", "marketing", "customer success", "bizdev")),
    ("Freelance", ("freelance", "contractor", "contract", "mission", "indépendant")),
]


def _category_hits(text: str) -> Dict[str, int]:
    lowered = f" {text.lower()} "
    return {cat: sum(1 for kw in kws if kw in lowered) for cat, kws in _CATEGORY_KEYWORDS}


def categorize(roles: List[str], text: str = "") -> Categorization:
    source = " ".join(roles) if roles else text
    hits = _category_hits(source)
    best = "Other"
    best_hits = 0
    for cat, _ in _CATEGORY_KEYWORDS:
        if hits[cat] > best_hits:
            best, best_hits = cat, hits[cat]
    selected = [r for r in roles if _category_hits(r).get(best, 0) > 0] if best != "Other" else list(roles)
    justification = (
        f"Roles {', '.join(selected or roles)} match {best} keywords" if best != "Other" else "No category keyword matched"
    )
    return Categorization(category=best, selected_roles=selected or list(roles), justification=justification, fallback=True)
