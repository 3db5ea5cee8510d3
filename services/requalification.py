from __future__ import annotations

from typing import Iterable, Protocol, Sequence

from models.record import Record, RecordStatus


RECRUITMENT_KEYWORDS = ("recrute", "hiring", "job", "poste", "candidat", "embauche", "cherche")
SIGNAL_KEYWORDS = ("recherch", "recru", "candidat", "profil", "équipe", "team", "poste", "role")


class RequalificationPolicy(Protocol):
    def should_requalify(self, record: Record) -> bool:
        ...


class KeywordPolicy:
    """Stage 1 rejects whose text still carries recruitment keywords."""

    def __init__(self, keywords: Sequence[str] = RECRUITMENT_KEYWORDS):
        self.keywords = tuple(k.lower() for k in keywords)

    def should_requalify(self, record: Record) -> bool:
        if record.status != RecordStatus.STAGE1_REJECTED:
            return False
        text = record.text.lower()
        return any(k in text for k in self.keywords)


class TitleKeywordPolicy:
    """Any reject whose post title carries a recruitment keyword."""

    def __init__(self, keywords: Sequence[str] = RECRUITMENT_KEYWORDS):
        self.keywords = tuple(k.lower() for k in keywords)

    def should_requalify(self, record: Record) -> bool:
        title = record.title.lower()
        return bool(title) and any(k in title for k in self.keywords)


class SubstantialTextPolicy:
    """Score long, signal-rich posts; requalify above the threshold."""

    def __init__(self, threshold: float = 0.6):
        self.threshold = threshold

    def score(self, record: Record) -> float:
        text = record.text.lower()
        score = 0.0
        if len(text) > 100:
            score += 0.3
        if len(text) > 200:
            score += 0.2
        headline = str(record.payload.get("author_headline") or "").lower()
        if "rh" in headline.split() or "hr" in headline.split() or "talent" in headline:
            score += 0.3
        score += 0.1 * sum(1 for k in SIGNAL_KEYWORDS if k in text)
        return min(score, 1.0)

    def should_requalify(self, record: Record) -> bool:
        return self.score(record) > self.threshold


class AnyPolicy:
    def __init__(self, policies: Iterable[RequalificationPolicy]):
        self.policies = list(policies)

    def should_requalify(self, record: Record) -> bool:
        return any(p.should_requalify(record) for p in self.policies)


def default_policy() -> RequalificationPolicy:
    return AnyPolicy([KeywordPolicy(), TitleKeywordPolicy(), SubstantialTextPolicy()])
