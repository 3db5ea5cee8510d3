from .llm import LLMClientPort
from .repos import AccountStorePort, EventLogPort, LeadStorePort, RecordStorePort

__all__ = [
    "LLMClientPort",
    "AccountStorePort",
    "EventLogPort",
    "LeadStorePort",
    "RecordStorePort",
]
