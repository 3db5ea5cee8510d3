from __future__ import annotations

from typing import Any, Dict, List, Optional, Protocol


class LLMClientPort(Protocol):
    def chat(
        self,
        *,
        use_case: str,
        messages: List[Dict[str, str]],
        temperature: Optional[float] = None,
        prompt_name: Optional[str] = None,
        record_id: Optional[int] = None,
        json_mode: bool = False,
    ) -> Any:
        ...

    def classify(
        self,
        *,
        use_case: str,
        system_prompt: str,
        user_prompt: str,
        record_id: Optional[int] = None,
    ) -> Dict[str, Any]:
        ...
