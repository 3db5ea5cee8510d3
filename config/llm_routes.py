from __future__ import annotations

import os


# Central routing for LLM use-cases. Edit here to change per-stage defaults.
# You can also override per-route model via env vars for quick testing.
#
# Keys are use_case identifiers consumed by services/llm_client.py
ROUTES: dict[str, dict] = {
    # Stage 1: is the author actively hiring for their own company
    "hiring_detection": {
        "provider": os.getenv("LLM_STAGE1_PROVIDER", "openai"),
        "model": os.getenv("OPENAI_MODEL_STAGE1"),  # falls back to global OPENAI_MODEL
        "temperature": 0.1,
        "operation": "hiring_detection",
    },
    # Stage 2: language / geography match
    "targeting": {
        "provider": os.getenv("LLM_STAGE2_PROVIDER", "openai"),
        "model": os.getenv("OPENAI_MODEL_STAGE2"),
        "temperature": 0.1,
        "operation": "targeting",
    },
    # Stage 3: job category and selected roles
    "categorization": {
        "provider": os.getenv("LLM_STAGE3_PROVIDER", "openai"),
        "model": os.getenv("OPENAI_MODEL_STAGE3"),
        "temperature": 0.1,
        "operation": "categorization",
    },
}
