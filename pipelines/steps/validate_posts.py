from __future__ import annotations

import logging
from typing import Any, List

from pydantic import ValidationError as PydanticValidationError

from models.raw_post import RawPost
from pipelines.errors import ValidationError
from pipelines.runner import RunContext


logger = logging.getLogger(__name__)


def validate_post(item: Any) -> RawPost:
    """Parse one raw item; raises ValidationError when it cannot be queued."""
    if not isinstance(item, dict):
        raise ValidationError(f"Raw item is not an object: {type(item).__name__}")
    try:
        post = RawPost.model_validate(item)
    except PydanticValidationError as exc:
        raise ValidationError(f"Malformed raw item: {exc.error_count()} field errors") from exc
    if not (post.natural_key or "").strip():
        raise ValidationError("Raw item has no natural key")
    if not (post.url or "").strip():
        raise ValidationError(f"Raw item {post.natural_key} has no url")
    return post


class ValidatePosts:
    """Consume the whole producer sequence; keep valid posts, count and drop the rest."""

    def run(self, ctx: RunContext) -> RunContext:
        valid: List[RawPost] = []
        received = 0
        invalid = 0
        for item in ctx.items:
            received += 1
            try:
                valid.append(validate_post(item))
            except ValidationError as exc:
                invalid += 1
                logger.warning(str(exc), extra={"step": "validate_posts", "status": "dropped"})
        ctx.posts = valid
        ctx.items = []
        ctx.meta["received"] = received
        ctx.meta["invalid"] = invalid
        return ctx
