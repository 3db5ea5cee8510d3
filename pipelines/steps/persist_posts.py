from __future__ import annotations

import logging
import sqlite3
from typing import Callable, List, Optional

from db.repos.records_repo import RecordsRepo
from models.raw_post import RawPost
from pipelines.runner import RunContext
from services.domain_utils import subject_key_for
from services.priority import compute_priority


logger = logging.getLogger(__name__)


class PersistPosts:
    """Insert each valid post as a `queued` record; a known natural key is a no-op."""

    def __init__(self, conn: sqlite3.Connection, on_processed: Optional[Callable[[int], None]] = None) -> None:
        self.repo = RecordsRepo(conn)
        self.on_processed = on_processed

    def run(self, ctx: RunContext) -> RunContext:
        posts: List[RawPost] = ctx.posts or []
        inserted = 0
        duplicates = 0
        record_ids: List[int] = []
        for post in posts:
            payload = post.to_payload()
            record_id = self.repo.insert_raw(
                str(post.natural_key).strip(),
                payload,
                batch_id=ctx.batch_id,
                subject_key=subject_key_for(payload),
                priority=compute_priority(payload),
            )
            if record_id is None:
                duplicates += 1
                continue
            inserted += 1
            record_ids.append(record_id)
            if self.on_processed:
                self.on_processed(inserted)
        ctx.meta["inserted"] = inserted
        ctx.meta["duplicates"] = duplicates
        ctx.meta["record_ids"] = record_ids
        logger.info(
            f"Persisted {inserted} records ({duplicates} already known)",
            extra={"step": "persist_posts", "run_id": ctx.batch_id},
        )
        return ctx
