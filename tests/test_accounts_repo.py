from __future__ import annotations

from db.repos.accounts_repo import AccountsRepo


def test_reserve_call_stops_at_daily_limit(conn):
    repo = AccountsRepo(conn)
    repo.upsert_account("a1", daily_limit=2)
    assert repo.reserve_call("a1") is True
    assert repo.reserve_call("a1") is True
    assert repo.has_quota("a1") is False
    assert repo.reserve_call("a1") is False
    assert repo.get("a1").daily_usage_count == 2


def test_counter_resets_on_new_day(conn):
    repo = AccountsRepo(conn)
    repo.upsert_account("a1", daily_limit=1)
    assert repo.reserve_call("a1") is True
    conn.execute("UPDATE accounts SET usage_date = '2000-01-01' WHERE account_id = 'a1'")
    conn.commit()
    assert repo.has_quota("a1") is True
    assert repo.reserve_call("a1") is True
    assert repo.get("a1").daily_usage_count == 1


def test_claim_operation_is_exclusive(conn):
    repo = AccountsRepo(conn)
    repo.upsert_account("a1")
    assert repo.claim_operation("a1", "op-1") is True
    assert repo.claim_operation("a1", "op-2") is False
    # Only the holder releases
    assert repo.release_operation("a1", "op-2") is False
    assert repo.release_operation("a1", "op-1") is True
    assert repo.claim_operation("a1", "op-2") is True


def test_inactive_account_cannot_be_claimed(conn):
    repo = AccountsRepo(conn)
    repo.upsert_account("a1", is_active=False)
    assert repo.claim_operation("a1", "op") is False
    assert repo.has_quota("a1") is False
    assert repo.list_active() == []


def test_force_release_stale(conn):
    repo = AccountsRepo(conn)
    repo.upsert_account("stuck")
    repo.upsert_account("fresh")
    repo.claim_operation("stuck", "op-1")
    repo.claim_operation("fresh", "op-2")
    conn.execute("UPDATE accounts SET operation_started_at = '2000-01-01 00:00:00' WHERE account_id = 'stuck'")
    conn.commit()

    released = repo.force_release_stale("2001-01-01 00:00:00")

    assert released == ["stuck"]
    assert repo.get("stuck").current_operation_id is None
    assert repo.get("stuck").last_error_kind == "timeout"
    assert repo.get("fresh").current_operation_id == "op-2"


def test_usage_summary(conn):
    repo = AccountsRepo(conn)
    repo.upsert_account("a1", label="main", daily_limit=5)
    repo.reserve_call("a1")
    summary = repo.usage_summary()
    assert summary[0]["account_id"] == "a1"
    assert summary[0]["used_today"] == 1
    assert summary[0]["remaining"] == 4
    assert summary[0]["busy"] is False
