from __future__ import annotations

import pytest

from db.repos.leads_repo import LeadsRepo
from db.repos.records_repo import RecordsRepo
from pipelines.errors import DuplicateSubjectError


def test_create_then_duplicate_raises_with_existing_lead(conn):
    records = RecordsRepo(conn)
    leads = LeadsRepo(conn)
    r1 = records.insert_raw("urn:1", {})
    r2 = records.insert_raw("urn:2", {})

    lead_id = leads.create(
        "https://linkedin.com/in/jane",
        r1,
        author_name="Jane",
        company="Acme",
        selected_roles=["Backend Engineer"],
        post_url="https://example.com/p/1",
    )
    with pytest.raises(DuplicateSubjectError) as info:
        leads.create("https://linkedin.com/in/jane", r2, author_name="Jane D.", company="Other")
    assert info.value.lead_id == lead_id
    assert info.value.first_record_id == r1
    assert leads.count() == 1

    lead = leads.get(lead_id)
    assert lead.company == "Acme"
    assert lead.selected_roles == ["Backend Engineer"]
    assert lead.first_record_id == r1


def test_merge_latest_activity_keeps_identity(conn):
    records = RecordsRepo(conn)
    leads = LeadsRepo(conn)
    r1 = records.insert_raw("urn:1", {})
    r2 = records.insert_raw("urn:2", {})
    lead_id = leads.create("id:7", r1, author_name="Jane", company="Acme", post_url="u1", activity_at="2024-01-01 10:00:00")

    leads.merge_latest_activity(lead_id, r2, "u2", "2024-02-01 10:00:00")

    lead = leads.get_by_subject("id:7")
    assert lead.id == lead_id
    assert lead.latest_record_id == r2
    assert lead.latest_post_url == "u2"
    assert lead.latest_activity_at == "2024-02-01 10:00:00"
    assert lead.first_record_id == r1
    assert lead.author_name == "Jane" and lead.company == "Acme"
