"""Unit tests for the SQL draft store."""

from datetime import datetime, timedelta, timezone

import pytest

from draftdesk.drafts.store import SqlDraftStore
from draftdesk.models.email_drafts import EmailDraft
from draftdesk.models.emails import Email


def _draft(seeded, confidence: int = 80, status: str = "pending", created_at: datetime | None = None) -> EmailDraft:
    return EmailDraft(
        deal_id=seeded.deal_id,
        inbound_email_id=seeded.inbound_email_id,
        ai_generated_body="Hi Sarah, generated body.",
        final_body="Hi Sarah, generated body.",
        confidence_score=confidence,
        status=status,
        draft_versions=[{"version": 0, "body": "Hi Sarah, generated body."}],
        created_at=created_at or datetime.now(timezone.utc),
    )


class TestLookups:
    def test_spaces_for_deal_in_shortlist_order(self, store: SqlDraftStore, seeded):
        spaces = store.get_spaces_for_deal(seeded.deal_id)
        assert [space.id for space in spaces] == seeded.space_ids
        assert store.get_spaces_for_deal(seeded.other_deal_id) == []

    def test_email_thread_oldest_first(self, store: SqlDraftStore, seeded):
        thread = store.get_email_thread(seeded.deal_id)
        assert [email.id for email in thread] == [seeded.earlier_email_id, seeded.inbound_email_id]

    def test_missing_rows_return_none(self, store: SqlDraftStore):
        assert store.get_deal(999) is None
        assert store.get_email(999) is None
        assert store.get_draft(999) is None
        assert store.get_draft_detail(999) is None


class TestConditionalUpdate:
    def test_update_applies_when_status_matches(self, store: SqlDraftStore, seeded):
        draft = store.insert_draft(_draft(seeded))

        updated = store.update_draft(
            draft.id, {"status": "approved", "reviewed_by": "Jenny"}, allowed_statuses=("pending",)
        )

        assert updated is not None
        assert updated.status == "approved"
        assert updated.reviewed_by == "Jenny"

    def test_update_rejected_when_status_changed(self, store: SqlDraftStore, seeded):
        draft = store.insert_draft(_draft(seeded, status="sent"))

        result = store.update_draft(draft.id, {"final_body": "changed body"}, allowed_statuses=("pending",))

        assert result is None
        assert store.get_draft(draft.id).final_body == "Hi Sarah, generated body."

    def test_update_rejected_when_regeneration_count_moved(self, store: SqlDraftStore, seeded):
        draft = store.insert_draft(_draft(seeded))
        store.update_draft(draft.id, {"regeneration_count": 1}, expected_regeneration_count=0)

        # A second writer that also observed count 0 loses
        result = store.update_draft(draft.id, {"regeneration_count": 1}, expected_regeneration_count=0)

        assert result is None
        assert store.get_draft(draft.id).regeneration_count == 1

    def test_json_columns_round_trip(self, store: SqlDraftStore, seeded):
        draft = store.insert_draft(_draft(seeded))
        versions = draft.draft_versions + [{"version": 1, "body": "Second", "prompt": "Shorter please"}]

        updated = store.update_draft(draft.id, {"draft_versions": versions, "metadata_": {"model": "m"}})

        assert [v["version"] for v in updated.draft_versions] == [0, 1]
        assert updated.metadata_ == {"model": "m"}


class TestRecordSend:
    def test_inserts_email_and_marks_draft_sent(self, store: SqlDraftStore, seeded):
        draft = store.insert_draft(_draft(seeded, status="approved"))
        sent_at = datetime(2025, 1, 7, 18, 0, tzinfo=timezone.utc)
        email = Email(
            deal_id=seeded.deal_id,
            from_address="agent@tandem.space",
            to_address="sarah@acmerobotics.com",
            subject="Re: Spaces for Acme Robotics",
            body="Hi Sarah, generated body.",
            sent_at=sent_at,
            ai_generated=True,
        )

        result = store.record_send(draft.id, email, {"status": "sent", "sent_at": sent_at}, ("pending", "approved"))

        assert result is not None
        sent_draft, sent_email = result
        assert sent_draft.status == "sent"
        assert sent_draft.sent_email_id == sent_email.id
        assert sent_email.id is not None
        assert len(store.get_email_thread(seeded.deal_id)) == 3

    def test_nothing_written_when_draft_no_longer_sendable(self, store: SqlDraftStore, seeded):
        draft = store.insert_draft(_draft(seeded, status="archived"))
        email = Email(
            deal_id=seeded.deal_id,
            from_address="agent@tandem.space",
            to_address="sarah@acmerobotics.com",
            subject="Re: Spaces",
            body="Body",
        )

        result = store.record_send(draft.id, email, {"status": "sent"}, ("pending", "approved"))

        assert result is None
        assert len(store.get_email_thread(seeded.deal_id)) == 2
        assert store.get_draft(draft.id).status == "archived"


class TestListDrafts:
    @pytest.fixture
    def drafts(self, store: SqlDraftStore, seeded):
        now = datetime.now(timezone.utc)
        return [
            store.insert_draft(_draft(seeded, confidence=90, created_at=now - timedelta(hours=3))),
            store.insert_draft(_draft(seeded, confidence=60, created_at=now - timedelta(hours=2))),
            store.insert_draft(_draft(seeded, confidence=60, created_at=now - timedelta(hours=1), status="approved")),
        ]

    def test_lowest_confidence_first_then_newest(self, store: SqlDraftStore, drafts):
        rows = store.list_drafts()
        assert [row.draft.id for row in rows] == [drafts[2].id, drafts[1].id, drafts[0].id]

    def test_rows_carry_deal_and_inbound_summary(self, store: SqlDraftStore, drafts):
        row = store.list_drafts(limit=1)[0]
        assert row.company_name == "Acme Robotics"
        assert row.seeker_name == "Sarah Chen"
        assert row.inbound_from == "sarah@acmerobotics.com"
        assert row.inbound_subject == "Spaces for Acme Robotics"

    def test_filters_and_paging(self, store: SqlDraftStore, seeded, drafts):
        assert [row.draft.id for row in store.list_drafts(status="approved")] == [drafts[2].id]
        assert store.list_drafts(deal_id=seeded.other_deal_id) == []
        assert [row.draft.id for row in store.list_drafts(limit=1, offset=1)] == [drafts[1].id]

    def test_created_between(self, store: SqlDraftStore, drafts):
        now = datetime.now(timezone.utc)
        recent = store.list_drafts_created_between(now - timedelta(hours=2, minutes=30))
        assert sorted(d.id for d in recent) == sorted([drafts[1].id, drafts[2].id])

        older = store.list_drafts_created_between(now - timedelta(days=1), now - timedelta(hours=2, minutes=30))
        assert [d.id for d in older] == [drafts[0].id]
