"""
Tests for PartnerRepository: record translation, provenance stamping and
preservation, and conversion of upstream failures to results.
"""

from __future__ import annotations

import unittest
from unittest.mock import AsyncMock, patch

import aiohttp

from partnermap.const import PROVENANCE_FIELD_LABELS
from partnermap.models import PartnerType
from partnermap.repository import PartnerRepository, fields_for_partner, partner_from_record

from .test_common import FIXED_NOW, FakeAirtable, authenticate, make_context, make_partner, make_record

PROVENANCE_LABELS = set(PROVENANCE_FIELD_LABELS.values())


def _non_provenance(partner):
    return (
        partner.name, partner.type, partner.latitude, partner.longitude, partner.address,
        partner.description, partner.contact, partner.email, partner.phone, partner.website,
        partner.project_link, partner.notes,
    )


class TestRecordTranslation(unittest.TestCase):

    def test_record_to_partner(self):
        record = make_record(
            "recA",
            **{
                "Partner Type": "college",
                "Contact Email": "x@y.org",
                "Project Tracking Link": "https://p.example.org",
                "Created By User ID": "usr1",
                "Created By Email": "c@y.org",
                "Date Added": "2024-01-02T00:00:00.000Z",
            },
        )
        partner = partner_from_record(record)
        self.assertEqual(partner.id, "recA")
        self.assertEqual(partner.type, PartnerType.COMMUNITY_COLLEGE)
        self.assertEqual(partner.email, "x@y.org")
        self.assertEqual(partner.project_link, "https://p.example.org")
        self.assertEqual(partner.created_by_user_id, "usr1")
        self.assertEqual(partner.created_time, "2024-01-01T00:00:00.000Z")
        self.assertTrue(partner.has_provenance)

    def test_missing_coordinates_are_none_not_zero(self):
        record = make_record("recB", Latitude=None, Longitude="not a number")
        partner = partner_from_record(record)
        self.assertIsNone(partner.latitude)
        self.assertIsNone(partner.longitude)
        self.assertFalse(partner.has_valid_coordinates)

    def test_defaults_for_empty_record(self):
        partner = partner_from_record({"id": "recC", "fields": {}})
        self.assertEqual(partner.name, "Unnamed Partner")
        self.assertEqual(partner.type, PartnerType.OTHER)
        self.assertEqual(partner.address, "")

    def test_fields_never_include_provenance(self):
        partner = make_partner(created_by_user_id="usrEVIL", created_by_email="evil@x", date_added="1999")
        fields = fields_for_partner(partner)
        self.assertFalse(PROVENANCE_LABELS & set(fields))
        self.assertEqual(fields["Partner Type"], "Library")
        self.assertEqual(fields["Latitude"], 39.95)

    def test_empty_state_not_written(self):
        self.assertNotIn("State", fields_for_partner(make_partner(state="")))
        self.assertEqual(fields_for_partner(make_partner(state="PA"))["State"], "PA")

    def test_region_change_always_writes_state(self):
        fields = fields_for_partner(make_partner(state=""), region_changed=True)
        self.assertEqual(fields["State"], "")
        self.assertNotIn("County", fields)


class TestPartnerRepository(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        self.context = make_context()
        authenticate(self.context)
        self.repo = PartnerRepository(self.context)

    async def test_list_requires_token(self):
        context = make_context()
        result = await PartnerRepository(context).list()
        self.assertFalse(result.success)
        self.assertEqual(result.partners, [])

    async def test_list_counts_provenance(self):
        table = FakeAirtable([
            make_record("rec1", **{"Created By User ID": "usr1"}),
            make_record("rec2"),
            make_record("rec3", Latitude=None),
        ])
        with table.patch():
            result = await self.repo.list()

        self.assertTrue(result.success)
        self.assertEqual([p.id for p in result.partners], ["rec1", "rec2", "rec3"])
        self.assertEqual(result.with_provenance, 1)
        self.assertEqual(result.legacy, 2)
        method, url, headers = table.requests[0]
        self.assertEqual(url, "https://api.airtable.com/v0/appTESTBASE/Partners")
        self.assertEqual(headers["Authorization"], "Bearer tok-123")

    async def test_list_unauthorized_flag(self):
        table = FakeAirtable()
        table.fail_next(401, "Invalid token")
        with table.patch():
            result = await self.repo.list()
        self.assertFalse(result.success)
        self.assertTrue(result.unauthorized)
        self.assertIn("401", result.message)

    async def test_list_network_error(self):
        with patch("partnermap.api.records.fetch_records",
                   new=AsyncMock(side_effect=aiohttp.ClientConnectionError("offline"))):
            result = await self.repo.list()
        self.assertFalse(result.success)
        self.assertIn("offline", result.message)

    async def test_create_then_list_round_trip(self):
        table = FakeAirtable()
        partner = make_partner(None, name="Acme Library", address="1 Main St", notes="n")
        with table.patch():
            created = await self.repo.create(partner)
            listed = await self.repo.list()

        self.assertTrue(created.success)
        found = [p for p in listed.partners if p.id == created.id]
        self.assertEqual(len(found), 1)
        self.assertEqual(_non_provenance(found[0]), _non_provenance(partner))
        self.assertEqual(found[0].created_by_user_id, "usrTEST123456")
        self.assertEqual(found[0].created_by_email, "tester@example.org")
        self.assertEqual(found[0].date_added, FIXED_NOW)

    async def test_create_ignores_caller_provenance(self):
        table = FakeAirtable()
        partner = make_partner(None, created_by_user_id="usrFORGED", created_by_email="forged@x")
        with table.patch():
            await self.repo.create(partner)
        fields = table.requests[0][3]
        self.assertEqual(fields["Created By User ID"], "usrTEST123456")
        self.assertEqual(fields["Created By Email"], "tester@example.org")

    async def test_create_requires_complete_session(self):
        self.context.session.user_id = None
        table = FakeAirtable()
        with table.patch():
            result = await self.repo.create(make_partner(None))
        self.assertFalse(result.success)
        self.assertEqual(result.message, "Authentication required. Please log in again.")
        self.assertEqual(table.requests, [])

    async def test_create_is_not_idempotent(self):
        table = FakeAirtable()
        with table.patch():
            first = await self.repo.create(make_partner(None))
            second = await self.repo.create(make_partner(None))
        self.assertNotEqual(first.id, second.id)
        self.assertEqual(len(table.records), 2)

    async def test_update_preserves_provenance(self):
        table = FakeAirtable()
        with table.patch():
            created = await self.repo.create(make_partner(None, name="Before"))
            before = dict(table.records[created.id]["fields"])

            self.context.session.user_id = "usrSOMEONEELSE"
            changed = make_partner(
                created.id, name="After", created_by_user_id="usrX", created_by_email="x@x", date_added="2000",
            )
            updated = await self.repo.update(created.id, changed)
            listed = await self.repo.list()

        self.assertTrue(updated.success)
        patch_fields = table.requests[1][4]
        self.assertFalse(PROVENANCE_LABELS & set(patch_fields))
        partner = next(p for p in listed.partners if p.id == created.id)
        self.assertEqual(partner.name, "After")
        for label in PROVENANCE_LABELS:
            self.assertEqual(table.records[created.id]["fields"][label], before[label])

    async def test_update_missing_record(self):
        with FakeAirtable().patch():
            result = await self.repo.update("recGONE", make_partner("recGONE"))
        self.assertFalse(result.success)
        self.assertTrue(result.not_found)
        self.assertEqual(result.status, 404)

    async def test_delete(self):
        table = FakeAirtable([make_record("rec1")])
        with table.patch():
            result = await self.repo.delete("rec1")
        self.assertTrue(result.success)
        self.assertEqual(result.id, "rec1")
        self.assertEqual(table.records, {})

    async def test_delete_failure_reports_status(self):
        table = FakeAirtable([make_record("rec1")])
        table.fail_next(422, "Cannot delete")
        with table.patch():
            result = await self.repo.delete("rec1")
        self.assertFalse(result.success)
        self.assertEqual(result.status, 422)
        self.assertIn("Cannot delete", result.message)
        self.assertFalse(result.not_found)

    async def test_delete_unknown_record_is_not_found(self):
        with FakeAirtable().patch():
            result = await self.repo.delete("recGONE")
        self.assertTrue(result.not_found)


if __name__ == "__main__":
    unittest.main()
