import json
import os
import sys
from itertools import permutations

import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from rules.segments import CustomerSegment, parse_segment, segment_matches, preview_segment
from rules.catalog import load_segment_catalog, find_segment, default_segment_definitions


class TestSegmentEvaluation:
    """Test the AND composition of segment criteria."""

    def setup_method(self):
        self.contexts = [
            {},
            {"state": "CA", "tags": ["VIP"], "lifetime_value": 7500},
            {"zip": "94110", "city": "Oakland", "status": "Active", "client_type": "commercial"},
        ]
        self.criteria = [
            {"id": "a", "field": "state", "value": "ca"},
            {"id": "b", "field": "tag", "value": ["VIP", "HOA"]},
            {"id": "c", "field": "lifetimeValue", "value": {"min": 5000}},
        ]

    def test_no_segment_matches_everything(self):
        for ctx in self.contexts:
            assert segment_matches(None, ctx) is True

    def test_empty_criteria_matches_everything(self):
        for ctx in self.contexts:
            assert segment_matches({"id": "s", "name": "Everyone", "criteria": []}, ctx) is True
            assert segment_matches(CustomerSegment(id="s", name="Everyone"), ctx) is True

    def test_all_criteria_must_match(self):
        segment = {"id": "s1", "name": "Big CA VIPs", "criteria": self.criteria}
        assert segment_matches(segment, self.contexts[1]) is True
        assert segment_matches(segment, self.contexts[0]) is False
        assert segment_matches(segment, self.contexts[2]) is False

    def test_one_failing_criterion_excludes(self):
        criteria = self.criteria + [{"id": "d", "field": "zip", "value": "941"}]
        segment = {"id": "s2", "name": "Too narrow", "criteria": criteria}
        assert segment_matches(segment, self.contexts[1]) is False

    def test_order_does_not_change_result(self):
        for ctx in self.contexts:
            results = {
                segment_matches({"id": "p", "name": "p", "criteria": list(order)}, ctx)
                for order in permutations(self.criteria)
            }
            assert len(results) == 1

    def test_unknown_criterion_does_not_hide_records(self):
        segment = {
            "id": "seg-active",
            "name": "Active",
            "criteria": [{"id": "c4", "field": "lastServiceDate", "value": "2024-01-01"}],
        }
        for ctx in self.contexts:
            assert segment_matches(segment, ctx) is True

    def test_parse_segment_fields(self):
        segment = parse_segment({
            "id": "seg-1",
            "name": "North",
            "description": "Northern zips",
            "criteria": [{"id": "z", "field": "zip", "value": "94"}],
            "audienceCount": "12",
            "sampleTags": ["north"],
        })
        assert segment.audience_count == 12
        assert segment.sample_tags == ["north"]
        assert segment.criteria[0].field == "zip"

    def test_parse_segment_tolerates_bad_shapes(self):
        segment = parse_segment({"id": "x", "criteria": "nope", "audienceCount": "many"})
        assert segment.criteria == []
        assert segment.audience_count == 0


class TestSegmentPreview:
    """Test local audience previews."""

    def setup_method(self):
        self.clients = [
            {"id": "1", "billingState": "CA", "lifetimeValue": 9000, "tags": [{"name": "VIP"}, {"name": "HOA"}]},
            {"id": "2", "billingState": "CA", "lifetimeValue": 6000, "tags": [{"name": "VIP"}]},
            {"id": "3", "billingState": "NV", "lifetimeValue": 100, "tags": [{"name": "Commercial"}]},
        ]

    def test_preview_counts_and_tags(self):
        segment = {"id": "seg-ca", "name": "CA", "criteria": [{"id": "c", "field": "state", "value": "CA"}]}
        preview = preview_segment(segment, self.clients, "client")
        assert preview.audience_count == 2
        assert preview.sample_tags[0] == "VIP"
        assert set(preview.sample_tags) == {"VIP", "HOA"}

    def test_preview_falls_back_to_sample_tags(self):
        segment = {
            "id": "seg-none",
            "name": "Nobody",
            "criteria": [{"id": "c", "field": "state", "value": "TX"}],
            "sampleTags": ["premium"],
        }
        preview = preview_segment(segment, self.clients, "client")
        assert preview.audience_count == 0
        assert preview.sample_tags == ["premium"]

    def test_preview_without_segment(self):
        preview = preview_segment(None, self.clients, "client", sample_size=1)
        assert preview.audience_count == 3
        assert preview.sample_tags == ["VIP"]


class TestSegmentCatalog:
    """Test loading the saved segment catalog."""

    def test_missing_file_uses_defaults(self, tmp_path):
        catalog = load_segment_catalog(str(tmp_path / "missing.json"))
        ids = [segment.id for segment in catalog]
        assert ids == [raw["id"] for raw in default_segment_definitions()]

    def test_invalid_json_uses_defaults(self, tmp_path):
        path = tmp_path / "segments.json"
        path.write_text("{not json")
        catalog = load_segment_catalog(str(path))
        assert find_segment(catalog, "seg-residential") is not None

    def test_loads_list_and_envelope(self, tmp_path):
        raw = [{"id": "seg-x", "name": "X", "criteria": [{"id": "c", "field": "zip", "value": "1"}]}]
        plain = tmp_path / "plain.json"
        plain.write_text(json.dumps(raw))
        wrapped = tmp_path / "wrapped.json"
        wrapped.write_text(json.dumps({"success": True, "data": raw}))

        for path in (plain, wrapped):
            catalog = load_segment_catalog(str(path))
            assert [segment.id for segment in catalog] == ["seg-x"]

    def test_find_segment(self, tmp_path):
        catalog = load_segment_catalog(str(tmp_path / "missing.json"))
        assert find_segment(catalog, "seg-high-value").name == "High Value Customers"
        assert find_segment(catalog, "seg-unknown") is None
        assert find_segment(catalog, None) is None

    def test_default_segments_evaluate(self, tmp_path):
        catalog = load_segment_catalog(str(tmp_path / "missing.json"))
        high_value = find_segment(catalog, "seg-high-value")
        commercial = find_segment(catalog, "seg-commercial")
        active = find_segment(catalog, "seg-active")

        assert segment_matches(high_value, {"lifetime_value": 5000}) is True
        assert segment_matches(high_value, {"lifetime_value": 4999}) is False
        assert segment_matches(commercial, {"client_type": "property_manager"}) is True
        assert segment_matches(commercial, {"client_type": "residential"}) is False
        # lastServiceDate is not an evaluated field
        assert segment_matches(active, {}) is True


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
