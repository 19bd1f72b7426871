import copy
import json
import os
import unittest

from inboxbrief.contracts.insights import (
    SECTION_FALLBACKS,
    SECTION_ORDER,
    empty_insights,
    fallback_section,
    is_structured_insights,
    parse_structured_insights,
    validate_section,
    validate_structured_insights,
    validate_themes,
)


def _sample():
    fixture_path = os.path.join(os.path.dirname(__file__), "fixtures", "structured_insights_sample.json")
    with open(fixture_path, "r", encoding="utf-8") as f:
        return json.load(f)


class TestStructuredInsightsContract(unittest.TestCase):
    def test_sample_fixture_is_valid(self):
        errors = validate_structured_insights(_sample())
        self.assertEqual(errors, [], msg="Schema validation failed:\n" + "\n".join(errors))

    def test_each_section_validates_independently(self):
        payload = _sample()
        for name in SECTION_ORDER:
            with self.subTest(section=name):
                self.assertEqual(validate_section(name, payload[name]), [])

    def test_errors_carry_the_failing_path(self):
        payload = _sample()
        payload["executiveOverview"]["keyThemes"][0]["articleCount"] = "four"
        del payload["policySignals"]
        errors = validate_structured_insights(payload)
        self.assertTrue(any(e.startswith("executiveOverview.keyThemes.0.articleCount:") for e in errors), errors)
        self.assertTrue(any(e.startswith("<root>:") and "policySignals" in e for e in errors), errors)

    def test_fallbacks_and_empty_payload_are_valid(self):
        for name in SECTION_ORDER:
            with self.subTest(section=name):
                self.assertEqual(validate_section(name, fallback_section(name)), [])
        self.assertEqual(validate_structured_insights(empty_insights()), [])

    def test_fallback_is_a_copy(self):
        section = fallback_section("marketMoves")
        section["bullets"].append("mutated")
        self.assertEqual(SECTION_FALLBACKS["marketMoves"]["bullets"], [])

    def test_detects_structured_vs_legacy_text(self):
        text = json.dumps(_sample())
        self.assertTrue(is_structured_insights(text))
        self.assertEqual(parse_structured_insights(text)["techShifts"]["bullets"][0][:7], "A small")
        legacy = "**Main Insight:** Something happened"
        self.assertFalse(is_structured_insights(legacy))
        self.assertIsNone(parse_structured_insights(legacy))
        self.assertIsNone(parse_structured_insights(None))
        self.assertFalse(is_structured_insights(json.dumps([1, 2])))


class TestThemesContract(unittest.TestCase):
    VALID = {
        "themes": [{"name": "AI hardware", "description": "Chips and fabs", "articleCount": 3}],
        "mainInsight": "Compute is the constraint.",
        "trends": ["Edge inference"],
    }

    def test_valid_themes(self):
        self.assertEqual(validate_themes(self.VALID), [])

    def test_missing_fields_are_reported(self):
        payload = copy.deepcopy(self.VALID)
        del payload["themes"][0]["description"]
        payload["trends"] = "not a list"
        errors = validate_themes(payload)
        self.assertEqual(len(errors), 2, errors)


if __name__ == "__main__":
    unittest.main()
