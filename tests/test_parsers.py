import os
import unittest

from inboxbrief.ingestion.article_types import EMAIL_INLINE, EMAIL_LINKS, RawMessage
from inboxbrief.parsers.html_utils import is_valid_article_title, parse_email_date, truncate_text
from inboxbrief.parsers.notboring import FALLBACK_TITLE as NOTBORING_FALLBACK_TITLE
from inboxbrief.parsers.notboring import notboring_parser
from inboxbrief.parsers.sixpages import sixpages_parser
from inboxbrief.parsers.thebatch import FALLBACK_TITLE as THEBATCH_FALLBACK_TITLE
from inboxbrief.parsers.thebatch import thebatch_parser
from inboxbrief.parsers.tldr import tldr_parser

ALL_PARSERS = (tldr_parser, notboring_parser, sixpages_parser, thebatch_parser)


def _fixture(name):
    path = os.path.join(os.path.dirname(__file__), "fixtures", name)
    with open(path, "r", encoding="utf-8") as f:
        return f.read()


def _message(html, subject="Weekly issue", sender="news@example.com", date="Mon, 12 Oct 2026 08:00:00 -0700"):
    return RawMessage(id="m1", subject=subject, from_header=sender, date=date, html_body=html)


class TestTLDRParser(unittest.TestCase):
    def setUp(self):
        self.parsed = tldr_parser.parse(_message(_fixture("tldr-sample.html"), subject="TLDR 2026-10-12"))

    def test_extracts_articles_with_reading_time_and_section(self):
        self.assertEqual(self.parsed.newsletter_source, "tldr")
        self.assertEqual(self.parsed.published_at, "2026-10-12")
        titles = [c.title for c in self.parsed.candidates]
        self.assertEqual(titles, ["Nvidia unveils next-generation AI chips", "How Postgres plans your queries"])

        first, second = self.parsed.candidates
        self.assertEqual(first.reading_time, "4 min read")
        self.assertEqual(first.section, "Headlines & Launches")
        self.assertTrue(first.summary.startswith("The new accelerators double memory bandwidth"))
        self.assertEqual(second.reading_time, "12 min read")
        self.assertEqual(second.section, "Deep Dives & Analysis")
        for c in self.parsed.candidates:
            self.assertEqual(c.extraction_method, EMAIL_LINKS)
            self.assertEqual(c.source_name, "TL;DR")
            self.assertTrue(c.url.startswith("https://tracking.tldrnewsletter.com/"))

    def test_sponsor_referral_social_and_management_links_are_dropped(self):
        joined = " ".join(c.title + " " + c.url for c in self.parsed.candidates).lower()
        for needle in ("sponsor", "referral", "twitter", "unsubscribe", "friends"):
            self.assertNotIn(needle, joined)

    def test_unmarked_house_ads_are_dropped(self):
        joined = " ".join(c.title for c in self.parsed.candidates).lower()
        for needle in ("claim your", "free year", "apply to", "early-stage"):
            self.assertNotIn(needle, joined)

    def test_only_tracking_links_qualify(self):
        html = (
            '<table><tr><td><a href="https://example.com/direct-story">A direct link to a story (3 minute read)</a>'
            '<span style="font-family: Arial">Long enough description text for the blurb here.</span></td></tr></table>'
        )
        self.assertEqual(tldr_parser.parse(_message(html)).candidates, [])

    def test_requires_a_description(self):
        html = (
            '<table><tr><td><a href="https://tracking.tldrnewsletter.com/CL0/https:%2F%2Fexample.com%2Fa/1/01">'
            "A headline without a blurb (2 minute read)</a></td></tr></table>"
        )
        self.assertEqual(tldr_parser.parse(_message(html)).candidates, [])

    def test_falls_back_to_text_after_the_link(self):
        html = (
            '<div><a href="https://tracking.tldrnewsletter.com/CL0/https:%2F%2Fexample.com%2Fb/1/01">'
            "Open source model tops the leaderboard (5 minute read)</a><br>"
            "A plain-text blurb that follows the anchor without a styled span.</div>"
        )
        (c,) = tldr_parser.parse(_message(html)).candidates
        self.assertEqual(c.summary, "A plain-text blurb that follows the anchor without a styled span.")
        self.assertIsNone(c.section)


class TestNotBoringParser(unittest.TestCase):
    def test_extracts_outbound_links(self):
        parsed = notboring_parser.parse(_message(_fixture("notboring-sample.html"), subject="The Energy Abundance Era"))
        self.assertEqual(parsed.newsletter_source, "notboring")
        self.assertEqual(
            [(c.title, c.url) for c in parsed.candidates],
            [
                (
                    "The 2026 energy abundance report",
                    "https://www.example.com/research/energy-report?utm_source=notboring",
                ),
                ("Aggregation Theory, revisited", "https://stratechery.com/2026/aggregation-theory-revisited/"),
            ],
        )
        for c in parsed.candidates:
            self.assertEqual(c.source_name, "Not Boring")
            self.assertEqual(c.extraction_method, EMAIL_LINKS)

    def test_falls_back_to_the_post_url(self):
        html = (
            '<p><a href="https://notboring.substack.com/p/the-great-rebundling?utm_source=email&amp;r=abc">Read</a></p>'
            '<p><a href="https://notboring.substack.com/subscribe">Subscribe now</a></p>'
        )
        (c,) = notboring_parser.parse(_message(html, subject="The Great Rebundling")).candidates
        self.assertEqual(c.title, "The Great Rebundling")
        self.assertEqual(c.url, "https://notboring.substack.com/p/the-great-rebundling?utm_source=email&r=abc")

    def test_fallback_title_when_subject_unusable(self):
        html = '<p><a href="https://notboring.substack.com/p/short">Read</a></p>'
        (c,) = notboring_parser.parse(_message(html, subject="Hi")).candidates
        self.assertEqual(c.title, NOTBORING_FALLBACK_TITLE)


class TestSixPagesParser(unittest.TestCase):
    def test_generic_links_take_the_preceding_heading(self):
        parsed = sixpages_parser.parse(_message(_fixture("sixpages-sample.html"), subject="6pages: This week"))
        self.assertEqual(
            [(c.title, c.url, c.title_inferred) for c in parsed.candidates],
            [
                ("Why chipmakers are building in Arizona", "https://www.example.com/chips-arizona", True),
                (
                    "Disney and Warner explore a joint streaming bundle",
                    "https://news.example.org/streaming-bundles",
                    False,
                ),
                ("The streaming bundle returns", "https://news.example.org/streaming-bundles-pricing", True),
            ],
        )

    def test_subject_is_used_when_no_heading_precedes(self):
        html = '<p><a href="https://www.example.com/story">Read more</a></p>'
        (c,) = sixpages_parser.parse(_message(html, subject="Markets rally on rate cut hopes")).candidates
        self.assertEqual(c.title, "Markets rally on rate cut hopes")
        self.assertTrue(c.title_inferred)


class TestTheBatchParser(unittest.TestCase):
    def test_extracts_inline_articles(self):
        parsed = thebatch_parser.parse(_message(_fixture("thebatch-sample.html"), subject="The Batch: Issue 320"))
        self.assertEqual(parsed.newsletter_source, "thebatch")
        titles = [c.title for c in parsed.candidates]
        self.assertEqual(
            titles, ["OpenAI releases a smaller reasoning model", "Robots learn household chores from video"]
        )

        first, second = parsed.candidates
        self.assertEqual(first.url, "https://www.deeplearning.ai/the-batch/small-reasoning-model/")
        self.assertIsNone(second.url)
        self.assertIn("compact reasoning model", first.content)
        self.assertIn("• The system folded laundry.", second.content)
        for c in parsed.candidates:
            self.assertEqual(c.extraction_method, EMAIL_INLINE)
            self.assertEqual(c.source_name, "The Batch")
            self.assertTrue(c.is_valid())
            self.assertLessEqual(len(c.summary), 303)

    def test_whole_body_fallback(self):
        body = "Plain prose about machine learning research and deployment. " * 5
        (c,) = thebatch_parser.parse(_message(f"<p>{body}</p>")).candidates
        self.assertEqual(c.title, THEBATCH_FALLBACK_TITLE)
        self.assertIsNone(c.url)
        self.assertGreaterEqual(len(c.content), 200)


class TestParserRobustness(unittest.TestCase):
    def test_empty_and_garbled_bodies_do_not_raise(self):
        bodies = ["", "   ", "<<<>>>", "<table><tr><td><a href=", "\ufffd\ufffd garbled bytes", "plain text only"]
        for parser in ALL_PARSERS:
            for body in bodies:
                with self.subTest(parser=parser.source, body=body):
                    parsed = parser.parse(_message(body))
                    self.assertEqual(parsed.candidates, [])
                    self.assertEqual(parsed.newsletter_source, parser.source)

    def test_text_body_is_used_when_html_is_missing(self):
        msg = RawMessage(id="t", subject="x", from_header="a@b.com", text_body="nothing to see")
        for parser in ALL_PARSERS:
            with self.subTest(parser=parser.source):
                self.assertEqual(parser.parse(msg).candidates, [])

    def test_out_of_range_dates_fall_back_to_today(self):
        import datetime

        for date in ("0001-01-01T00:00:00+01:00", "9999-12-31T23:00:00-05:00"):
            for parser in ALL_PARSERS:
                with self.subTest(parser=parser.source, date=date):
                    before = datetime.datetime.now(datetime.timezone.utc).date().isoformat()
                    parsed = parser.parse(_message("<p>nothing</p>", date=date))
                    after = datetime.datetime.now(datetime.timezone.utc).date().isoformat()
                    self.assertIn(parsed.published_at, (before, after))

    def test_blank_html_body_falls_through_to_text_body(self):
        msg = RawMessage(
            id="t",
            subject="TLDR 2026-10-12",
            from_header="dan@tldrnewsletter.com",
            date="Mon, 12 Oct 2026 08:00:00 -0700",
            html_body="  \n ",
            text_body=_fixture("tldr-sample.html"),
        )
        titles = [c.title for c in tldr_parser.parse(msg).candidates]
        self.assertEqual(titles, ["Nvidia unveils next-generation AI chips", "How Postgres plans your queries"])

    def test_no_emitted_candidate_is_excluded_or_invalid(self):
        fixtures = {
            tldr_parser: "tldr-sample.html",
            notboring_parser: "notboring-sample.html",
            sixpages_parser: "sixpages-sample.html",
            thebatch_parser: "thebatch-sample.html",
        }
        for parser, name in fixtures.items():
            parsed = parser.parse(_message(_fixture(name), subject="A reasonable subject line"))
            self.assertTrue(parsed.candidates)
            for c in parsed.candidates:
                with self.subTest(parser=parser.source, title=c.title):
                    self.assertTrue(is_valid_article_title(c.title))
                    self.assertFalse(parser.is_excluded(c.url, c.title))


class TestHtmlHelpers(unittest.TestCase):
    def test_parse_email_date(self):
        self.assertEqual(parse_email_date("Mon, 12 Oct 2026 23:30:00 -0700"), "2026-10-13")
        self.assertEqual(parse_email_date("2026-10-12T08:00:00Z"), "2026-10-12")

    def test_parse_email_date_falls_back_to_today(self):
        import datetime

        self.assertEqual(parse_email_date("garbage", today=datetime.date(2026, 1, 2)), "2026-01-02")
        self.assertEqual(parse_email_date(None, today=datetime.date(2026, 1, 2)), "2026-01-02")

    def test_truncate_text(self):
        self.assertEqual(truncate_text("short", 10), "short")
        text = "First sentence is here. Second sentence runs on and on"
        self.assertEqual(truncate_text(text, 30), "First sentence is here.")
        self.assertEqual(truncate_text("a" * 40, 10), "a" * 10 + "...")

    def test_title_gate(self):
        self.assertFalse(is_valid_article_title("Short"))
        self.assertFalse(is_valid_article_title("Unsubscribe"))
        self.assertFalse(is_valid_article_title("x" * 301))
        self.assertTrue(is_valid_article_title("A perfectly normal headline"))


if __name__ == "__main__":
    unittest.main()
