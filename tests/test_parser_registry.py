import unittest

from inboxbrief.ingestion.article_types import ParsedNewsletter
from inboxbrief.parsers.default_registry import ALL_NEWSLETTER_SENDERS, build_default_registry
from inboxbrief.parsers.registry import (
    MATCH_DOMAIN,
    MATCH_EMAIL,
    ParserRegistration,
    ParserRegistrationError,
    ParserRegistry,
    extract_sender_email,
)


class _StubParser:
    def __init__(self, source):
        self.source = source
        self.display_name = source.title()

    def parse(self, message):
        return ParsedNewsletter(newsletter_source=self.source, email_subject=message.subject, published_at="2026-10-12")


class TestSenderExtraction(unittest.TestCase):
    def test_display_name_form(self):
        self.assertEqual(extract_sender_email("TLDR <Dan@TLDRNewsletter.com>"), "dan@tldrnewsletter.com")

    def test_display_name_with_semicolon_or_comma(self):
        self.assertEqual(extract_sender_email("TL;DR Newsletter <dan@tldrnewsletter.com>"), "dan@tldrnewsletter.com")
        self.assertEqual(extract_sender_email("\"McCormick, Packy\" <notboring@substack.com>"), "notboring@substack.com")

    def test_bare_address(self):
        self.assertEqual(extract_sender_email("  hello@6pages.com "), "hello@6pages.com")

    def test_no_address(self):
        self.assertEqual(extract_sender_email("Just A Name"), "")
        self.assertEqual(extract_sender_email(""), "")
        self.assertEqual(extract_sender_email(None), "")


class TestParserRegistry(unittest.TestCase):
    def setUp(self):
        self.alpha = _StubParser("alpha")
        self.beta = _StubParser("beta")
        self.registry = ParserRegistry()
        self.registry.register(
            ParserRegistration(parser=self.alpha, email_patterns=("news@alpha.com",), domain_patterns=("alpha.com",))
        )
        self.registry.register(
            ParserRegistration(parser=self.beta, email_patterns=("promo@alpha.com",), domain_patterns=("beta.io",))
        )

    def test_exact_email_beats_an_earlier_domain_match(self):
        match = self.registry.find_parser("Promo <promo@alpha.com>")
        self.assertTrue(match.matched)
        self.assertIs(match.parser, self.beta)
        self.assertEqual(match.match_type, MATCH_EMAIL)

    def test_domain_and_subdomain_match(self):
        match = self.registry.find_parser("other@alpha.com")
        self.assertEqual((match.source, match.match_type), ("alpha", MATCH_DOMAIN))
        match = self.registry.find_parser("x@mail.beta.io")
        self.assertEqual((match.source, match.match_type), ("beta", MATCH_DOMAIN))

    def test_lookalike_domain_does_not_match(self):
        self.assertFalse(self.registry.find_parser("x@notalpha.com").matched)
        self.assertFalse(self.registry.find_parser("x@alpha.com.evil.net").matched)

    def test_unknown_sender_and_garbage_header(self):
        match = self.registry.find_parser("someone@unknown.org")
        self.assertFalse(match.matched)
        self.assertIsNone(match.parser)
        self.assertFalse(self.registry.find_parser("no address here").matched)

    def test_rejects_broad_platform_domain(self):
        with self.assertRaises(ParserRegistrationError) as ctx:
            self.registry.register(ParserRegistration(parser=_StubParser("gamma"), domain_patterns=("substack.com",)))
        self.assertIn("too broad", str(ctx.exception))

    def test_rejects_bare_top_level_domain(self):
        with self.assertRaises(ParserRegistrationError):
            self.registry.register(ParserRegistration(parser=_StubParser("gamma"), domain_patterns=("com",)))

    def test_exact_address_on_broad_platform_is_allowed(self):
        self.registry.register(ParserRegistration(parser=_StubParser("gamma"), email_patterns=("gamma@substack.com",)))
        self.assertEqual(self.registry.find_parser("gamma@substack.com").source, "gamma")
        self.assertFalse(self.registry.find_parser("other@substack.com").matched)

    def test_rejects_empty_and_malformed_patterns(self):
        with self.assertRaises(ParserRegistrationError):
            self.registry.register(ParserRegistration(parser=_StubParser("gamma")))
        with self.assertRaises(ParserRegistrationError) as ctx:
            self.registry.register(
                ParserRegistration(parser=_StubParser("gamma"), email_patterns=("not-an-email",), domain_patterns=("bad domain",))
            )
        self.assertIn("invalid email pattern", str(ctx.exception))
        self.assertIn("invalid domain pattern", str(ctx.exception))
        self.assertEqual(self.registry.sources(), ["alpha", "beta"])

    def test_registration_is_normalized(self):
        self.registry.register(
            ParserRegistration(parser=_StubParser("gamma"), email_patterns=(" Mixed@Case.ORG ",), domain_patterns=("@Gamma.dev",))
        )
        self.assertEqual(self.registry.find_parser("mixed@case.org").source, "gamma")
        self.assertEqual(self.registry.find_parser("a@gamma.dev").source, "gamma")

    def test_all_senders_lists_exact_addresses(self):
        self.assertEqual(self.registry.all_senders(), ["news@alpha.com", "promo@alpha.com"])

    def test_registries_are_isolated(self):
        other = ParserRegistry()
        self.assertFalse(other.find_parser("news@alpha.com").matched)
        self.assertEqual(other.sources(), [])


class TestDefaultRegistry(unittest.TestCase):
    def setUp(self):
        self.registry = build_default_registry()

    def test_routes_known_senders(self):
        cases = {
            "TLDR <dan@tldrnewsletter.com>": "tldr",
            "TL;DR Newsletter <dan@tldrnewsletter.com>": "tldr",
            "TLDR AI <hello@tldr.tech>": "tldr",
            "Packy McCormick <notboring@substack.com>": "notboring",
            "6pages <hello@6pages.com>": "6pages",
            "The Batch <thebatch@deeplearning.ai>": "thebatch",
            "news@mail.deeplearning.ai": "thebatch",
        }
        for header, source in cases.items():
            with self.subTest(header=header):
                self.assertEqual(self.registry.find_parser(header).source, source)

    def test_other_substack_senders_are_not_routed(self):
        self.assertFalse(self.registry.find_parser("someone@substack.com").matched)

    def test_sender_list_matches_registrations(self):
        self.assertEqual(self.registry.all_senders(), ALL_NEWSLETTER_SENDERS)
        self.assertIn("notboring@substack.com", ALL_NEWSLETTER_SENDERS)
        self.assertEqual(self.registry.sources(), ["tldr", "notboring", "6pages", "thebatch"])


if __name__ == "__main__":
    unittest.main()
