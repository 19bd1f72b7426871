"""The supported newsletter catalog.

Adding a source means one new parser module and one `register` call here.
"""

from __future__ import annotations

from inboxbrief.parsers.notboring import notboring_parser
from inboxbrief.parsers.registry import ParserRegistration, ParserRegistry
from inboxbrief.parsers.sixpages import sixpages_parser
from inboxbrief.parsers.thebatch import thebatch_parser
from inboxbrief.parsers.tldr import tldr_parser


DEFAULT_REGISTRATIONS = (
    ParserRegistration(
        parser=tldr_parser,
        email_patterns=(
            "dan@tldrnewsletter.com",
            "tldr@tldrnewsletter.com",
            "hello@tldr.tech",
            "dan@tldr.tech",
        ),
        domain_patterns=("tldrnewsletter.com", "tldr.tech"),
    ),
    # Substack hosts everyone: exact address only.
    ParserRegistration(
        parser=notboring_parser,
        email_patterns=("notboring@substack.com",),
    ),
    ParserRegistration(
        parser=sixpages_parser,
        email_patterns=("hello@6pages.com",),
        domain_patterns=("6pages.com",),
    ),
    ParserRegistration(
        parser=thebatch_parser,
        email_patterns=("thebatch@deeplearning.ai",),
        domain_patterns=("deeplearning.ai",),
    ),
)

ALL_NEWSLETTER_SENDERS = [e for reg in DEFAULT_REGISTRATIONS for e in reg.email_patterns]


def build_default_registry() -> ParserRegistry:
    registry = ParserRegistry()
    for reg in DEFAULT_REGISTRATIONS:
        registry.register(reg)
    return registry
