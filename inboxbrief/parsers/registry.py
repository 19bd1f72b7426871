"""Sender routing: From header -> newsletter parser.

The registry is an explicit object built once at startup (see
`inboxbrief.parsers.default_registry`) and handed to the orchestrator; tests build
their own isolated instances.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from email.utils import parseaddr
from typing import List, Optional, Sequence

from inboxbrief.parsers.base import NewsletterParser

logger = logging.getLogger(__name__)

MATCH_EMAIL = "email"
MATCH_DOMAIN = "domain"

# Shared mail platforms: many unrelated senders live here, so only exact
# addresses on them may be registered.
BROAD_PLATFORM_DOMAINS = frozenset(
    {
        "substack.com",
        "beehiiv.com",
        "mailchimp.com",
        "mailchimpapp.com",
        "convertkit.com",
        "ghost.io",
        "buttondown.email",
        "revue.co",
        "medium.com",
        "gmail.com",
        "googlemail.com",
        "outlook.com",
        "hotmail.com",
        "yahoo.com",
        "icloud.com",
    }
)

_DOMAIN_RE = re.compile(r"^(?=.{1,253}$)([a-z0-9](?:[a-z0-9-]*[a-z0-9])?\.)+[a-z]{2,}$")
_ANGLE_ADDR_RE = re.compile(r"<\s*([^<>\s]+@[^<>\s]+)\s*>")


class ParserRegistrationError(ValueError):
    """Raised at startup when a registration is malformed or too broad."""


@dataclass(frozen=True)
class ParserRegistration:
    parser: NewsletterParser
    email_patterns: Sequence[str] = ()
    domain_patterns: Sequence[str] = ()


@dataclass(frozen=True)
class ParserMatch:
    matched: bool
    parser: Optional[NewsletterParser] = None
    source: Optional[str] = None
    match_type: Optional[str] = None


NO_MATCH = ParserMatch(matched=False)


def extract_sender_email(from_header: Optional[str]) -> str:
    """Bare lowercase address from `addr` or `Name <addr>` forms; "" when there is none.

    The last angle-bracket address wins, so display names with `;` or `,` (e.g.
    `TL;DR <dan@tldrnewsletter.com>`) are not read as address groups.
    """
    angled = _ANGLE_ADDR_RE.findall(from_header or "")
    if angled:
        addr = angled[-1]
    else:
        _, addr = parseaddr(from_header or "")
    addr = addr.strip().lower()
    if "@" not in addr:
        return ""
    return addr


def _domain_matches(domain: str, pattern: str) -> bool:
    return domain == pattern or domain.endswith("." + pattern)


@dataclass
class ParserRegistry:
    _registrations: List[ParserRegistration] = field(default_factory=list)

    def register(self, registration: ParserRegistration) -> None:
        emails = [e.strip().lower() for e in registration.email_patterns]
        domains = [d.strip().lower().lstrip("@") for d in registration.domain_patterns]

        problems = []
        if not emails and not domains:
            problems.append("at least one email or domain pattern is required")
        for e in emails:
            if extract_sender_email(e) != e:
                problems.append(f"invalid email pattern: {e!r}")
        for d in domains:
            if not _DOMAIN_RE.match(d):
                problems.append(f"invalid domain pattern: {d!r}")
            elif any(_domain_matches(b, d) for b in BROAD_PLATFORM_DOMAINS):
                problems.append(f"domain pattern too broad: {d!r} (register exact sender addresses instead)")
        if problems:
            raise ParserRegistrationError(
                f"Invalid registration for parser {registration.parser.source!r}: " + "; ".join(problems)
            )

        self._registrations.append(
            ParserRegistration(parser=registration.parser, email_patterns=tuple(emails), domain_patterns=tuple(domains))
        )
        logger.debug(
            "Registered parser %s (%d emails, %d domains)", registration.parser.source, len(emails), len(domains)
        )

    def find_parser(self, from_header: Optional[str]) -> ParserMatch:
        email = extract_sender_email(from_header)
        if not email:
            return NO_MATCH

        for reg in self._registrations:
            if email in reg.email_patterns:
                return ParserMatch(True, reg.parser, reg.parser.source, MATCH_EMAIL)

        domain = email.rsplit("@", 1)[1]
        for reg in self._registrations:
            if any(_domain_matches(domain, p) for p in reg.domain_patterns):
                return ParserMatch(True, reg.parser, reg.parser.source, MATCH_DOMAIN)
        return NO_MATCH

    def all_senders(self) -> List[str]:
        """Every registered exact address, for building mailbox queries."""
        out: List[str] = []
        for reg in self._registrations:
            out.extend(e for e in reg.email_patterns if e not in out)
        return out

    def sources(self) -> List[str]:
        return [reg.parser.source for reg in self._registrations]

    def parsers(self) -> List[NewsletterParser]:
        return [reg.parser for reg in self._registrations]
