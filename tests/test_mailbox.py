import base64
import json
import os
import tempfile
import unittest
from datetime import datetime, timezone
from unittest import mock

from inboxbrief.mail.gmail import (
    GmailMailbox,
    build_sender_query,
    extract_message_bodies,
    load_gmail_service,
    message_from_payload,
)
from inboxbrief.mail.json_export import JsonExportMailbox, load_messages_json


def _b64(text):
    return base64.urlsafe_b64encode(text.encode("utf-8")).decode("ascii").rstrip("=")


def _gmail_message(mid, sender, subject="Issue", html="<p>Hello</p>", text="Hello"):
    return {
        "id": mid,
        "threadId": "t-" + mid,
        "payload": {
            "mimeType": "multipart/alternative",
            "headers": [
                {"name": "subject", "value": subject},
                {"name": "FROM", "value": sender},
                {"name": "Date", "value": "Mon, 12 Oct 2026 09:00:00 +0000"},
            ],
            "parts": [
                {"mimeType": "text/plain", "body": {"data": _b64(text)}},
                {
                    "mimeType": "multipart/related",
                    "parts": [{"mimeType": "text/html", "body": {"data": _b64(html)}}],
                },
            ],
        },
    }


class _Request:
    def __init__(self, fn):
        self.fn = fn

    def execute(self):
        return self.fn()


class FakeGmailService:
    """Mimics users().messages().list/get(...).execute() over canned pages."""

    def __init__(self, pages, details, failing_ids=()):
        self.pages = pages
        self.details = details
        self.failing_ids = set(failing_ids)
        self.list_calls = []

    def users(self):
        return self

    def messages(self):
        return self

    def list(self, **kwargs):
        self.list_calls.append(kwargs)
        return _Request(lambda: self.pages[kwargs.get("pageToken")])

    def get(self, userId, id, format):
        def run():
            if id in self.failing_ids:
                raise RuntimeError("backend error")
            return self.details[id]

        return _Request(run)


class TestGmailHelpers(unittest.TestCase):
    def test_sender_query(self):
        start = datetime(2026, 10, 5, tzinfo=timezone.utc)
        end = datetime(2026, 10, 12, tzinfo=timezone.utc)
        q = build_sender_query(["a@x.com", "b@y.com"], start, end)
        self.assertEqual(q, f"(from:a@x.com OR from:b@y.com) after:{int(start.timestamp())} before:{int(end.timestamp())}")

    def test_bodies_are_decoded_from_nested_parts(self):
        msg = _gmail_message("1", "TLDR <dan@tldrnewsletter.com>", html="<p>Héllo</p>", text="Héllo")
        html, text = extract_message_bodies(msg["payload"])
        self.assertEqual(html, "<p>Héllo</p>")
        self.assertEqual(text, "Héllo")

    def test_headers_are_case_insensitive(self):
        raw = message_from_payload(_gmail_message("1", "TLDR <dan@tldrnewsletter.com>", subject="TLDR Daily"))
        self.assertEqual(raw.subject, "TLDR Daily")
        self.assertEqual(raw.from_header, "TLDR <dan@tldrnewsletter.com>")
        self.assertEqual(raw.thread_id, "t-1")

    def test_missing_payload_is_tolerated(self):
        raw = message_from_payload({"id": "x"})
        self.assertEqual((raw.id, raw.subject, raw.html_body), ("x", "", ""))

    def test_service_requires_token(self):
        with tempfile.TemporaryDirectory() as tmp:
            with self.assertRaises(RuntimeError):
                load_gmail_service(os.path.join(tmp, "missing-token.json"))


class TestGmailMailbox(unittest.TestCase):
    def setUp(self):
        self.start = datetime(2026, 10, 5, tzinfo=timezone.utc)
        self.end = datetime(2026, 10, 12, tzinfo=timezone.utc)

    def test_paginates_and_skips_failed_fetches(self):
        pages = {
            None: {"messages": [{"id": "1"}, {"id": "2"}], "nextPageToken": "p2"},
            "p2": {"messages": [{"id": "3"}]},
        }
        store = {
            "1": _gmail_message("1", "dan@tldrnewsletter.com"),
            "2": _gmail_message("2", "hello@6pages.com"),
            "3": _gmail_message("3", "dan@tldrnewsletter.com"),
        }
        service = FakeGmailService(pages, store, failing_ids={"2"})
        with mock.patch("inboxbrief.config.time.sleep"):
            messages = GmailMailbox(service).fetch_newsletter_emails(
                self.start, self.end, ["dan@tldrnewsletter.com", "hello@6pages.com"]
            )
        self.assertEqual([m.id for m in messages], ["1", "3"])
        self.assertEqual(len(service.list_calls), 2)
        self.assertEqual(service.list_calls[1]["pageToken"], "p2")
        self.assertEqual(service.list_calls[0]["maxResults"], 100)

    def test_no_senders_means_no_query(self):
        service = FakeGmailService({}, {})
        self.assertEqual(GmailMailbox(service).fetch_newsletter_emails(self.start, self.end, []), [])
        self.assertEqual(service.list_calls, [])


class TestJsonExportMailbox(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.path = os.path.join(self.tmp.name, "messages.json")
        data = {
            "messages": [
                {"id": "1", "from": "TLDR <dan@tldrnewsletter.com>", "date": "Mon, 12 Oct 2026 09:00:00 +0000", "htmlBody": "<p>a</p>"},
                {"id": "2", "from_header": "x@news.6pages.com", "date": "2026-10-08T10:00:00Z", "html_body": "<p>b</p>"},
                {"id": "3", "from": "dan@tldrnewsletter.com", "date": "Mon, 28 Sep 2026 09:00:00 +0000"},
                {"id": "4", "from": "random@elsewhere.org", "date": "Mon, 12 Oct 2026 09:00:00 +0000"},
                {"id": "5", "from": "dan@tldrnewsletter.com", "date": "not a date"},
                {"id": "6", "from": "TL;DR Newsletter <dan@tldrnewsletter.com>", "date": "Mon, 12 Oct 2026 15:00:00 +0000"},
                "ignored",
            ]
        }
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(data, f)

    def tearDown(self):
        self.tmp.cleanup()

    def test_load_accepts_both_key_styles(self):
        messages = load_messages_json(self.path)
        self.assertEqual(len(messages), 6)
        self.assertEqual(messages[0].html_body, "<p>a</p>")
        self.assertEqual(messages[1].from_header, "x@news.6pages.com")

    def test_filters_by_sender_and_window(self):
        mailbox = JsonExportMailbox(self.path)
        out = mailbox.fetch_newsletter_emails(
            datetime(2026, 10, 5, tzinfo=timezone.utc),
            datetime(2026, 10, 13, tzinfo=timezone.utc),
            ["dan@tldrnewsletter.com", "6pages.com"],
        )
        self.assertEqual([m.id for m in out], ["1", "2", "5", "6"])


if __name__ == "__main__":
    unittest.main()
