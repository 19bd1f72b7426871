import json
import unittest
from types import SimpleNamespace
from unittest import mock

import numpy as np
import openai

from inboxbrief.ai.dedup import (
    cosine_similarity_matrix,
    deduplicate_articles,
    quick_deduplicate_by_url,
)
from inboxbrief.ai.insights import (
    ThemesResult,
    clean_json_response,
    detect_themes_and_insights,
    format_insights,
    generate_structured_insights,
    summarize_articles,
)
from inboxbrief.contracts.insights import SECTION_FALLBACKS, validate_structured_insights


class FakeChat:
    """Stands in for `client.chat.completions`; replies are consumed in order."""

    def __init__(self, replies):
        self.replies = list(replies)
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=reply))])


class FakeEmbeddings:
    def __init__(self, vectors=None, error=None):
        self.vectors = vectors or {}
        self.error = error
        self.calls = 0

    def create(self, model, input):
        self.calls += 1
        if self.error:
            raise self.error
        return SimpleNamespace(data=[SimpleNamespace(embedding=self.vectors[text]) for text in input])


def fake_client(replies=(), embeddings=None):
    return SimpleNamespace(
        chat=SimpleNamespace(completions=FakeChat(replies)),
        embeddings=embeddings or FakeEmbeddings(),
    )


ARTICLES = [
    {"id": 1, "title": "Nvidia unveils new chips", "summary": "Faster accelerators.", "source_name": "TL;DR"},
    {"id": 2, "title": "Robots learn chores", "content": "Robot arms trained on video.", "source_name": "The Batch"},
]


class TestSummariesAndThemes(unittest.TestCase):
    def test_empty_period(self):
        client = fake_client()
        self.assertEqual(summarize_articles(client, []).summary, "No articles found for this period.")
        self.assertEqual(client.chat.completions.calls, [])

    def test_summary_uses_article_context(self):
        client = fake_client(["  Chips and robots dominated the week.  "])
        result = summarize_articles(client, ARTICLES, model="gpt-test")
        self.assertEqual(result.summary, "Chips and robots dominated the week.")
        self.assertEqual(result.article_count, 2)
        call = client.chat.completions.calls[0]
        self.assertEqual(call["model"], "gpt-test")
        prompt = call["messages"][1]["content"]
        self.assertIn("Nvidia unveils new chips", prompt)
        self.assertIn("Robot arms trained on video.", prompt)

    def test_themes_from_fenced_json(self):
        payload = {
            "themes": [{"name": "AI hardware", "description": "Chips", "articleCount": 1}],
            "mainInsight": "Compute keeps scaling.",
            "trends": ["Edge inference"],
        }
        client = fake_client(["```json\n" + json.dumps(payload) + "\n```"])
        themes = detect_themes_and_insights(client, ARTICLES)
        self.assertEqual(themes.main_insight, "Compute keeps scaling.")
        self.assertEqual(themes.themes[0]["name"], "AI hardware")
        self.assertEqual(themes.trends, ["Edge inference"])

    def test_invalid_themes_reply_falls_back(self):
        client = fake_client(["I think the themes are chips and robots."])
        themes = detect_themes_and_insights(client, ARTICLES)
        self.assertEqual(themes.themes, [])
        self.assertTrue(themes.main_insight)

    def test_format_insights(self):
        text = format_insights(
            ThemesResult(
                themes=[{"name": "AI hardware", "description": "Chips", "articleCount": 3}],
                main_insight="Compute keeps scaling.",
                trends=["Edge inference"],
            )
        )
        self.assertTrue(text.startswith("**Main Insight:** Compute keeps scaling."))
        self.assertIn("- **AI hardware** (3 articles): Chips", text)
        self.assertIn("**Emerging Trends:**\n- Edge inference", text)

    def test_clean_json_response(self):
        self.assertEqual(clean_json_response("```\n{}\n```"), "{}")
        self.assertEqual(clean_json_response(None), "")


class TestStructuredInsights(unittest.TestCase):
    def test_bad_sections_fall_back_and_result_stays_valid(self):
        replies = [
            json.dumps({"mainInsight": "Chips.", "keyThemes": [{"name": "AI", "articleCount": 2}], "emergingTrends": []}),
            "not json at all",
            json.dumps({"summary": "Models shrink.", "bullets": ["Small reasoning model"]}),
            json.dumps({"summary": "Missing industries"}),
            openai.OpenAIError("rate limited"),
            openai.OpenAIError("rate limited"),
            openai.OpenAIError("rate limited"),
        ]
        client = fake_client(replies)
        with mock.patch("inboxbrief.config.time.sleep"):
            insights = generate_structured_insights(client, ARTICLES)

        self.assertEqual(validate_structured_insights(insights), [])
        self.assertEqual(insights["executiveOverview"]["mainInsight"], "Chips.")
        self.assertEqual(insights["marketMoves"], SECTION_FALLBACKS["marketMoves"])
        self.assertEqual(insights["techShifts"]["bullets"], ["Small reasoning model"])
        self.assertEqual(insights["industryImpact"], SECTION_FALLBACKS["industryImpact"])
        self.assertEqual(insights["policySignals"], SECTION_FALLBACKS["policySignals"])

    def test_no_articles(self):
        client = fake_client()
        insights = generate_structured_insights(client, [])
        self.assertEqual(insights["executiveOverview"]["mainInsight"], "No articles to analyze.")
        self.assertEqual(client.chat.completions.calls, [])


class TestArticleDedup(unittest.TestCase):
    def test_quick_dedup_prefers_final_url(self):
        rows = [
            {"id": 1, "source_url": "https://t.co/abc", "final_url": "https://example.com/a"},
            {"id": 2, "source_url": "https://example.com/a?utm_source=x"},
            {"id": 3, "source_url": None, "content": "inline"},
            {"id": 4, "source_url": None, "content": "inline too"},
        ]
        self.assertEqual([r["id"] for r in quick_deduplicate_by_url(rows)], [1, 3, 4])

    def test_semantic_dedup_keeps_first_seen(self):
        rows = [
            {"id": 1, "title": "Nvidia unveils new chips"},
            {"id": 2, "title": "Nvidia launches new chips"},
            {"id": 3, "title": "Robots learn chores"},
        ]
        vectors = {
            "Nvidia unveils new chips": [1.0, 0.0, 0.0],
            "Nvidia launches new chips": [0.99, 0.05, 0.0],
            "Robots learn chores": [0.0, 1.0, 0.0],
        }
        client = fake_client(embeddings=FakeEmbeddings(vectors))
        result = deduplicate_articles(client, rows, threshold=0.9)
        self.assertEqual([r["id"] for r in result.unique_articles], [1, 3])
        self.assertEqual(result.removed_count, 1)
        self.assertEqual(result.removed_ids, [2])

    def test_embedding_failure_returns_input(self):
        rows = [{"id": 1, "title": "One story"}, {"id": 2, "title": "Two story"}]
        client = fake_client(embeddings=FakeEmbeddings(error=RuntimeError("quota")))
        with mock.patch("inboxbrief.config.time.sleep"):
            result = deduplicate_articles(client, rows)
        self.assertEqual(result.unique_articles, rows)
        self.assertEqual(result.removed_count, 0)
        self.assertEqual(client.embeddings.calls, 3)

    def test_cosine_matrix_handles_zero_vectors(self):
        sims = cosine_similarity_matrix(np.array([[1.0, 0.0], [0.0, 0.0]], dtype=np.float32))
        self.assertAlmostEqual(float(sims[0, 0]), 1.0, places=5)
        self.assertEqual(float(sims[1, 1]), 0.0)


if __name__ == "__main__":
    unittest.main()
