"""AI summaries, theme detection and structured insights over persisted articles.

The OpenAI client is injected (an `openai.OpenAI` instance in production, a fake in
tests). Replies that are not valid JSON, or do not match the section schema, are
replaced with fixed fallbacks instead of failing the aggregation.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import openai

from inboxbrief.config import retry_with_backoff
from inboxbrief.contracts.insights import (
    SECTION_ORDER,
    empty_insights,
    fallback_section,
    validate_section,
    validate_themes,
)

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o-mini"
MAX_CONTEXT_ARTICLES = 150


@dataclass(frozen=True)
class SummaryResult:
    summary: str
    article_count: int = 0


@dataclass(frozen=True)
class ThemesResult:
    themes: List[Dict[str, Any]] = field(default_factory=list)
    main_insight: str = ""
    trends: List[str] = field(default_factory=list)


def make_client(api_key: str) -> "openai.OpenAI":
    return openai.OpenAI(api_key=api_key)


def clean_json_response(text: Optional[str]) -> str:
    """Strip a ```json ... ``` fence around a model reply."""
    cleaned = (text or "").strip()
    if cleaned.startswith("```json"):
        cleaned = cleaned[7:]
    elif cleaned.startswith("```"):
        cleaned = cleaned[3:]
    if cleaned.endswith("```"):
        cleaned = cleaned[:-3]
    return cleaned.strip()


def _parse_json(text: Optional[str]) -> Any:
    try:
        return json.loads(clean_json_response(text))
    except ValueError:
        return None


def build_article_context(articles: Sequence[Dict[str, Any]]) -> str:
    parts = []
    for i, a in enumerate(articles[:MAX_CONTEXT_ARTICLES], start=1):
        body = (a.get("summary") or "").strip() or (a.get("content") or "")[:600].strip()
        source = a.get("source_name") or ""
        parts.append(f'[{i}] "{a.get("title", "")}" ({source})\n{body}')
    return "\n\n---\n\n".join(parts)


@retry_with_backoff(max_retries=3, base_delay=2.0)
def _chat(client, model: str, system: str, prompt: str, *, max_tokens: int, temperature: float) -> str:
    response = client.chat.completions.create(
        model=model,
        messages=[
            {"role": "system", "content": system},
            {"role": "user", "content": prompt},
        ],
        temperature=temperature,
        max_tokens=max_tokens,
    )
    return response.choices[0].message.content or ""


def summarize_articles(client, articles: Sequence[Dict[str, Any]], model: str = DEFAULT_MODEL) -> SummaryResult:
    if not articles:
        return SummaryResult(summary="No articles found for this period.", article_count=0)

    prompt = f"""Summarize these {len(articles)} tech/business newsletter articles into a concise briefing.

ARTICLES:
{build_article_context(articles)}

Write 3-5 short paragraphs in markdown covering the most important developments.
Group related stories together and reference concrete names and numbers.
Only use information from the provided articles."""
    text = _chat(
        client,
        model,
        "You are a senior tech analyst writing a weekly newsletter digest. Be concise and factual.",
        prompt,
        max_tokens=1200,
        temperature=0.5,
    )
    return SummaryResult(summary=text.strip(), article_count=len(articles))


def detect_themes_and_insights(client, articles: Sequence[Dict[str, Any]], model: str = DEFAULT_MODEL) -> ThemesResult:
    if not articles:
        return ThemesResult(main_insight="No articles to analyze.")

    prompt = f"""Identify the main themes across these {len(articles)} articles.

ARTICLES:
{build_article_context(articles)}

Respond with ONLY valid JSON (no markdown, no code blocks):
{{
  "themes": [{{"name": "Theme Name", "description": "One sentence", "articleCount": 3}}],
  "mainInsight": "The single most significant development or pattern",
  "trends": ["Short emerging trend"]
}}

Requirements:
- themes: 3-6 themes, each with the number of related articles
- trends: 3-5 short bullet points
- Only use information from the provided articles"""
    text = _chat(
        client,
        model,
        "You are a senior tech analyst identifying themes across news. Return only valid JSON.",
        prompt,
        max_tokens=1000,
        temperature=0.4,
    )
    payload = _parse_json(text)
    errors = validate_themes(payload) if payload is not None else ["invalid JSON"]
    if errors:
        logger.error("Failed to parse themes response: %s", "; ".join(errors[:3]))
        return ThemesResult(main_insight="Multiple developments across the articles this period.")
    return ThemesResult(
        themes=list(payload["themes"]),
        main_insight=payload["mainInsight"],
        trends=list(payload["trends"]),
    )


def format_insights(themes: ThemesResult) -> str:
    """Markdown rendering of a ThemesResult (stored as the legacy insights text)."""
    out = f"**Main Insight:** {themes.main_insight}\n\n"
    if themes.themes:
        out += "**Key Themes:**\n"
        for t in themes.themes:
            out += f"- **{t.get('name')}** ({t.get('articleCount', 0)} articles): {t.get('description', '')}\n"
        out += "\n"
    if themes.trends:
        out += "**Emerging Trends:**\n"
        for trend in themes.trends:
            out += f"- {trend}\n"
    return out


_SECTION_PROMPTS: Dict[str, Dict[str, Any]] = {
    "executiveOverview": {
        "system": "You are a senior tech analyst providing executive briefings. Be concise and insightful. Return only valid JSON.",
        "focus": "an executive overview: the most significant development, the key themes with article counts, and emerging trends",
        "shape": '{"mainInsight": "...", "keyThemes": [{"name": "Theme", "articleCount": 3}], "emergingTrends": ["..."]}',
        "max_tokens": 800,
        "temperature": 0.5,
    },
    "marketMoves": {
        "system": "You are a business analyst tracking market moves and competitive dynamics. Be factual and concise. Return only valid JSON.",
        "focus": "partnerships, acquisitions and investments, leadership changes and competitive positioning",
        "shape": '{"summary": "1-2 sentences", "bullets": ["..."]}',
        "max_tokens": 600,
        "temperature": 0.4,
    },
    "techShifts": {
        "system": "You are a senior systems architect tracking technical evolution. Be precise. Return only valid JSON.",
        "focus": "agent systems, model and system architecture changes, infrastructure and developer tooling",
        "shape": '{"summary": "1-2 sentences", "bullets": ["..."]}',
        "max_tokens": 600,
        "temperature": 0.4,
    },
    "industryImpact": {
        "system": "You are an industry analyst tracking AI adoption across sectors. Return only valid JSON.",
        "focus": "concrete use cases grouped by industry (Healthcare, Finance, Media/Entertainment, Enterprise/B2B, Consumer, Other)",
        "shape": '{"summary": "1-2 sentences", "industries": [{"name": "Healthcare", "bullets": ["..."]}]}',
        "max_tokens": 800,
        "temperature": 0.4,
    },
    "policySignals": {
        "system": "You are a policy analyst tracking regulatory and economic forces in tech. Return only valid JSON.",
        "focus": "regulation, geopolitics and supply chains, labor and economic impact, government initiatives",
        "shape": '{"summary": "1-2 sentences", "bullets": ["..."]}',
        "max_tokens": 600,
        "temperature": 0.4,
    },
}


def _generate_section(client, model: str, name: str, context: str, article_count: int) -> Dict[str, Any]:
    prompt_cfg = _SECTION_PROMPTS[name]
    prompt = f"""Analyze these {article_count} articles for {prompt_cfg['focus']}.

ARTICLES:
{context}

Respond with ONLY valid JSON in this format (no markdown, no code blocks):
{prompt_cfg['shape']}

Only use information from the provided articles; return empty lists when nothing is relevant."""
    try:
        text = _chat(client, model, prompt_cfg["system"], prompt, max_tokens=prompt_cfg["max_tokens"], temperature=prompt_cfg["temperature"])
    except openai.OpenAIError as e:
        logger.error("Insights section %s failed: %s", name, e)
        return fallback_section(name)

    payload = _parse_json(text)
    errors = validate_section(name, payload) if payload is not None else ["invalid JSON"]
    if errors:
        logger.error("Failed to parse %s: %s", name, "; ".join(errors[:3]))
        return fallback_section(name)
    return payload


def generate_structured_insights(
    client, articles: Sequence[Dict[str, Any]], model: str = DEFAULT_MODEL
) -> Dict[str, Any]:
    """Five-section insights payload; each section validated independently."""
    if not articles:
        return empty_insights()
    context = build_article_context(articles)
    return {name: _generate_section(client, model, name, context, len(articles)) for name in SECTION_ORDER}
