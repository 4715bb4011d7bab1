"""
Report generation backends.

``GeminiReportGenerator`` calls Google's Gemini models through the google-genai
async client. ``TemplateReportGenerator`` renders a deterministic report from the
same inputs without any network access; it backs the demo command and the test
suite. Both honour the ``ReportGenerator`` contract.
"""

from __future__ import annotations

import json
from typing import Any, Dict, Optional

import httpx
from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from cryptoanalyst.adapters.abstract import MarketContext
from cryptoanalyst.domain.models import AnalysisCategory, AnalysisParameters
from cryptoanalyst.errors import GenerationUnavailable
from cryptoanalyst.utils.logging import get_logger

log = get_logger(__name__)

CATEGORY_SECTIONS: Dict[AnalysisCategory, tuple[str, ...]] = {
    AnalysisCategory.BASIC_OVERVIEW: (
        "Current price and market cap summary",
        "24h/7d/30d performance analysis",
        "Key support and resistance levels",
        "Overall market sentiment",
        "Risk assessment (1-10 scale)",
        "Short-term outlook (1-4 weeks)",
        "Actionable recommendations",
    ),
    AnalysisCategory.TECHNICAL_ANALYSIS: (
        "Chart pattern analysis",
        "Moving averages (SMA, EMA) analysis",
        "RSI, MACD, and momentum indicators",
        "Volume analysis",
        "Fibonacci retracement levels",
        "Entry/exit point recommendations",
        "Stop-loss and take-profit levels",
        "Risk/reward ratio assessment",
    ),
    AnalysisCategory.FUNDAMENTAL_ANALYSIS: (
        "Project fundamentals and technology assessment",
        "Team and development activity analysis",
        "Tokenomics and supply dynamics",
        "Partnerships and ecosystem growth",
        "Competitive landscape analysis",
        "Regulatory considerations",
        "Long-term value proposition",
        "Investment thesis and conviction level",
    ),
    AnalysisCategory.PORTFOLIO_REVIEW: (
        "Portfolio composition analysis",
        "Diversification assessment",
        "Risk distribution across assets",
        "Correlation analysis between holdings",
        "Rebalancing recommendations",
        "Position sizing optimization",
        "Performance attribution",
        "Future allocation suggestions",
    ),
    AnalysisCategory.MARKET_SENTIMENT: (
        "Social media sentiment analysis",
        "News sentiment and media coverage",
        "On-chain activity patterns",
        "Institutional interest indicators",
        "Fear & Greed index interpretation",
        "Market psychology assessment",
        "Contrarian vs. trend-following signals",
        "Sentiment-based trading opportunities",
    ),
    AnalysisCategory.DEFI_OPPORTUNITIES: (
        "DeFi protocol analysis and opportunities",
        "Yield farming strategies",
        "Liquidity mining programs",
        "Staking rewards analysis",
        "Impermanent loss calculations",
        "Smart contract risk assessment",
        "APY sustainability analysis",
        "Portfolio DeFi allocation recommendations",
    ),
}

CATEGORY_CLOSING: Dict[AnalysisCategory, str] = {
    AnalysisCategory.BASIC_OVERVIEW: (
        "Format as a professional investment report with clear sections and bullet points."
    ),
    AnalysisCategory.TECHNICAL_ANALYSIS: "Include specific price targets and timeframes.",
    AnalysisCategory.FUNDAMENTAL_ANALYSIS: "Provide a comprehensive fundamental score (1-100).",
    AnalysisCategory.PORTFOLIO_REVIEW: (
        "Include specific percentage allocations and rebalancing strategy."
    ),
    AnalysisCategory.MARKET_SENTIMENT: (
        "Provide sentiment score (-100 to +100) and implications."
    ),
    AnalysisCategory.DEFI_OPPORTUNITIES: "Include specific protocols, APYs, and risk ratings.",
}


def _dump(value: Any) -> str:
    return json.dumps(value, indent=2, sort_keys=True, default=str)


def build_analysis_prompt(
    category: AnalysisCategory,
    market_context: MarketContext,
    parameters: AnalysisParameters,
) -> str:
    """Compose the generation prompt for one category."""
    sections = "\n".join(
        f"{index}. {section}"
        for index, section in enumerate(CATEGORY_SECTIONS[category], start=1)
    )
    return (
        "You are CryptoAnalyst AI, a professional cryptocurrency investment analysis service.\n"
        f"Generate a comprehensive {category.value} report based on the following data:\n\n"
        f"CRYPTO DATA:\n{_dump(market_context.get('crypto', {}))}\n\n"
        f"MARKET DATA:\n{_dump(market_context.get('market', {}))}\n\n"
        f"USER PARAMETERS:\n{_dump(parameters.model_dump(exclude_none=True))}\n\n"
        "Please provide a detailed, professional analysis including:\n"
        f"{sections}\n\n"
        f"{CATEGORY_CLOSING[category]}\n"
    )


def build_summary_prompt(text: str) -> str:
    return (
        "Based on the following comprehensive cryptocurrency analysis, generate a concise "
        "executive summary in 3-4 sentences that captures the key insights and "
        "recommendations:\n\n"
        f"FULL ANALYSIS:\n{text}\n\nEXECUTIVE SUMMARY:\n"
    )


class GeminiReportGenerator:
    """Gemini-backed generator; a heavier model writes, a lighter one summarizes."""

    name: str = "gemini"

    def __init__(
        self,
        api_key: Optional[str],
        analysis_model: str,
        summary_model: str,
        client: Optional[genai.Client] = None,
    ) -> None:
        self._api_key = api_key
        self._client = client
        self.analysis_model = analysis_model
        self.summary_model = summary_model

    @property
    def client(self) -> genai.Client:
        if self._client is None:
            self._client = genai.Client(api_key=self._api_key)
        return self._client

    async def _complete(self, model: str, prompt: str, max_tokens: int) -> str:
        try:
            response = await self.client.aio.models.generate_content(
                model=model,
                contents=prompt,
                config=types.GenerateContentConfig(
                    temperature=0.1,
                    top_p=0.9,
                    max_output_tokens=max_tokens,
                ),
            )
        except (genai_errors.APIError, httpx.HTTPError) as exc:
            raise GenerationUnavailable(f"{model} request failed", model=model) from exc
        text = (response.text or "").strip()
        if not text:
            raise GenerationUnavailable(f"{model} returned an empty response", model=model)
        return text

    async def generate(
        self,
        category: AnalysisCategory,
        market_context: MarketContext,
        parameters: AnalysisParameters,
    ) -> str:
        prompt = build_analysis_prompt(category, market_context, parameters)
        text = await self._complete(self.analysis_model, prompt, max_tokens=4000)
        log.info(
            "[REPORT GENERATED]",
            extra={"category": category.value, "model": self.analysis_model, "chars": len(text)},
        )
        return text

    async def summarize(self, text: str) -> str:
        return await self._complete(self.summary_model, build_summary_prompt(text), max_tokens=200)


class TemplateReportGenerator:
    """
    Deterministic generator rendering the category outline with live numbers.

    Used for demos and tests; produces the same text for the same inputs.
    """

    name: str = "template"

    async def generate(
        self,
        category: AnalysisCategory,
        market_context: MarketContext,
        parameters: AnalysisParameters,
    ) -> str:
        crypto = market_context.get("crypto", {})
        market = market_context.get("market", {})
        lines = [
            f"# {category.value.replace('_', ' ').title()}: {parameters.symbol}",
            "",
            f"Price: {crypto.get('price', 'n/a')} USD | Rank: {crypto.get('rank', 'n/a')}",
            f"24h change: {crypto.get('change_24h', 'n/a')}% | "
            f"7d change: {crypto.get('change_7d', 'n/a')}%",
            f"Total market cap: {market.get('total_market_cap', 'n/a')} | "
            f"Fear & Greed: {market.get('fear_greed_index', 'n/a')}",
            "",
        ]
        for index, section in enumerate(CATEGORY_SECTIONS[category], start=1):
            lines.append(f"{index}. {section}: assessment for {parameters.symbol}.")
        if parameters.risk_tolerance:
            lines.append(f"\nCalibrated for {parameters.risk_tolerance} risk tolerance.")
        lines.append("")
        lines.append(CATEGORY_CLOSING[category])
        return "\n".join(lines)

    async def summarize(self, text: str) -> str:
        headline = text.splitlines()[0].lstrip("# ").strip() if text else ""
        return f"Executive summary: {headline}. See the full report for details."


__all__ = [
    "CATEGORY_SECTIONS",
    "build_analysis_prompt",
    "build_summary_prompt",
    "GeminiReportGenerator",
    "TemplateReportGenerator",
]
