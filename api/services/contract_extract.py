from __future__ import annotations

import base64
from datetime import date
from typing import Literal

import openai
from instructor import from_openai
from instructor.core import InstructorRetryException
from pydantic import BaseModel, Field, ValidationError

from ..config import settings
from .exceptions import ExtractorError, ExtractorTimeoutError
from .parse_pdf import extract_text_from_pdf

MAX_TEXT_CHARS = 24000


class ContractParty(BaseModel):
    name: str
    role: str | None = None


class ContractRisk(BaseModel):
    title: str
    severity: Literal["low", "medium", "high"] = "medium"
    description: str


class ContractAnalysis(BaseModel):
    contract_type: str
    provider: str | None = None
    summary: str
    parties: list[ContractParty] = Field(default_factory=list)
    monthly_cost: float | None = Field(default=None, ge=0)
    currency: str | None = None
    start_date: date | None = None
    end_date: date | None = None
    minimum_term_months: int | None = Field(default=None, ge=0)
    notice_period: str | None = None
    notice_deadline: date | None = None
    auto_renewal: bool | None = None
    key_terms: list[str] = Field(default_factory=list)
    risks: list[ContractRisk] = Field(default_factory=list)
    savings_potential: str | None = None
    confidence: float = Field(default=0.5, ge=0, le=1)


SYSTEM = (
    "You are a consumer contract analyst. Read the contract and extract its commercial terms, "
    "deadlines and risks for the customer into structured JSON. Use null when a value is not stated."
)


USER_TMPL = """Contract file: {filename}
---
{excerpt}
---
Return contract_type (energy/mobile/internet/insurance/rental/employment/subscription/other),
provider, a 2-3 sentence summary, parties, monthly_cost and currency, start_date, end_date,
minimum_term_months, notice_period as written, notice_deadline (ISO date by which notice must be
given, if derivable), auto_renewal, key_terms, risks (title, severity, description),
savings_potential and confidence (0.0..1.0).
"""


class ContractExtractor:
    """Turns raw document bytes into a ContractAnalysis.

    Implementations raise ExtractorError (or ExtractorTimeoutError) on any
    failure of the underlying service.
    """

    def extract(self, content: bytes, filename: str, content_type: str) -> ContractAnalysis:  # pragma: no cover - interface
        raise NotImplementedError


class OpenAIContractExtractor(ContractExtractor):
    def __init__(self, model: str | None = None, timeout_seconds: float | None = None) -> None:
        self.model = model or settings.openai_model
        self.timeout_seconds = timeout_seconds if timeout_seconds is not None else settings.extractor_timeout_seconds
        self._client = None

    @property
    def client(self):
        if self._client is None:
            # retries happen through reanalyze, never inside one call
            self._client = from_openai(openai.OpenAI(timeout=self.timeout_seconds, max_retries=0))
        return self._client

    def _messages(self, content: bytes, filename: str, content_type: str) -> list[dict]:
        if content_type == "application/pdf":
            text = extract_text_from_pdf(content)
            if not text:
                raise ExtractorError("No readable text found in PDF.")
            return [
                {"role": "system", "content": SYSTEM},
                {"role": "user", "content": USER_TMPL.format(filename=filename, excerpt=text[:MAX_TEXT_CHARS])},
            ]

        encoded = base64.b64encode(content).decode("ascii")
        media_type = "image/jpeg" if content_type == "image/jpg" else content_type
        return [
            {"role": "system", "content": SYSTEM},
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": USER_TMPL.format(filename=filename, excerpt="(see attached image)")},
                    {"type": "image_url", "image_url": {"url": f"data:{media_type};base64,{encoded}"}},
                ],
            },
        ]

    def extract(self, content: bytes, filename: str, content_type: str) -> ContractAnalysis:
        messages = self._messages(content, filename, content_type)
        try:
            return self.client.chat.completions.create(
                model=self.model,
                response_model=ContractAnalysis,
                messages=messages,
                temperature=0.1,
            )
        except openai.APITimeoutError as exc:
            raise ExtractorTimeoutError(f"Extractor timed out: {exc}") from exc
        except (openai.OpenAIError, InstructorRetryException, ValidationError) as exc:
            raise ExtractorError(f"Extractor call failed: {exc}") from exc


def get_contract_extractor() -> ContractExtractor:
    return OpenAIContractExtractor()
