"""
Pydantic v2 schemas for the proxy's public wire format.

The body is Gemini-shaped (contents → parts → text) even though the
upstream speaks OpenAI-style chat completions; llm_client translates.

Separation:
  • GenerateRequest  — what the CLIENT sends (checked by validators first,
    then parsed here into typed objects).
  • GenerateResponse — what the PROXY returns on success.
  • ErrorResponse    — documented shape of every non-2xx body.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


# ── Request schema ──────────────────────────────────────────
class Part(BaseModel):
    model_config = ConfigDict(extra="ignore")

    text: str


class Content(BaseModel):
    model_config = ConfigDict(extra="ignore")

    role: str | None = None
    parts: list[Part] = Field(..., min_length=1, max_length=50)


class GenerationConfig(BaseModel):
    """Caller-tunable generation parameters. All optional."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    temperature: float | None = Field(default=None, ge=0, le=2)
    max_tokens: int | None = Field(default=None, ge=1, le=100_000)
    response_mime_type: Literal["application/json", "text/plain", "text/html"] | None = Field(
        default=None,
        alias="responseMimeType",
    )


class GenerateRequest(BaseModel):
    """
    Body accepted by POST /.

    taskType is optional: when the UI knows what it is asking for it
    should say so instead of relying on marker phrases in the text.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    contents: list[Content] = Field(..., min_length=1, max_length=10)
    generation_config: GenerationConfig | None = Field(default=None, alias="generationConfig")
    system_instruction: str | None = Field(
        default=None,
        max_length=10_000,
        alias="systemInstruction",
    )
    task_type: Literal["extraction", "priceCorrection", "costEstimation", "general"] | None = Field(
        default=None,
        alias="taskType",
    )

    def texts(self) -> list[str]:
        """Every part's text, in order."""
        return [part.text for content in self.contents for part in content.parts]

    def flattened_text(self) -> str:
        """All texts joined into the single user turn sent upstream."""
        return "\n\n".join(self.texts())


# ── Response schema ─────────────────────────────────────────
class ResponsePart(BaseModel):
    text: str


class ResponseContent(BaseModel):
    parts: list[ResponsePart]


class Candidate(BaseModel):
    content: ResponseContent


class UsageMetadata(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    prompt_token_count: int = Field(default=0, alias="promptTokenCount")
    candidates_token_count: int = Field(default=0, alias="candidatesTokenCount")


class GenerateResponse(BaseModel):
    """Success body: candidates[0].content.parts[0].text carries the model output."""

    model_config = ConfigDict(populate_by_name=True)

    candidates: list[Candidate]
    usage: UsageMetadata

    @classmethod
    def from_text(cls, text: str, prompt_tokens: int, completion_tokens: int) -> GenerateResponse:
        return cls(
            candidates=[Candidate(content=ResponseContent(parts=[ResponsePart(text=text)]))],
            usage=UsageMetadata(
                prompt_token_count=prompt_tokens,
                candidates_token_count=completion_tokens,
            ),
        )

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


# ── Error schema ────────────────────────────────────────────
class ErrorDetail(BaseModel):
    code: int
    message: str
    details: dict[str, Any] = Field(default_factory=dict)


class ErrorResponse(BaseModel):
    error: ErrorDetail


class HealthResponse(BaseModel):
    status: str
    timestamp: str
    service: str
    version: str
