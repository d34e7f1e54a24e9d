"""
Task classification and model routing.

Cost/quality trade-off:
  • extraction, price correction, general chat → fast, cheap model
  • cost estimation (pricing rules, knowledge base) → stronger model

Classification prefers the explicit `taskType` tag sent by the UI. When
it is absent the text is sniffed for marker phrases, first match wins in
the order extraction → price correction → cost estimation. The marker
lists are what the packaging calculator UI puts into its prompts, so
treat the sniffed result as a hint, not a guarantee.

The system instructions are Russian because the calculator UI is.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass

from app.schemas.proxy import GenerateRequest
from app.services.best_effort import best_effort

logger = logging.getLogger(__name__)


class TaskType(str, enum.Enum):
    EXTRACTION = "extraction"
    PRICE_CORRECTION = "priceCorrection"
    COST_ESTIMATION = "costEstimation"
    GENERAL = "general"


# ── Marker phrases (order of this tuple is the match order) ─
TASK_MARKERS: tuple[tuple[TaskType, tuple[str, ...]], ...] = (
    (TaskType.EXTRACTION, ("Извлеки параметры", "JSON-массив", "структура:")),
    (TaskType.PRICE_CORRECTION, ("коррекции цены", "уточнением", "correctedPricePerUnit")),
    (
        TaskType.COST_ESTIMATION,
        ("рассчитай стоимость", "примерная стоимость", "база знаний", "правила ценообразования"),
    ),
)

# ── System instructions ─────────────────────────────────────
SYSTEM_INSTRUCTIONS: dict[TaskType, str] = {
    TaskType.GENERAL: (
        "Ты - AI-ассистент для расчета стоимости упаковки. "
        "Отвечай на русском языке. Всегда используй русский язык для общения."
    ),
    TaskType.EXTRACTION: (
        "Ты - AI-ассистент для извлечения параметров заказа упаковки. "
        "Отвечай на русском языке. Всегда возвращай данные в строгом JSON формате."
    ),
    TaskType.PRICE_CORRECTION: (
        "Ты - AI-ассистент для анализа коррекций цены. "
        "Отвечай на русском языке. Всегда возвращай данные в строгом JSON формате."
    ),
    TaskType.COST_ESTIMATION: (
        "Ты - AI-ассистент для расчета стоимости упаковки в Китае. "
        "Отвечай на русском языке. "
        "Используй базу знаний и правила ценообразования для точных расчетов."
    ),
}


def classify_text(text: str) -> TaskType:
    """Pure marker-phrase classification. Case-sensitive substring match."""
    for task, markers in TASK_MARKERS:
        if any(marker in text for marker in markers):
            return task
    return TaskType.GENERAL


@dataclass(frozen=True, slots=True)
class Route:
    """Routing decision for one request."""

    task: TaskType
    model: str
    system_instruction: str


class ModelRouter:
    """Maps a request to (task, model, system instruction)."""

    def __init__(self, fast_model: str, smart_model: str) -> None:
        self.fast_model = fast_model
        self.smart_model = smart_model

    def model_for(self, task: TaskType) -> str:
        if task is TaskType.COST_ESTIMATION:
            return self.smart_model
        return self.fast_model

    @best_effort("task classification", default=TaskType.GENERAL)
    def classify(self, request: GenerateRequest) -> TaskType:
        if request.task_type is not None:
            return TaskType(request.task_type)
        return classify_text(request.flattened_text())

    def route(self, request: GenerateRequest) -> Route:
        task = self.classify(request)
        route = Route(
            task=task,
            model=self.model_for(task),
            system_instruction=SYSTEM_INSTRUCTIONS[task],
        )
        logger.debug("Routed request: task=%s model=%s", route.task.value, route.model)
        return route
