"""
Tests for task classification and model routing.
"""
import pytest

from app.schemas.proxy import GenerateRequest
from app.services.model_router import (
    SYSTEM_INSTRUCTIONS,
    TASK_MARKERS,
    ModelRouter,
    TaskType,
    classify_text,
)


def _request(text: str, task_type: str | None = None) -> GenerateRequest:
    body = {"contents": [{"parts": [{"text": text}]}]}
    if task_type is not None:
        body["taskType"] = task_type
    return GenerateRequest.model_validate(body)


class TestClassifyText:
    """Marker-phrase sniffing."""

    @pytest.mark.parametrize(
        "task, marker",
        [(task, marker) for task, markers in TASK_MARKERS for marker in markers],
    )
    def test_every_marker_selects_its_task(self, task, marker):
        assert classify_text(f"Пожалуйста, {marker} для заказа") is task

    def test_no_marker_is_general(self):
        assert classify_text("Сколько стоит доставка?") is TaskType.GENERAL
        assert classify_text("") is TaskType.GENERAL

    def test_match_is_case_sensitive(self):
        assert classify_text("извлеки параметры") is TaskType.GENERAL

    def test_extraction_wins_over_later_classes(self):
        text = "Извлеки параметры и рассчитай стоимость, учитывая коррекции цены"
        assert classify_text(text) is TaskType.EXTRACTION

    def test_price_correction_wins_over_cost_estimation(self):
        text = "Ответ с уточнением: рассчитай стоимость"
        assert classify_text(text) is TaskType.PRICE_CORRECTION


class TestModelRouter:
    """Routing decisions."""

    def test_only_cost_estimation_uses_the_smart_model(self, router):
        assert router.model_for(TaskType.COST_ESTIMATION) == router.smart_model
        for task in (TaskType.EXTRACTION, TaskType.PRICE_CORRECTION, TaskType.GENERAL):
            assert router.model_for(task) == router.fast_model

    def test_route_carries_system_instruction(self, router):
        route = router.route(_request("Используй база знаний, рассчитай стоимость"))
        assert route.task is TaskType.COST_ESTIMATION
        assert route.model == router.smart_model
        assert route.system_instruction == SYSTEM_INSTRUCTIONS[TaskType.COST_ESTIMATION]

    def test_explicit_task_type_overrides_markers(self, router):
        route = router.route(_request("Извлеки параметры заказа", task_type="general"))
        assert route.task is TaskType.GENERAL
        assert route.model == router.fast_model

    def test_markers_in_later_parts_are_seen(self, router):
        request = GenerateRequest.model_validate(
            {
                "contents": [
                    {"parts": [{"text": "Контекст заказа"}]},
                    {"parts": [{"text": "Верни correctedPricePerUnit"}]},
                ]
            }
        )
        assert router.classify(request) is TaskType.PRICE_CORRECTION

    def test_classification_failure_falls_back_to_general(self, router, monkeypatch):
        def explode(_text):
            raise RuntimeError("boom")

        monkeypatch.setattr("app.services.model_router.classify_text", explode)
        route = router.route(_request("Извлеки параметры"))
        assert route.task is TaskType.GENERAL
        assert route.model == router.fast_model

    def test_every_task_has_an_instruction(self):
        assert set(SYSTEM_INSTRUCTIONS) == set(TaskType)
        assert isinstance(ModelRouter("a", "b").route(_request("hi")).system_instruction, str)
