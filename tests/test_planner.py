"""Tests for plan extraction and the analysis pass."""

from __future__ import annotations

import pytest

from receptionist.engine.models import PlannedAction
from receptionist.engine.planner import (
    PlanExtractor,
    extract_plan,
    find_dates,
    find_services,
    find_times,
    looks_actionable,
)
from receptionist.profile import DEFAULT_SERVICES

# ── Token matching ───────────────────────────────────────────────────


class TestFindTimes:
    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            ("às 14h", ["14:00"]),
            ("14:30", ["14:30"]),
            ("14.30", ["14:30"]),
            ("9h30", ["09:30"]),
            ("às 9h e às 16h", ["09:00", "16:00"]),
        ],
    )
    def test_normalises_to_hh_mm(self, text, expected):
        assert find_times(text) == expected

    def test_ignores_dates_and_plain_numbers(self):
        assert find_times("dia 10/05/2025, 2 pessoas") == []

    @pytest.mark.parametrize("text", ["R$ 15.00", "R$15.00", "por R$ 20.30 reais"])
    def test_ignores_prices(self, text):
        assert find_times(text) == []


class TestFindDates:
    def test_relative_tokens(self):
        assert find_dates("hoje ou amanhã") == ["today", "tomorrow"]

    def test_numeric_dates_become_iso(self):
        assert find_dates("em 2025-05-20 ou 21/05/2025") == ["2025-05-20", "2025-05-21"]

    def test_invalid_calendar_date_is_skipped(self):
        assert find_dates("31/02/2025") == []


class TestFindServices:
    def test_alias_maps_to_canonical_name(self):
        assert find_services("quero cortar o cabelo", DEFAULT_SERVICES) == ["Corte de Cabelo"]

    def test_longest_match_wins(self):
        assert find_services("um Corte + Barba", DEFAULT_SERVICES) == ["Corte + Barba"]

    def test_order_of_appearance_kept(self):
        text = "Serviço: Barba às 10h; Serviço: Corte de Cabelo às 11h"
        assert find_services(text, DEFAULT_SERVICES) == ["Barba", "Corte de Cabelo"]


# ── extract_plan ─────────────────────────────────────────────────────


class TestExtractPlan:
    def test_single_booking_request(self):
        plan = extract_plan("quero cortar o cabelo amanhã às 14h", DEFAULT_SERVICES)
        assert plan == [PlannedAction(service="Corte de Cabelo", time="14:00", date="tomorrow")]

    def test_pairs_by_position_and_truncates(self):
        analysis = "1. Barba 10:00\n2. Design de Sobrancelhas 10:30\n3. Corte de Cabelo"
        plan = extract_plan(analysis, DEFAULT_SERVICES)
        assert [(a.service, a.time) for a in plan] == [
            ("Barba", "10:00"),
            ("Design de Sobrancelhas", "10:30"),
        ]

    def test_prices_do_not_shift_pairing(self):
        analysis = (
            "1. Serviço: Barba (R$ 15.00), Horário: 10:00\n"
            "2. Serviço: Corte de Cabelo (R$ 20.00), Horário: 11:00"
        )
        plan = extract_plan(analysis, DEFAULT_SERVICES)
        assert [(a.service, a.time) for a in plan] == [("Barba", "10:00"), ("Corte de Cabelo", "11:00")]

    def test_single_explicit_date_is_used(self):
        plan = extract_plan("Barba às 15h em 2025-06-01", DEFAULT_SERVICES)
        assert plan[0].date == "2025-06-01"

    def test_several_dates_fall_back_to_tomorrow(self):
        plan = extract_plan("Barba hoje às 15h e Corte de Cabelo em 2025-06-01 às 16h", DEFAULT_SERVICES)
        assert {a.date for a in plan} == {"tomorrow"}

    def test_repeated_same_date_counts_once(self):
        plan = extract_plan("Barba hoje às 15h, Corte de Cabelo hoje às 16h", DEFAULT_SERVICES)
        assert {a.date for a in plan} == {"today"}

    def test_empty_or_unrelated_text_gives_empty_plan(self):
        assert extract_plan("", DEFAULT_SERVICES) == []
        assert extract_plan("Bom dia, tudo bem?", DEFAULT_SERVICES) == []

    def test_no_services_configured(self):
        assert extract_plan("Barba às 15h", ()) == []

    def test_internal_error_gives_empty_plan(self, monkeypatch):
        import receptionist.engine.planner as planner

        def boom(*_args, **_kwargs):
            raise RuntimeError("regex exploded")

        monkeypatch.setattr(planner, "find_times", boom)
        assert extract_plan("Barba às 15h", DEFAULT_SERVICES) == []


class TestLooksActionable:
    def test_greeting_is_not_actionable(self):
        assert looks_actionable("oi, tudo bem?", DEFAULT_SERVICES) is False

    @pytest.mark.parametrize("message", ["quero marcar", "barba amanhã", "às 15h", "cancelar meu horário"])
    def test_booking_cues_are_actionable(self, message):
        assert looks_actionable(message, DEFAULT_SERVICES) is True


# ── Analysis pass ────────────────────────────────────────────────────


class TestPlanExtractor:
    @pytest.mark.asyncio
    async def test_runs_deterministic_analysis(self, scripted_model, fixed_now):
        analysis = "- Ações:\n  1. Serviço: Corte de Cabelo, Horário: 14:00, Data: amanhã"
        invoker, model = scripted_model(analysis)
        text, plan = await PlanExtractor(invoker).analyze(
            "quero cortar o cabelo amanhã às 14h", [], DEFAULT_SERVICES, fixed_now,
        )
        assert text == analysis
        assert plan == [PlannedAction("Corte de Cabelo", "14:00", "tomorrow")]
        assert model.calls[0].sampling.temperature == 0.0
        assert model.calls[0].tools is None

    @pytest.mark.asyncio
    async def test_skipped_for_non_actionable_message(self, scripted_model, fixed_now):
        invoker, model = scripted_model()
        assert await PlanExtractor(invoker).analyze("obrigado!", [], DEFAULT_SERVICES, fixed_now) == ("", [])
        assert model.calls == []

    @pytest.mark.asyncio
    async def test_disabled_extractor_makes_no_call(self, scripted_model, fixed_now):
        invoker, model = scripted_model()
        result = await PlanExtractor(invoker, enabled=False).analyze("barba às 15h", [], DEFAULT_SERVICES, fixed_now)
        assert result == ("", [])
        assert model.calls == []

    @pytest.mark.asyncio
    async def test_engine_failure_gives_empty_plan_and_no_scratch(self, scripted_model, fixed_now):
        invoker, _ = scripted_model(ConnectionError("down"))
        assert await PlanExtractor(invoker).analyze("barba às 15h", [], DEFAULT_SERVICES, fixed_now) == ("", [])
