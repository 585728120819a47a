"""End-to-end tests for the turn coordinator (scripted model, fake stores)."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest
from conftest import ai_tool, answer_json

from receptionist.engine.coordinator import TurnCoordinator
from receptionist.engine.models import ChatEntry, Session, session_key_for
from receptionist.engine.planner import PlanExtractor
from receptionist.engine.reviewer import ConsistencyReviewer
from receptionist.profile import DEFAULT_PROFILE
from receptionist.services.session_store import InMemorySessionStore
from receptionist.tools.registry import build_default_registry

BUSINESS = "acme"
USER = "5522999990000"
KEY = session_key_for(BUSINESS, USER)


@pytest.fixture
def send_reply():
    return AsyncMock()


@pytest.fixture
def sessions():
    return InMemorySessionStore()


@pytest.fixture
def make_coordinator(scripted_model, record_store, sessions, send_reply, fixed_now):
    """``make_coordinator(*responses, review=False)`` → ``(coordinator, model)``."""

    def _make(*responses, review: bool = False, session_store=None):
        invoker, model = scripted_model(*responses)
        coordinator = TurnCoordinator(
            invoker,
            build_default_registry(),
            session_store or sessions,
            send_reply,
            record_store=record_store,
            planner=PlanExtractor(invoker, enabled=True),
            reviewer=ConsistencyReviewer(invoker, max_regenerations=1, review_enabled=review),
            clock=lambda: fixed_now,
        )
        return coordinator, model

    return _make


def _history(n: int) -> list[ChatEntry]:
    return [ChatEntry(role="user" if i % 2 == 0 else "assistant", content=f"m{i}", timestamp=i) for i in range(n)]


# ── Happy path ───────────────────────────────────────────────────────


class TestFullTurn:
    @pytest.mark.asyncio
    async def test_single_booking(self, make_coordinator, send_reply, sessions, record_store):
        reply = "Pronto! Seu corte está agendado para amanhã às 14:00."
        coordinator, model = make_coordinator(
            "- Ações:\n  1. Serviço: Corte de Cabelo, Horário: 14:00, Data: amanhã",
            ai_tool("createAppointment", {"serviceName": "Corte de Cabelo", "date": "amanhã", "time": "14:00"}),
            answer_json(reply, mentioned_slots=["14:00"], booked_slots=["14:00"]),
            "APPROVED",
            review=True,
        )

        result = await coordinator.handle_message(BUSINESS, USER, "quero cortar o cabelo amanhã às 14h")

        assert result.answer.text == reply
        assert result.answer.metadata.booked_slots == ["14:00"]
        assert [a.service for a in result.plan] == ["Corte de Cabelo"]
        assert result.iterations == 2
        send_reply.assert_awaited_once_with(BUSINESS, USER, reply)
        record_store.create_appointment.assert_awaited_once()
        assert record_store.create_appointment.await_args.args[3:] == ("2025-05-14", "14:00")
        assert len(model.calls) == 4

        saved = await sessions.get(KEY)
        assert [e.role for e in saved.history] == ["user", "assistant"]
        assert saved.history[1].metadata["booked_slots"] == ["14:00"]
        assert saved.created_actions[0].tool_name == "createAppointment"

    @pytest.mark.asyncio
    async def test_analysis_reaches_dispatch_prompt(self, make_coordinator):
        coordinator, model = make_coordinator(
            "1. Serviço: Barba, Horário: 10:00",
            answer_json("Qual dia?"),
        )
        await coordinator.handle_message(BUSINESS, USER, "quero fazer a barba às 10h")
        dispatch_system = model.calls[1].messages[0].content
        assert "PRELIMINARY ANALYSIS" in dispatch_system
        assert "Serviço: Barba" in dispatch_system

    @pytest.mark.asyncio
    async def test_admin_turn_sees_privileged_tools(self, make_coordinator):
        coordinator, model = make_coordinator(answer_json("Olá, admin!"))
        await coordinator.handle_message(BUSINESS, USER, "oi", privileged=True)
        assert any(t["name"] == "admin_updatePrompt" for t in model.calls[0].tools)


# ── Session handling ─────────────────────────────────────────────────


class TestSession:
    @pytest.mark.asyncio
    async def test_prompt_uses_latest_ten_and_session_keeps_twenty(self, make_coordinator, sessions):
        await sessions.set(KEY, Session(session_key=KEY, history=_history(25)))
        coordinator, model = make_coordinator(answer_json("De nada!"))

        await coordinator.handle_message(BUSINESS, USER, "obrigado!")

        messages = model.calls[0].messages
        assert len(messages) == 12
        assert messages[1].content == "m15"
        saved = await sessions.get(KEY)
        assert len(saved.history) == 20
        assert saved.history[-2].content == "obrigado!"
        assert saved.history[-1].content == "De nada!"

    @pytest.mark.asyncio
    async def test_session_load_failure_degrades_to_fresh_session(self, make_coordinator, send_reply):
        store = MagicMock()
        store.get = AsyncMock(side_effect=ConnectionError("redis down"))
        store.set = AsyncMock()
        coordinator, model = make_coordinator(answer_json("Olá!"), session_store=store)

        result = await coordinator.handle_message(BUSINESS, USER, "oi")

        assert result.answer.text == "Olá!"
        assert len(model.calls[0].messages) == 2
        send_reply.assert_awaited_once()
        saved = store.set.await_args.args[1]
        assert len(saved.history) == 2
        assert store.set.await_args.args[2] == 7200

    @pytest.mark.asyncio
    async def test_session_save_failure_still_replies(self, make_coordinator, send_reply):
        store = MagicMock()
        store.get = AsyncMock(return_value=None)
        store.set = AsyncMock(side_effect=ConnectionError("redis down"))
        coordinator, _ = make_coordinator(answer_json("Olá!"), session_store=store)

        result = await coordinator.handle_message(BUSINESS, USER, "oi")

        assert result.answer.text == "Olá!"
        send_reply.assert_awaited_once_with(BUSINESS, USER, "Olá!")


# ── Degraded turns ───────────────────────────────────────────────────


class TestDegradedTurns:
    @pytest.mark.asyncio
    async def test_partial_booking_is_rewritten_and_not_reviewed(self, make_coordinator, record_store, send_reply):
        record_store.create_appointment.side_effect = [
            {"appointment_id": "apt-1"},
            {"error": "Horário indisponível"},
        ]
        coordinator, model = make_coordinator(
            "1. Serviço: Barba, Horário: 10:00\n2. Serviço: Corte de Cabelo, Horário: 11:00, Data: amanhã",
            ai_tool("createAppointment", {"serviceName": "Barba", "date": "amanhã", "time": "10:00"}, "c1"),
            ai_tool("createAppointment", {"serviceName": "Corte de Cabelo", "date": "amanhã", "time": "11:00"}, "c2"),
            answer_json("Agendei tudo!", booked_slots=["10:00", "11:00"]),
            review=True,
        )

        result = await coordinator.handle_message(BUSINESS, USER, "barba às 10h e corte às 11h amanhã")

        assert result.answer.text.startswith("Consegui agendar Barba às 10:00.")
        assert "Corte de Cabelo às 11:00" in result.answer.text
        assert result.answer.metadata.booked_slots == ["10:00"]
        assert len(model.calls) == 4
        send_reply.assert_awaited_once_with(BUSINESS, USER, result.answer.text)

    @pytest.mark.asyncio
    async def test_engine_failure_sends_apology(self, make_coordinator, send_reply):
        coordinator, model = make_coordinator(ConnectionError("anthropic down"), review=True)

        result = await coordinator.handle_message(BUSINESS, USER, "oi")

        assert result.answer.text == DEFAULT_PROFILE.apology_message
        assert result.answer.metadata.confidence == 0.0
        assert len(model.calls) == 1
        send_reply.assert_awaited_once_with(BUSINESS, USER, DEFAULT_PROFILE.apology_message)

    @pytest.mark.asyncio
    async def test_engine_failure_after_booking_confirms_it(self, make_coordinator, send_reply):
        coordinator, model = make_coordinator(
            "1. Serviço: Corte de Cabelo, Horário: 14:00, Data: amanhã",
            ai_tool("createAppointment", {"serviceName": "Corte de Cabelo", "date": "amanhã", "time": "14:00"}),
            ConnectionError("provider down"),
            review=True,
        )

        result = await coordinator.handle_message(BUSINESS, USER, "quero cortar o cabelo amanhã às 14h")

        assert result.answer.text.startswith("Consegui agendar Corte de Cabelo às 14:00.")
        assert result.answer.text != DEFAULT_PROFILE.apology_message
        assert result.answer.metadata.booked_slots == ["14:00"]
        assert len(model.calls) == 3
        send_reply.assert_awaited_once_with(BUSINESS, USER, result.answer.text)

    @pytest.mark.asyncio
    async def test_engine_failure_after_unplanned_booking_confirms_it(self, make_coordinator, send_reply):
        coordinator, _ = make_coordinator(
            ai_tool("createAppointment", {"serviceName": "Barba", "date": "amanhã", "time": "10:00"}),
            ConnectionError("provider down"),
        )

        result = await coordinator.handle_message(BUSINESS, USER, "oi")

        assert result.plan == []
        assert result.answer.text.startswith("Consegui agendar Barba às 10:00.")
        send_reply.assert_awaited_once_with(BUSINESS, USER, result.answer.text)

    @pytest.mark.asyncio
    async def test_unexpected_crash_still_replies_once(self, make_coordinator, send_reply):
        coordinator, _ = make_coordinator()
        coordinator._dispatcher = MagicMock()
        coordinator._dispatcher.run = AsyncMock(side_effect=RuntimeError("bug"))

        result = await coordinator.handle_message(BUSINESS, USER, "oi")

        assert result.answer.text == DEFAULT_PROFILE.apology_message
        send_reply.assert_awaited_once_with(BUSINESS, USER, DEFAULT_PROFILE.apology_message)

    @pytest.mark.asyncio
    async def test_delivery_failure_is_contained(self, make_coordinator, send_reply):
        send_reply.side_effect = RuntimeError("gateway down")
        coordinator, _ = make_coordinator(answer_json("Olá!"))

        result = await coordinator.handle_message(BUSINESS, USER, "oi")

        assert result.answer.text == "Olá!"
        send_reply.assert_awaited_once()
