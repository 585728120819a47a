"""Salon Receptionist — a WhatsApp booking assistant for salons and barbershops.

Architecture Overview
=====================

Each inbound message is one **turn**, run by the ``TurnCoordinator`` as a
linear LangGraph ``StateGraph``:

    compose → plan → dispatch → validate → review → persist

1. **compose** — Loads the session and the business profile and builds an
   immutable prompt context: persona, services, the current date/time in the
   business time zone, the JSON answer schema and the latest 10 messages.

2. **plan** — A deterministic analysis call spells out every action the
   customer asked for; ``extract_plan`` pattern-matches it into
   ``PlannedAction`` hints (service, time, date).

3. **dispatch** — A bounded model ↔ tool loop.  Tools come from a registry
   (name → handler + schema + privilege).  Planned actions that were not
   attempted yet are re-injected as an explicit instruction.

4. **validate** — The draft is parsed into a ``FinalAnswer`` (one repair
   call, then a deterministic fallback) and reconciled with the bookings that
   actually succeeded.

5. **review** — Offered times are checked against the availability the
   tools reported; an optional LLM pass approves or corrects the text.

6. **persist** — The exchange is appended to the session (latest 20 messages,
   latest 10 actions, 2 h TTL), then the reply is sent exactly once.

Package Structure
-----------------
- ``receptionist/engine/`` — the orchestration stages and their data model
- ``receptionist/tools/`` — tool registry and handlers (booking, business info, admin)
- ``receptionist/services/`` — record store, session store, messaging, cache, metrics
- ``receptionist/prompts.py`` — prompt composer and stage instructions
- ``receptionist/profile.py`` — business persona configuration
- ``receptionist/config.py`` — configuration from environment / SSM
- ``receptionist/server.py`` — FastAPI application
- ``receptionist/main.py`` — CLI chat interface
- ``receptionist/api/`` — FastAPI routes and Pydantic schemas
"""
