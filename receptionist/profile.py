"""Business persona configuration.

A ``BusinessProfile`` is the explicit, immutable configuration object the
prompt composer, plan extractor and response stages read from.  It replaces
any shared module-level prompt string: every turn receives its own profile
value, so nothing a turn does can leak into another.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Any

from receptionist.config import BUSINESS_TIMEZONE

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ServiceOffering:
    """One service on the menu, plus the phrasings customers use for it."""

    name: str
    duration_minutes: int
    price: float
    description: str = ""
    aliases: tuple[str, ...] = ()

    def all_names(self) -> tuple[str, ...]:
        return (self.name, *self.aliases)


@dataclass(frozen=True)
class BusinessProfile:
    """Persona and business facts for one tenant."""

    business_id: str
    name: str
    persona: str
    services: tuple[ServiceOffering, ...] = ()
    opening_hours: tuple[str, ...] = ()
    address: str = ""
    contact_phone: str = ""
    timezone: str = BUSINESS_TIMEZONE
    language: str = "pt-BR"
    extra_facts: tuple[str, ...] = field(default_factory=tuple)

    # ── Canned customer-facing messages ──────────────────────────────

    @property
    def apology_message(self) -> str:
        """Generic apology used when no answer could be produced."""
        if self.contact_phone:
            return (
                "Desculpe, estamos com um problema temporário. Por favor, tente "
                "novamente em alguns instantes ou entre em contato pelo telefone "
                f"{self.contact_phone}."
            )
        return (
            "Desculpe, estamos com um problema temporário. Por favor, tente "
            "novamente em alguns instantes."
        )

    @property
    def retry_booking_message(self) -> str:
        return (
            "Desculpe, não consegui concluir o agendamento. "
            "Podemos tentar novamente?"
        )

    @property
    def recheck_availability_message(self) -> str:
        return (
            "Temos alguns horários disponíveis para você, mas preciso verificar "
            "novamente. Poderia me dizer qual serviço e qual dia você prefere?"
        )

    def service_names(self) -> list[str]:
        return [s.name for s in self.services]

    def canonical_service(self, value: object) -> str:
        """Menu name for *value* when it is a service name or alias; else *value* stripped."""
        text = str(value or "").strip()
        key = text.casefold()
        for service in self.services:
            if any(name.casefold() == key for name in service.all_names()):
                return service.name
        return text


DEFAULT_PERSONA = (
    "Você é a recepcionista que atende pelo WhatsApp oficial do {name}, "
    "especializada em gerenciar agendamentos e fornecer informações sobre "
    "os serviços. Seja amigável, profissional, paciente, clara e eficiente."
)

DEFAULT_SERVICES: tuple[ServiceOffering, ...] = (
    ServiceOffering(
        name="Corte + Barba",
        duration_minutes=45,
        price=55.0,
        description="Combo corte e barba",
        aliases=("corte e barba", "cabelo e barba"),
    ),
    ServiceOffering(
        name="Corte de Cabelo",
        duration_minutes=30,
        price=35.0,
        description="Corte masculino básico",
        aliases=("cortar o cabelo", "cortar cabelo", "corte masculino", "haircut"),
    ),
    ServiceOffering(
        name="Barba",
        duration_minutes=30,
        price=25.0,
        description="Aparar e modelar barba",
        aliases=("fazer a barba", "aparar a barba", "beard"),
    ),
    ServiceOffering(
        name="Design de Sobrancelhas",
        duration_minutes=30,
        price=20.0,
        description="Design de sobrancelhas",
        aliases=("sobrancelha", "sobrancelhas", "eyebrows"),
    ),
)

DEFAULT_PROFILE = BusinessProfile(
    business_id="default",
    name="Mister Sérgio Cabeleireiro",
    persona=DEFAULT_PERSONA.format(name="Mister Sérgio Cabeleireiro"),
    services=DEFAULT_SERVICES,
    opening_hours=(
        "Terça a Sexta: 09:30 às 19:00",
        "Sábado: 09:30 às 18:00",
        "Domingo e Segunda: Fechado",
    ),
    address="Rua Dr. Júlio Olivier, 474 - Centro, Macaé - RJ, 27913-161",
    contact_phone="(22) 99977-5122",
    extra_facts=(
        "Cancelamentos podem ser feitos até 2 horas antes do horário sem custo.",
        "Atrasos de mais de 15 minutos podem causar a perda da reserva.",
    ),
)

def profile_from_business_row(row: dict[str, Any], fallback: BusinessProfile) -> BusinessProfile:
    """Build a profile from a record-store ``businesses`` row.

    Fields the row does not carry are taken from *fallback*.  Service aliases
    are kept from the fallback when a service of the same name exists there.
    """
    config = row.get("config") or {}
    known_aliases = {s.name.lower(): s.aliases for s in fallback.services}

    services: list[ServiceOffering] = []
    for item in row.get("services") or []:
        if not item.get("name") or item.get("active") is False:
            continue
        services.append(
            ServiceOffering(
                name=item["name"],
                duration_minutes=int(item.get("duration_minutes") or 30),
                price=float(item.get("price") or 0),
                description=item.get("description") or "",
                aliases=tuple(item.get("aliases") or known_aliases.get(item["name"].lower(), ())),
            )
        )

    name = row.get("name") or fallback.name
    return replace(
        fallback,
        business_id=row.get("business_id") or fallback.business_id,
        name=name,
        persona=config.get("defaultPrompt") or DEFAULT_PERSONA.format(name=name),
        services=tuple(services) or fallback.services,
        address=config.get("address") or fallback.address,
        contact_phone=config.get("contactPhone") or row.get("admin_phone") or fallback.contact_phone,
        timezone=config.get("timezone") or fallback.timezone,
    )

async def load_profile(store: Any, business_id: str, fallback: BusinessProfile = DEFAULT_PROFILE) -> BusinessProfile:
    """Load the profile for *business_id* from the record store.

    Any failure (store down, business missing) falls back to *fallback* so a
    turn is never blocked on persona data.
    """
    try:
        row = await store.get_business(business_id)
    except Exception as exc:
        logger.warning("Could not load business %s, using default profile: %s", business_id, exc)
        return replace(fallback, business_id=business_id)
    if not row:
        return replace(fallback, business_id=business_id)
    return profile_from_business_row(row, fallback)
