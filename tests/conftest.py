"""Pytest configuration and shared fixtures."""

from datetime import date

import pytest

from signbridge.core.models import Card


TRIGGER_FIELD = "checkbox_disparo"
LINK_FIELD = "link_documentos_d4"
SOURCE_PHASE = "310"
DESTINATION_PHASE = "320"
TEMPLATE_ID = "8c1e8b3a-1f0e-4c1b-9a51-2b7f6f0d9e11"
VAULT_ID = "d2a7f1c4-5b6e-4f3a-8c9d-0e1f2a3b4c5d"
TODAY = date(2024, 5, 17)


class _FakeHandle:
    def __init__(self, when: float, callback):
        self.when = when
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeScheduler:
    """Virtual clock; timers run only when the test advances time."""

    def __init__(self) -> None:
        self.time = 0.0
        self._timers: list[_FakeHandle] = []

    def now(self) -> float:
        return self.time

    def call_later(self, delay: float, callback) -> _FakeHandle:
        handle = _FakeHandle(self.time + delay, callback)
        self._timers.append(handle)
        return handle

    def advance(self, seconds: float) -> None:
        self.time += seconds
        due = [t for t in self._timers if not t.cancelled and t.when <= self.time]
        for timer in due:
            self._timers.remove(timer)
            timer.callback()

    @property
    def pending(self) -> list[_FakeHandle]:
        return [t for t in self._timers if not t.cancelled]


@pytest.fixture
def scheduler() -> FakeScheduler:
    return FakeScheduler()


def build_card(
    card_id: str = "1001",
    *,
    trigger=None,
    link=None,
    phase_id: str = SOURCE_PHASE,
    seller: str | None = "Lucas Santos",
    value: str = "300,00",
    installments: str = "3",
    email: str = "ana@acme.com.br",
) -> Card:
    """Card shaped like Pipefy's GraphQL answer."""
    fields = [
        {"name": "Nome do contato", "value": "Ana Souza", "field": {"id": "nome_do_contato", "internal_id": 9001}},
        {"name": "E-mail profissional", "value": email, "field": {"id": "email_profissional", "internal_id": 9002}},
        {"name": "Telefone", "value": "+55 11 99999-0000", "field": {"id": "telefone", "internal_id": 9003}},
        {"name": "CNPJ", "value": "12.345.678/0001-90", "field": {"id": "cnpj", "internal_id": 9004}},
        {"name": "Serviços", "value": '["Assessoria", "Consultoria"]', "field": {"id": "servi_os_de_contratos", "internal_id": 9005}},
        {"name": "Valor do negócio", "value": value, "field": {"id": "valor_do_neg_cio", "internal_id": 9006}},
        {"name": "Parcelas", "value": installments, "field": {"id": "quantidade_de_parcelas", "internal_id": 9007}},
    ]
    if trigger is not None:
        fields.append({"name": "Gerar contrato", "value": trigger, "field": {"id": TRIGGER_FIELD, "internal_id": 9100}})
    if link is not None:
        fields.append({"name": "Link D4", "value": link, "field": {"id": LINK_FIELD, "internal_id": 9101}})

    return Card.model_validate(
        {
            "id": card_id,
            "title": "Contrato Acme",
            "current_phase": {"id": phase_id, "name": "Proposta"},
            "assignees": [{"id": 1, "name": seller, "email": "lucas@example.com"}] if seller else [],
            "fields": fields,
        }
    )


def field_update_event(card_id: str = "1001", old=None, new='["Sim"]', field_id: str = TRIGGER_FIELD) -> dict:
    return {
        "data": {
            "action": "card.field_update",
            "field": {"id": field_id, "internal_id": "9100"},
            "old_value": old,
            "new_value": new,
            "card": {"id": card_id},
        }
    }
