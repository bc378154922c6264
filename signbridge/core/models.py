"""Shared data models."""

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class RunState(StrEnum):
    """Orchestrator states, in pipeline order."""

    RECEIVED = "received"
    LOCKED = "locked"
    FETCHING = "fetching"
    DECIDING = "deciding"
    GENERATING = "generating"
    FINALIZING = "finalizing"
    DONE = "done"


class Outcome(StrEnum):
    """Terminal outcome of a webhook run."""

    DONE = "done"
    NO_CARD_ID = "no_card_id"
    LOCK_BUSY = "lock_busy"
    NOT_TRIGGERED = "not_triggered"
    ALREADY_LINKED = "already_linked"
    OUT_OF_PHASE = "out_of_phase"
    FAILED = "failed"


# --- Pipefy card ---


class FieldRef(BaseModel):
    """Identity of a pipe field: primary slug id and/or numeric internal id."""

    model_config = ConfigDict(coerce_numbers_to_str=True)

    id: str | None = None
    internal_id: str | None = None


class CardField(BaseModel):
    """A filled field on a card."""

    name: str | None = ""
    value: Any = None
    report_value: Any = None
    field: FieldRef = Field(default_factory=FieldRef)

    def matches(self, field_id: str) -> bool:
        return field_id in (self.field.id, self.field.internal_id)

    @property
    def current_value(self) -> Any:
        return self.value if self.value is not None else self.report_value


class Phase(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True)

    id: str
    name: str | None = ""


class Assignee(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True)

    id: str | None = None
    name: str | None = ""
    email: str | None = None


class Card(BaseModel):
    """A Pipefy card as fetched fresh on every webhook."""

    model_config = ConfigDict(coerce_numbers_to_str=True)

    id: str
    title: str | None = ""
    current_phase: Phase | None = None
    assignees: list[Assignee] = Field(default_factory=list)
    fields: list[CardField] = Field(default_factory=list)

    def find_field(self, field_id: str) -> CardField | None:
        return next((f for f in self.fields if f.matches(field_id)), None)

    def get_field(self, field_id: str) -> Any:
        """Value of ``field_id`` (value, then report_value), None if unfilled."""
        found = self.find_field(field_id)
        return found.current_value if found else None

    @property
    def primary_assignee(self) -> Assignee | None:
        return self.assignees[0] if self.assignees else None

    @property
    def phase_id(self) -> str | None:
        return self.current_phase.id if self.current_phase else None


# --- D4Sign document ---


class Signer(BaseModel):
    """A party registered to sign a created document."""

    email: str
    name: str = ""
    act: str = "1"  # 1 = sign
    foreign: bool = False
    language: str = "pt-BR"
    notify: bool = True


class DocumentRequest(BaseModel):
    """Everything needed to create one contract from the template."""

    template_id: str
    title: str
    variables: dict[str, str]
    signers: list[Signer]
    seller: str


# --- Webhook response ---


class WebhookResult(BaseModel):
    """Uniform response body for the webhook endpoint."""

    ok: bool
    outcome: Outcome
    card_id: str | None = None
    message: str | None = None
    document_id: str | None = None
    link: str | None = None
    error: str | None = None

    def body(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)
