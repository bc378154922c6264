"""
Webhook orchestration: Pipefy card -> D4Sign contract -> back onto the card.

One run per webhook delivery::

    received -> locked -> fetching -> deciding -> generating -> finalizing -> done

with early exits for a missing card id, a busy lock, a card that already has
its document link, an event that did not trigger, a card outside the source
phase, and failures. Every exit after ``locked`` releases the card lock
exactly once. Business failures come back as ``ok=False`` results instead of
exceptions so the webhook sender does not redeliver forever.
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable, Protocol

from signbridge.core.errors import BridgeError, ConfigurationError
from signbridge.core.guard import ConcurrencyGuard
from signbridge.core.models import Card, Outcome, RunState, Signer, WebhookResult
from signbridge.core.normalize import is_filled
from signbridge.core.transform import build_document_request
from signbridge.core.trigger import WebhookEvent, decide, parse_event
from signbridge.shared.logging import audit, get_logger

logger = get_logger("signbridge.orchestrator")


class WorkflowService(Protocol):
    async def fetch_card(self, card_id: str) -> Card: ...

    async def update_field(self, card_id: str, field_id: str, value: Any) -> None: ...

    async def move_card_to_phase(
        self, card_id: str, phase_id: str, current_phase_id: str | None = None
    ) -> bool: ...


class SignatureService(Protocol):
    async def create_document(
        self,
        vault_id: str,
        template_id: str,
        title: str,
        variables: dict[str, str],
        signers: list[Signer],
    ) -> str: ...

    async def get_download_link(
        self, document_id: str, format: str = "pdf", language: str = "pt"
    ) -> str: ...

    async def send_for_signature(self, document_id: str, message: str = "") -> None: ...

    def document_url(self, document_id: str) -> str: ...


@dataclass
class OrchestratorOptions:
    """Card wiring and optional behaviour, usually built from Settings."""

    trigger_field_id: str
    link_field_id: str
    destination_phase_id: str
    template_id: str
    vault_routes: dict[str, str] = field(default_factory=dict)
    source_phase_id: str | None = None
    use_download_link: bool = False
    send_after_create: bool = False
    signature_message: str = ""

    @classmethod
    def from_settings(cls, settings) -> "OrchestratorOptions":
        return cls(
            trigger_field_id=settings.trigger_field_id,
            link_field_id=settings.link_field_id,
            destination_phase_id=settings.destination_phase_id,
            template_id=settings.d4sign_template_id,
            vault_routes=dict(settings.vault_routes),
            source_phase_id=settings.source_phase_id or None,
            use_download_link=settings.use_download_link,
            send_after_create=settings.send_after_create,
            signature_message=settings.signature_message,
        )


class Orchestrator:
    """Runs the webhook pipeline for one card at a time per card id."""

    def __init__(
        self,
        workflow: WorkflowService,
        signature: SignatureService,
        guard: ConcurrencyGuard,
        options: OrchestratorOptions,
        today: Callable[[], date] = date.today,
    ):
        self.workflow = workflow
        self.signature = signature
        self.guard = guard
        self.options = options
        self._today = today

    def resolve_vault(self, seller: str) -> str:
        vault_id = self.options.vault_routes.get(seller)
        if not vault_id:
            raise ConfigurationError(
                f"No vault configured for assignee: {seller}",
                details={"assignee": seller},
            )
        return vault_id

    async def handle(self, payload: Any) -> WebhookResult:
        """Process one webhook delivery. Never raises."""
        event = parse_event(payload)
        card_id = event.card_id

        if not card_id:
            logger.warning("Webhook without card id", extra={"action": "no_card_id"})
            return WebhookResult(ok=False, outcome=Outcome.NO_CARD_ID, error="missing card id")

        lock = self.guard.try_acquire(card_id)
        if lock is None:
            logger.info(
                f"Card {card_id} already being processed",
                extra={"card_id": card_id, "action": "lock_busy"},
            )
            return WebhookResult(
                ok=True,
                outcome=Outcome.LOCK_BUSY,
                card_id=card_id,
                message="processing already in progress",
            )

        self._enter(RunState.LOCKED, card_id)
        try:
            return await self._run(event, card_id)
        except BridgeError as exc:
            logger.error(
                f"Card {card_id} failed: {exc.message}",
                exc_info=True,
                extra={"card_id": card_id, "action": "failed", "data": exc.to_dict()},
            )
            audit.log_generation_failed(card_id, exc.error_code, exc.message)
            return WebhookResult(
                ok=False, outcome=Outcome.FAILED, card_id=card_id, error=exc.message
            )
        except Exception as exc:
            logger.exception(
                f"Card {card_id} failed unexpectedly: {exc}",
                extra={"card_id": card_id, "action": "failed"},
            )
            audit.log_generation_failed(card_id, "UNEXPECTED", str(exc))
            return WebhookResult(
                ok=False, outcome=Outcome.FAILED, card_id=card_id, error=str(exc)
            )
        finally:
            self.guard.release(card_id, lock)

    async def _run(self, event: WebhookEvent, card_id: str) -> WebhookResult:
        options = self.options

        self._enter(RunState.FETCHING, card_id)
        card = await self.workflow.fetch_card(card_id)

        self._enter(RunState.DECIDING, card_id)
        if is_filled(card.get_field(options.link_field_id)):
            return WebhookResult(
                ok=True,
                outcome=Outcome.ALREADY_LINKED,
                card_id=card_id,
                message="already generated",
            )

        decision = decide(
            event,
            options.trigger_field_id,
            card,
            cooldown_active=self.guard.cooldown_active(card_id),
        )
        logger.info(
            f"Card {card_id}: trigger {'fired' if decision.fire else 'held'} ({decision.reason})",
            extra={"card_id": card_id, "action": "trigger", "data": {"edge": decision.edge}},
        )
        if not decision.fire:
            return WebhookResult(
                ok=True,
                outcome=Outcome.NOT_TRIGGERED,
                card_id=card_id,
                message=decision.reason,
            )

        if options.source_phase_id and card.phase_id != options.source_phase_id:
            return WebhookResult(
                ok=True,
                outcome=Outcome.OUT_OF_PHASE,
                card_id=card_id,
                message=f"card is not in phase {options.source_phase_id}",
            )

        self._enter(RunState.GENERATING, card_id)
        request = build_document_request(card, options.template_id, today=self._today())
        vault_id = self.resolve_vault(request.seller)

        document_id = await self.signature.create_document(
            vault_id,
            request.template_id,
            request.title,
            request.variables,
            request.signers,
        )
        # A document now exists; the fallback path must not create another.
        self.guard.record_success(card_id)
        audit.log_document_created(card_id, document_id, [s.email for s in request.signers])

        if options.send_after_create:
            await self.signature.send_for_signature(document_id, message=options.signature_message)

        self._enter(RunState.FINALIZING, card_id)
        if options.use_download_link:
            link = await self.signature.get_download_link(document_id)
        else:
            link = self.signature.document_url(document_id)

        await self.workflow.update_field(card.id, options.link_field_id, link)
        audit.log_link_written(card_id, options.link_field_id, document_id)

        if options.destination_phase_id:
            moved = await self.workflow.move_card_to_phase(
                card.id, options.destination_phase_id, card.phase_id
            )
            if moved:
                audit.log_card_moved(card_id, options.destination_phase_id)

        self._enter(RunState.DONE, card_id)
        return WebhookResult(
            ok=True,
            outcome=Outcome.DONE,
            card_id=card_id,
            message="document generated",
            document_id=document_id,
            link=link,
        )

    def _enter(self, state: RunState, card_id: str) -> None:
        logger.debug(
            f"Card {card_id} -> {state}",
            extra={"card_id": card_id, "action": f"state_{state}"},
        )
