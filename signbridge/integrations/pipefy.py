"""
Pipefy Integration for SignBridge
=================================
Read cards, write a field and move cards between phases via Pipefy's GraphQL API.

Setup:
1. Pipefy -> Account preferences -> Personal access tokens -> Generate
2. Set PIPE_API_KEY
3. Find field slugs in the pipe's field settings ("Field ID")

API Docs: https://developers.pipefy.com/reference
"""

import os
from typing import Any

from pydantic import ValidationError

from signbridge.core.errors import TransientNetworkError, UpstreamError
from signbridge.core.models import Card
from signbridge.integrations.http import PIPEFY_POLICY, ResilientClient, RetryPolicy
from signbridge.shared.logging import get_logger

logger = get_logger("signbridge.pipefy")

PIPEFY_GRAPHQL_ENDPOINT = "https://api.pipefy.com/graphql"

CARD_QUERY = """
query($cardId: ID!) {
  card(id: $cardId) {
    id
    title
    assignees { id name email }
    current_phase { id name }
    fields { name value report_value field { id internal_id } }
  }
}
"""

# REPLACE overwrites the field instead of merging into list-like values.
UPDATE_FIELDS_MUTATION = """
mutation($input: UpdateFieldsValuesInput!) {
  updateFieldsValues(input: $input) {
    success
    userErrors { field message }
  }
}
"""

MOVE_CARD_MUTATION = """
mutation($input: MoveCardToPhaseInput!) {
  moveCardToPhase(input: $input) {
    card { id current_phase { id name } }
  }
}
"""

# Lower-cased fragments of the rejection Pipefy sends when the card already
# sits in the destination phase.
ALREADY_IN_PHASE_MARKERS = (
    "already in",
    "already on",
    "same phase",
    "já está na fase",
    "ja esta na fase",
    "mesma fase",
)


def _error_messages(errors: Any) -> list[str]:
    if isinstance(errors, list):
        return [str(e.get("message", e)) if isinstance(e, dict) else str(e) for e in errors]
    return [str(errors)] if errors else []


def is_already_in_phase(error: UpstreamError) -> bool:
    """True when a move was rejected only because the card is already there."""
    messages = _error_messages(error.details.get("errors"))
    return any(
        marker in message.lower()
        for message in messages
        for marker in ALREADY_IN_PHASE_MARKERS
    )


class PipefyClient:
    """Client for the Pipefy GraphQL API."""

    def __init__(
        self,
        http: ResilientClient,
        api_key: str | None = None,
        endpoint: str | None = None,
        policy: RetryPolicy = PIPEFY_POLICY,
    ):
        self.http = http
        self.api_key = api_key or os.environ.get("PIPE_API_KEY", "")
        self.endpoint = endpoint or PIPEFY_GRAPHQL_ENDPOINT
        self.policy = policy

    @property
    def headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    async def _graphql(self, query: str, variables: dict) -> dict:
        """Run one GraphQL operation and return its ``data`` object."""
        try:
            response = await self.http.request(
                "POST",
                self.endpoint,
                self.policy,
                headers=self.headers,
                json={"query": query, "variables": variables},
            )
        except TransientNetworkError as exc:
            raise UpstreamError(
                f"Pipefy unreachable: {exc.message}",
                details={"reason": exc.reason, "attempts": exc.attempts},
            ) from exc

        try:
            payload = response.json()
        except ValueError:
            raise UpstreamError(
                f"Pipefy returned a non-JSON response ({response.status_code})",
                details={"status": response.status_code, "body": response.text[:500]},
            )

        if not isinstance(payload, dict):
            raise UpstreamError(
                f"Pipefy returned an unexpected JSON body ({response.status_code})",
                details={"status": response.status_code, "body": payload},
            )

        errors = payload.get("errors")
        if not response.is_success or errors:
            raise UpstreamError(
                f"Pipefy request failed ({response.status_code}): "
                f"{'; '.join(_error_messages(errors)) or response.reason_phrase}",
                details={"status": response.status_code, "errors": errors or response.reason_phrase},
            )

        data = payload.get("data")
        return data if isinstance(data, dict) else {}

    async def fetch_card(self, card_id: str) -> Card:
        """Fetch a card with its phase, assignees and fields."""
        data = await self._graphql(CARD_QUERY, {"cardId": card_id})
        card = data.get("card")
        if not card:
            raise UpstreamError(f"Card {card_id} not found", details={"card_id": card_id})
        try:
            return Card.model_validate(card)
        except ValidationError as exc:
            raise UpstreamError(
                f"Card {card_id} has an unexpected shape",
                details={"card_id": card_id, "errors": exc.errors(include_url=False), "card": card},
            ) from exc

    async def update_field(self, card_id: str, field_id: str, value: Any) -> None:
        """Overwrite one field on a card."""
        data = await self._graphql(
            UPDATE_FIELDS_MUTATION,
            {
                "input": {
                    "nodeId": card_id,
                    "values": [
                        {"fieldId": field_id, "value": value, "operation": "REPLACE"}
                    ],
                }
            },
        )
        result = data.get("updateFieldsValues") or {}
        user_errors = result.get("userErrors") or []
        if user_errors or result.get("success") is False:
            raise UpstreamError(
                f"Pipefy rejected update of field {field_id}",
                details={"card_id": card_id, "field_id": field_id, "errors": user_errors},
            )

    async def move_card_to_phase(
        self,
        card_id: str,
        phase_id: str,
        current_phase_id: str | None = None,
    ) -> bool:
        """
        Move a card to ``phase_id``.

        Returns False without calling Pipefy when the card is known to be in
        that phase already, and also when Pipefy rejects the move for that
        reason. Any other rejection raises :class:`UpstreamError`.
        """
        if current_phase_id is not None and str(current_phase_id) == str(phase_id):
            return False

        try:
            await self._graphql(
                MOVE_CARD_MUTATION,
                {"input": {"card_id": card_id, "destination_phase_id": phase_id}},
            )
        except UpstreamError as exc:
            if is_already_in_phase(exc):
                logger.info(
                    f"Card {card_id} already in phase {phase_id}",
                    extra={"card_id": card_id, "action": "move_skipped"},
                )
                return False
            raise

        return True
