"""
Centralized configuration for SignBridge.

Settings come from the environment (or a local ``.env``) and are validated on
startup. The legacy variable names used by earlier deployments
(``PIPE_API_KEY``, ``TEMPLATE_UUID_CONTRATO``, ...) are accepted as aliases,
and the per-seller ``COFRE_UUID_LUCAS`` / ``_MARIA`` / ``_JOAO`` vaults are merged
into ``vault_routes`` under the seller names they belonged to. Entries in
``VAULT_ROUTES`` win over them.
"""

from functools import lru_cache

from pydantic import AliasChoices, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from signbridge.shared.security import looks_like_uuid, mask_token
from signbridge.shared.logging import get_logger

logger = get_logger("signbridge.config")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore",
    )

    # App
    app_env: str = Field(default="development")
    log_level: str = Field(default="INFO")
    port: int = Field(default=3000)

    # Pipefy
    pipefy_api_key: str = Field(
        default="", validation_alias=AliasChoices("PIPEFY_API_KEY", "PIPE_API_KEY")
    )
    pipefy_graphql_endpoint: str = Field(
        default="https://api.pipefy.com/graphql",
        validation_alias=AliasChoices("PIPEFY_GRAPHQL_ENDPOINT", "PIPE_GRAPHQL_ENDPOINT"),
    )

    # D4Sign
    d4sign_token: str = Field(default="")
    d4sign_crypt_key: str = Field(default="")
    d4sign_base_url: str = Field(default="https://secure.d4sign.com.br/api/v1")
    d4sign_template_id: str = Field(
        default="",
        validation_alias=AliasChoices("D4SIGN_TEMPLATE_ID", "TEMPLATE_UUID_CONTRATO"),
    )
    d4sign_document_url: str = Field(
        default="https://secure.d4sign.com.br/Plus/{document_id}"
    )

    # Card wiring
    trigger_field_id: str = Field(default="checkbox_disparo")
    link_field_id: str = Field(default="link_documentos_d4")
    destination_phase_id: str = Field(
        default="",
        validation_alias=AliasChoices("DESTINATION_PHASE_ID", "PHASE_ID_CONTRATO_ENVIADO"),
    )
    source_phase_id: str = Field(
        default="",
        validation_alias=AliasChoices("SOURCE_PHASE_ID", "PHASE_ID_PROPOSTA"),
    )

    # Assignee name -> D4Sign safe (vault) UUID, as a JSON object
    vault_routes: dict[str, str] = Field(default_factory=dict)
    # Per-seller vault variables of earlier deployments, folded into vault_routes
    vault_lucas: str = Field(default="", validation_alias="COFRE_UUID_LUCAS")
    vault_maria: str = Field(default="", validation_alias="COFRE_UUID_MARIA")
    vault_joao: str = Field(default="", validation_alias="COFRE_UUID_JOAO")

    # Guard
    lock_timeout_seconds: float = Field(default=30.0)
    cooldown_seconds: float = Field(default=180.0)

    # Optional behaviour
    use_download_link: bool = Field(default=False)
    send_after_create: bool = Field(default=False)
    signature_message: str = Field(default="")

    # Security
    webhook_secret: str = Field(default="")

    @model_validator(mode="after")
    def merge_legacy_vaults(self) -> "Settings":
        legacy = {
            "Lucas Santos": self.vault_lucas,
            "Maria Lima": self.vault_maria,
            "João Silva": self.vault_joao,
        }
        for seller, vault_id in legacy.items():
            if vault_id:
                self.vault_routes.setdefault(seller, vault_id)
        return self

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"

    @property
    def has_pipefy(self) -> bool:
        return bool(self.pipefy_api_key)

    @property
    def has_d4sign(self) -> bool:
        return bool(self.d4sign_token and self.d4sign_crypt_key)

    def validate_required(self) -> list[str]:
        """Validate configuration, return list of errors."""
        errors = []

        if not self.pipefy_api_key:
            errors.append("PIPE_API_KEY is required")

        if not self.d4sign_token:
            errors.append("D4SIGN_TOKEN is required")
        if not self.d4sign_crypt_key:
            errors.append("D4SIGN_CRYPT_KEY is required")

        if not self.d4sign_template_id:
            errors.append("TEMPLATE_UUID_CONTRATO is required")
        elif not looks_like_uuid(self.d4sign_template_id):
            errors.append("TEMPLATE_UUID_CONTRATO format is invalid (expected a UUID)")

        if not self.destination_phase_id:
            errors.append("PHASE_ID_CONTRATO_ENVIADO is required")

        if not self.vault_routes:
            errors.append("VAULT_ROUTES is empty; every run will fail vault routing")

        if "{document_id}" not in self.d4sign_document_url:
            errors.append("D4SIGN_DOCUMENT_URL must contain a {document_id} placeholder")

        if self.is_production and not self.webhook_secret:
            errors.append("WEBHOOK_SECRET is required in production")

        return errors

    def log_status(self):
        """Log configuration status (without secrets)."""
        logger.info("Configuration loaded", extra={
            "data": {
                "env": self.app_env,
                "pipefy": mask_token(self.pipefy_api_key) if self.has_pipefy else "✗",
                "d4sign": mask_token(self.d4sign_token) if self.has_d4sign else "✗",
                "template": self.d4sign_template_id or "✗",
                "vaults": sorted(self.vault_routes),
                "webhook_secret": "✓" if self.webhook_secret else "○",
            }
        })


@lru_cache
def get_config() -> Settings:
    """Load and validate configuration from environment."""

    config = Settings()

    errors = config.validate_required()
    if errors:
        for error in errors:
            logger.error(f"Config error: {error}")

        if config.is_production:
            raise ValueError(f"Configuration errors: {errors}")

    config.log_status()
    return config

