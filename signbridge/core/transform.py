"""
Card -> contract mapping.

Turns a fetched Pipefy card into the D4Sign template variables and signer
list. Field slugs and template token names are deployment-specific; change
them here when the pipe or the contract template changes.
"""

import re
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from signbridge.core.errors import TransformError
from signbridge.core.models import Card, DocumentRequest, Signer
from signbridge.core.normalize import normalize_field_value

# Pipefy field slugs
FIELD_CONTACT_NAME = "nome_do_contato"
FIELD_CONTACT_EMAIL = "email_profissional"
FIELD_PHONE = "telefone"
FIELD_TAX_ID = "cnpj"
FIELD_SERVICES = "servi_os_de_contratos"
FIELD_DEAL_VALUE = "valor_do_neg_cio"
FIELD_INSTALLMENTS = "quantidade_de_parcelas"

UNKNOWN_SELLER = "Desconhecido"

CENTS = Decimal("0.01")
THOUSANDS_ONLY = re.compile(r"^-?\d{1,3}(\.\d{3})+$")


@dataclass
class ContractData:
    """Card values the contract template needs, already flattened to text."""

    name: str
    email: str
    phone: str
    tax_id: str
    services: str
    value: str
    installments: int
    seller: str


def _text(raw) -> str:
    value = normalize_field_value(raw)
    if value is None:
        return ""
    if isinstance(value, list):
        return ", ".join(v for v in value if v)
    if isinstance(value, bool):
        return "Sim" if value else "Não"
    return str(value).strip()


def parse_brl(raw) -> Decimal | None:
    """
    Parse a Brazilian currency value.

    "R$ 1.234,56" -> Decimal("1234.56"); "300,00" -> Decimal("300.00").
    Returns None when the value is not a number.
    """
    value = normalize_field_value(raw)
    if value is None or isinstance(value, (bool, list)):
        return None
    if isinstance(value, (int, float)):
        return Decimal(str(value))

    text = str(value).replace("R$", "").replace("\u00a0", "").replace(" ", "")
    if not text:
        return None
    if "," in text:
        text = text.replace(".", "").replace(",", ".")
    elif THOUSANDS_ONLY.match(text):
        # "1.500" is fifteen hundred, never one and a half
        text = text.replace(".", "")

    try:
        return Decimal(text)
    except InvalidOperation:
        return None


def format_brl(amount: Decimal) -> str:
    """Decimal("1234.5") -> "1.234,50"."""
    quantized = amount.quantize(CENTS, rounding=ROUND_HALF_UP)
    us_style = f"{quantized:,.2f}"
    return us_style.replace(",", "_").replace(".", ",").replace("_", ".")


def parse_installments(raw) -> int:
    value = normalize_field_value(raw)
    if isinstance(value, list):
        value = value[0] if value else None
    try:
        count = int(Decimal(str(value).strip()))
    except (InvalidOperation, TypeError, ValueError):
        return 1
    return max(count, 1)


def installment_value(total: Decimal, installments: int) -> Decimal:
    return (total / max(installments, 1)).quantize(CENTS, rounding=ROUND_HALF_UP)


def build_contract_data(card: Card) -> ContractData:
    seller = (card.primary_assignee.name if card.primary_assignee else None) or ""
    return ContractData(
        name=_text(card.get_field(FIELD_CONTACT_NAME)),
        email=_text(card.get_field(FIELD_CONTACT_EMAIL)),
        phone=_text(card.get_field(FIELD_PHONE)),
        tax_id=_text(card.get_field(FIELD_TAX_ID)),
        services=_text(card.get_field(FIELD_SERVICES)),
        value=_text(card.get_field(FIELD_DEAL_VALUE)),
        installments=parse_installments(card.get_field(FIELD_INSTALLMENTS)),
        seller=seller.strip() or UNKNOWN_SELLER,
    )


def build_template_variables(data: ContractData, today: date | None = None) -> dict[str, str]:
    """Template token -> value. Every value is a string."""
    today = today or date.today()

    total = parse_brl(data.value)
    if total is not None:
        value_text = format_brl(total)
        per_installment = format_brl(installment_value(total, data.installments))
    else:
        value_text = data.value
        per_installment = ""

    contact = " / ".join(part for part in (data.email, data.phone) if part)

    return {
        "Contratante 1": data.name,
        "Dados para contato": contact,
        "CNPJ/CPF": data.tax_id,
        "Serviços": data.services,
        "Valor da Assessoria": value_text,
        "Número de parcelas da Assessoria": str(data.installments),
        "Valor da parcela": per_installment,
        "Vendedor": data.seller,
        "Data": today.strftime("%d/%m/%Y"),
    }


def build_signers(data: ContractData) -> list[Signer]:
    if not data.email:
        raise TransformError(
            "Card has no contact email to register as signer",
            details={"field": FIELD_CONTACT_EMAIL},
        )
    return [Signer(email=data.email, name=data.name or data.email)]


def build_document_request(
    card: Card,
    template_id: str,
    today: date | None = None,
) -> DocumentRequest:
    data = build_contract_data(card)
    return DocumentRequest(
        template_id=template_id,
        title=card.title or f"Contrato {card.id}",
        variables=build_template_variables(data, today=today),
        signers=build_signers(data),
        seller=data.seller,
    )
