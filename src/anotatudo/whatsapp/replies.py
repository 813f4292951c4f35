"""Reply composition: domain results -> OutboundReply.

Pure functions apart from logging. Output is deterministic for a given
input; emoji decoration picks the first entry of each category list.
"""

from __future__ import annotations

from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Sequence

from anotatudo.domain.intents import TransactionIntent, TransactionKind
from anotatudo.domain.reminders import ReminderIntent, StoredEvent, reminder_label
from anotatudo.observability.logging import get_logger
from anotatudo.observability.redaction import safe_log_context

from .models import OutboundReply, ReplyButton
from .templates import TEMPLATES, render

logger = get_logger(__name__)

MAX_BUTTONS = 3
MAX_BUTTON_LABEL = 20

EDIT_PREFIX = "edit_"
DELETE_PREFIX = "delete_"
EDIT_LABEL = "✏️ Editar"
DELETE_LABEL = "🗑️ Excluir"

TODAY_LABEL = "hoje"

# Three buttons fit; "1 hora" is still accepted as a typed answer
REMINDER_BUTTONS: tuple[ReplyButton, ...] = (
    ReplyButton(id="lembrete_30", label="⏰ 30 minutos antes"),
    ReplyButton(id="lembrete_1440", label="📅 1 dia antes"),
    ReplyButton(id="lembrete_none", label="❌ Sem lembrete"),
)

EMOJI: dict[str, tuple[str, ...]] = {
    "entrada": ("💰", "📈", "🤑", "💵", "🎉", "🙌", "✨"),
    "saida": ("💳", "📉", "💸", "🧾", "😅", "💼"),
    "transporte": ("🚗", "🚕", "🚙", "🚦", "🛣️", "🚘"),
    "alimentacao": ("🍽️", "🍔", "🍕", "🍱", "🍜", "🥗", "🍣", "🍛"),
    "mercado": ("🛒", "🥫", "🍞", "🧀", "🍎", "🛍️"),
    "lazer": ("🎉", "🎬", "🎧", "🎮", "🎢", "🍿"),
    "saude": ("💊", "🏥", "🩺", "❤️‍🩹", "💉"),
    "moradia": ("🏠", "🛋️", "💡", "🚿", "🪑"),
    "investimentos": ("📈", "💹", "💰", "🏦", "💵"),
    "assinaturas": ("📦", "🔁", "💳", "💡"),
    "outros": ("🧾", "📌", "✨", "⭐"),
}

# (substring of the lowercased category, emoji key); first hit wins
_CATEGORY_HINTS: tuple[tuple[tuple[str, ...], str], ...] = (
    (("transporte", "uber", "taxi"), "transporte"),
    (("alimenta", "comida", "restaurante"), "alimentacao"),
    (("mercado", "super", "compras"), "mercado"),
    (("lazer", "entretenimento", "cinema"), "lazer"),
    (("saúde", "saude", "farmacia", "médico", "medico"), "saude"),
    (("moradia", "casa", "aluguel"), "moradia"),
    (("investimento",), "investimentos"),
    (("assinatura",), "assinaturas"),
)


def category_key(category: str) -> str:
    normalized = category.lower().strip()
    for hints, key in _CATEGORY_HINTS:
        if any(hint in normalized for hint in hints):
            return key
    return "outros"


def pick_emoji(category: str) -> str:
    """Deterministic category emoji: the first of the category's list."""
    return EMOJI[category_key(category)][0]


def kind_emoji(kind: TransactionKind) -> str:
    return EMOJI[kind.value][0]


def format_brl(amount: Decimal) -> str:
    """Format as Brazilian Real: R$ 1.234,56."""
    quantized = abs(amount).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    us_style = f"{quantized:,.2f}"
    # 1,234.56 -> 1.234,56
    br_style = us_style.replace(",", "_").replace(".", ",").replace("_", ".")
    sign = "-" if amount < 0 else ""
    return f"{sign}R$ {br_style}"


def format_date_br(value: date | None) -> str:
    """dd/mm/yyyy, or "hoje" when the transaction carries no date."""
    if value is None:
        return TODAY_LABEL
    return value.strftime("%d/%m/%Y")


def first_name(display_name: str | None) -> str:
    if not display_name:
        return ""
    parts = display_name.strip().split()
    return parts[0] if parts else ""


def _vocative(display_name: str | None) -> str:
    name = first_name(display_name)
    return f", {name}" if name else ""


def plain_reply(to_address: str, text: str) -> OutboundReply:
    return OutboundReply(to_address=to_address, body=text)


def interactive_reply(
    to_address: str, body: str, buttons: Sequence[ReplyButton]
) -> OutboundReply:
    """Reply with quick-reply buttons.

    The provider accepts at most three buttons; extras are dropped and
    logged. Labels longer than the provider limit are cut.
    """
    if len(buttons) > MAX_BUTTONS:
        logger.warning(
            "reply buttons truncated",
            extra={
                "extra_fields": safe_log_context(
                    requested=len(buttons), kept=MAX_BUTTONS
                )
            },
        )
        buttons = buttons[:MAX_BUTTONS]

    kept = tuple(
        ReplyButton(id=b.id, label=b.label[:MAX_BUTTON_LABEL]) for b in buttons
    )
    return OutboundReply(to_address=to_address, body=body, buttons=kept)


def _transaction_lines(intent: TransactionIntent) -> list[str]:
    lines = [
        f"{pick_emoji(intent.category)} {intent.category}",
        f"{kind_emoji(intent.kind)} {format_brl(intent.amount)}",
    ]
    if intent.description:
        lines.append(f"📝 {intent.description}")
    lines.append(f"📅 {format_date_br(intent.occurred_on)}")
    return lines


def transaction_buttons(transaction_id: str) -> tuple[ReplyButton, ...]:
    return (
        ReplyButton(id=f"{EDIT_PREFIX}{transaction_id}", label=EDIT_LABEL),
        ReplyButton(id=f"{DELETE_PREFIX}{transaction_id}", label=DELETE_LABEL),
    )


def transaction_confirmation(
    to_address: str,
    intent: TransactionIntent,
    display_name: str | None = None,
) -> OutboundReply:
    """Confirmation for a stored transaction, with edit/delete buttons.

    Without a transaction id there is nothing to edit, so the reply is
    plain text.
    """
    heading = "Receita registrada" if intent.kind is TransactionKind.INCOME else "Despesa registrada"
    body = "\n".join([f"✅ {heading}{_vocative(display_name)}!", ""] + _transaction_lines(intent))

    if not intent.transaction_id:
        return plain_reply(to_address, body)
    return interactive_reply(to_address, body, transaction_buttons(intent.transaction_id))


def deletion_confirmation(
    to_address: str,
    intent: TransactionIntent,
    display_name: str | None = None,
) -> OutboundReply:
    body = "\n".join(
        [f"🗑️ Transação excluída{_vocative(display_name)}.", ""] + _transaction_lines(intent)
    )
    return plain_reply(to_address, body)


def _event_when(reminder: ReminderIntent) -> str:
    when = format_date_br(reminder.occurred_on)
    return f"{when} às {reminder.time}" if reminder.time else when


def reminder_prompt(to_address: str, reminder: ReminderIntent) -> OutboundReply:
    """Ask how long before the event the user wants to be reminded."""
    body = "\n".join(
        [
            "📅 *Evento detectado!*",
            "",
            f"*{reminder.title}*",
            f"📆 {_event_when(reminder)}",
            "",
            "Com quantos minutos deseja ser avisado?",
        ]
    )
    return interactive_reply(to_address, body, REMINDER_BUTTONS)


def reminder_confirmation(
    to_address: str, event: StoredEvent, display_name: str | None = None
) -> OutboundReply:
    reminder = event.reminder
    body = "\n".join(
        [
            f"✅ Evento salvo{_vocative(display_name)}!",
            "",
            f"*{reminder.title}*",
            f"📆 {_event_when(reminder)}",
            f"⏰ {reminder_label(event.remind_minutes_before).capitalize()}",
        ]
    )
    return plain_reply(to_address, body)


def template_reply(
    to_address: str, template_key: str, display_name: str | None = None
) -> OutboundReply:
    """Render a fixed template addressed to the user's first name."""
    params = {}
    if "first_name" in TEMPLATES.get(template_key, {}).get("allowed_params", []):
        params["first_name"] = first_name(display_name)
    return plain_reply(to_address, render(template_key, params))


def generic_fallback(to_address: str, display_name: str | None = None) -> OutboundReply:
    """Sent whenever a collaborator failed and the user would otherwise hear nothing."""
    return template_reply(to_address, "erro_geral", display_name)
