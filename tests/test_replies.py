"""Tests for reply composition and templates."""

from datetime import date
from decimal import Decimal

import pytest

from anotatudo.domain.intents import TransactionIntent, TransactionKind
from anotatudo.whatsapp.models import ReplyButton
from anotatudo.whatsapp.replies import (
    MAX_BUTTON_LABEL,
    category_key,
    deletion_confirmation,
    first_name,
    format_brl,
    format_date_br,
    generic_fallback,
    interactive_reply,
    pick_emoji,
    template_reply,
    transaction_confirmation,
)
from anotatudo.whatsapp.templates import TEMPLATES, render

TO = "5511999998888"


def _lunch(transaction_id: str | None = "tx-1") -> TransactionIntent:
    return TransactionIntent(
        description="Almoço no centro",
        amount=Decimal("23.50"),
        category="Alimentação",
        kind=TransactionKind.EXPENSE,
        occurred_on=date(2024, 3, 5),
        transaction_id=transaction_id,
    )


class TestTransactionConfirmation:
    def test_golden_expense(self):
        reply = transaction_confirmation(TO, _lunch(), "João Silva")

        assert reply.to_address == TO
        assert reply.body == (
            "✅ Despesa registrada, João!\n"
            "\n"
            "🍽️ Alimentação\n"
            "💳 R$ 23,50\n"
            "📝 Almoço no centro\n"
            "📅 05/03/2024"
        )
        assert reply.buttons == (
            ReplyButton(id="edit_tx-1", label="✏️ Editar"),
            ReplyButton(id="delete_tx-1", label="🗑️ Excluir"),
        )

    def test_income_heading_without_name(self):
        intent = TransactionIntent(
            description="Recebi do cliente",
            amount=Decimal("100"),
            category="Salário",
            kind=TransactionKind.INCOME,
        )
        reply = transaction_confirmation(TO, intent.with_id("tx-9"))

        assert reply.body.startswith("✅ Receita registrada!\n")
        assert "💰 R$ 100,00" in reply.body
        assert "📅 hoje" in reply.body

    def test_without_id_is_plain_text(self):
        reply = transaction_confirmation(TO, _lunch(transaction_id=None))
        assert reply.is_interactive is False

    def test_deterministic(self):
        assert transaction_confirmation(TO, _lunch(), "Ana") == transaction_confirmation(TO, _lunch(), "Ana")

    def test_description_line_omitted_when_empty(self):
        intent = TransactionIntent(description="", amount=Decimal("5"), category="Outros")
        reply = transaction_confirmation(TO, intent.with_id("t"))
        assert "📝" not in reply.body


class TestOtherReplies:
    def test_deletion_confirmation(self):
        reply = deletion_confirmation(TO, _lunch(), "Maria")
        assert reply.body.startswith("🗑️ Transação excluída, Maria.")
        assert not reply.is_interactive

    def test_generic_fallback(self):
        assert generic_fallback(TO, "Ana Paula").body == (
            "Ops, Ana! Algo deu errado por aqui. Tente novamente em instantes."
        )
        assert generic_fallback(TO).body.startswith("Ops! Algo deu errado")

    def test_template_reply_ignores_name_when_not_allowed(self):
        reply = template_reply(TO, "pedir_email", "Ana")
        assert reply.body == TEMPLATES["pedir_email"]["text"]

    def test_buttons_truncated_to_three(self):
        buttons = [ReplyButton(id=f"b{i}", label=f"Opção {i}") for i in range(5)]
        reply = interactive_reply(TO, "Escolha", buttons)
        assert [b.id for b in reply.buttons] == ["b0", "b1", "b2"]

    def test_long_labels_cut(self):
        reply = interactive_reply(TO, "x", [ReplyButton(id="a", label="L" * 40)])
        assert len(reply.buttons[0].label) == MAX_BUTTON_LABEL


class TestFormatting:
    @pytest.mark.parametrize(
        "amount,expected",
        [
            (Decimal("1234.56"), "R$ 1.234,56"),
            (Decimal("0.5"), "R$ 0,50"),
            (Decimal("1000000"), "R$ 1.000.000,00"),
            (Decimal("10.005"), "R$ 10,01"),
            (Decimal("-10"), "-R$ 10,00"),
        ],
    )
    def test_format_brl(self, amount, expected):
        assert format_brl(amount) == expected

    def test_format_date(self):
        assert format_date_br(date(2024, 12, 1)) == "01/12/2024"
        assert format_date_br(None) == "hoje"

    def test_first_name(self):
        assert first_name("  Maria Clara Souza ") == "Maria"
        assert first_name(None) == ""
        assert first_name("   ") == ""

    def test_category_emoji(self):
        assert category_key("Transporte") == "transporte"
        assert category_key("Saúde") == "saude"
        assert category_key("Contas") == "outros"
        assert pick_emoji("Lazer") == "🎉"


class TestTemplates:
    def test_render_with_name(self):
        assert render("erro_geral", {"first_name": "Ana"}) == (
            "Ops, Ana! Algo deu errado por aqui. Tente novamente em instantes."
        )

    def test_missing_name_leaves_no_gap(self):
        assert render("boas_vindas_autenticado", {}).startswith("Tudo certo! ✅")
        assert render("edicao_iniciada", {"first_name": ""}).startswith("Certo! ✏️")

    def test_unknown_template(self):
        with pytest.raises(ValueError, match="Unknown template"):
            render("nao_existe", {})

    def test_disallowed_params(self):
        with pytest.raises(ValueError, match="Disallowed"):
            render("pedir_email", {"first_name": "Ana"})
        with pytest.raises(ValueError, match="Disallowed"):
            render("erro_geral", {"phone": "5511999998888"})

    def test_every_template_renders(self):
        for key in TEMPLATES:
            assert render(key, {}).strip()
