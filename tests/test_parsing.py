"""Tests for deterministic transaction parsing."""

from datetime import date
from decimal import Decimal

import pytest

from anotatudo.domain.intents import DEFAULT_CATEGORY, TransactionIntent, TransactionKind
from anotatudo.domain.parsing import (
    classify_kind,
    extract_amount,
    extract_category,
    extract_date,
    is_greeting,
    parse_transaction,
)

TODAY = date(2024, 3, 10)


class TestParseTransaction:
    def test_expense_with_explicit_date(self):
        intent = parse_transaction("Almoço R$ 23,50 05/03/2024", TODAY)

        assert intent == TransactionIntent(
            description="Almoço R$ 23,50 05/03/2024",
            amount=Decimal("23.50"),
            category="Alimentação",
            kind=TransactionKind.EXPENSE,
            occurred_on=date(2024, 3, 5),
        )

    def test_income_from_client(self):
        intent = parse_transaction("Recebi 100 reais do cliente", TODAY)

        assert intent.kind is TransactionKind.INCOME
        assert intent.amount == Decimal("100")
        assert intent.category == "Salário"
        assert intent.occurred_on is None

    def test_relative_date(self):
        intent = parse_transaction("Gastei 50 no uber ontem", TODAY)

        assert intent.amount == Decimal("50")
        assert intent.category == "Transporte"
        assert intent.occurred_on == date(2024, 3, 9)

    def test_bare_number_defaults_to_expense(self):
        intent = parse_transaction("100", TODAY)
        assert intent.kind is TransactionKind.EXPENSE
        assert intent.category == DEFAULT_CATEGORY

    def test_income_without_category_falls_back(self):
        intent = parse_transaction("ganhei 300", TODAY)
        assert intent.kind is TransactionKind.INCOME
        assert intent.category == "Salário"

    def test_no_amount(self):
        assert parse_transaction("comprei pão", TODAY) is None
        assert parse_transaction("", TODAY) is None
        assert parse_transaction("Oi", TODAY) is None


class TestExtractAmount:
    @pytest.mark.parametrize(
        "text,expected",
        [
            ("R$ 1.234,56 aluguel", Decimal("1234.56")),
            ("r$45", Decimal("45")),
            ("12.5 reais de lanche", Decimal("12.5")),
            ("paguei 80,90 na farmácia", Decimal("80.90")),
            ("conta de luz 120,90", Decimal("120.90")),
            ("mercado 2.500", Decimal("2500")),
        ],
    )
    def test_amounts(self, text, expected):
        assert extract_amount(text) == expected

    def test_dates_are_not_amounts(self):
        assert extract_amount("no dia 05/03 paguei tudo") is None

    def test_zero_ignored(self):
        assert extract_amount("R$ 0") is None


class TestClassification:
    def test_kinds(self):
        assert classify_kind("recebi o pagamento") is TransactionKind.INCOME
        assert classify_kind("paguei o boleto") is TransactionKind.EXPENSE
        assert classify_kind("100") is None

    def test_client_wins_over_expense_words(self):
        assert classify_kind("cliente pagou a parcela") is TransactionKind.INCOME

    def test_whole_word_categories(self):
        assert extract_category("gastei 30 reais") is None
        assert extract_category("comprei algo barato por 15") is None
        assert extract_category("30 de gas") == "Contas"
        assert extract_category("cerveja no bar") == "Lazer"

    def test_first_category_wins(self):
        assert extract_category("uber para o restaurante") == "Alimentação"


class TestExtractDate:
    @pytest.mark.parametrize(
        "text,expected",
        [
            ("paguei ontem", date(2024, 3, 9)),
            ("anteontem", date(2024, 3, 8)),
            ("vence amanhã", date(2024, 3, 11)),
            ("hoje", None),
            ("dia 5", date(2024, 3, 5)),
            ("05/03", date(2024, 3, 5)),
            ("05/03/24", date(2024, 3, 5)),
            ("31/12/2023", date(2023, 12, 31)),
            ("31/02", None),
            ("sem data", None),
        ],
    )
    def test_dates(self, text, expected):
        assert extract_date(text, TODAY) == expected


class TestGreeting:
    @pytest.mark.parametrize("text", ["Oi", "oi!", "Olá", "Bom dia", "BOA NOITE."])
    def test_greetings(self, text):
        assert is_greeting(text)

    @pytest.mark.parametrize("text", ["oi tudo bem", "almoço 20", ""])
    def test_not_greetings(self, text):
        assert not is_greeting(text)
