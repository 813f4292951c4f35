"""Deterministic transaction parsing from user messages.

NO LLM. Uses regex and keyword heuristics for Brazilian Portuguese.
Security: NEVER log raw text (PII).
"""

import re
from datetime import date, timedelta
from decimal import Decimal, InvalidOperation

from anotatudo.domain.intents import DEFAULT_CATEGORY, TransactionIntent, TransactionKind
from anotatudo.domain.reminders import (
    MAX_DESCRIPTION_LENGTH as MAX_REMINDER_DESCRIPTION,
    MAX_TITLE_LENGTH,
    ReminderIntent,
)

# Number with optional thousands dots and 1-2 decimals: 45 | 45,90 | 1.234,56 | 12.5
_NUMBER = r"\d{1,3}(?:\.\d{3})+(?:,\d{1,2})?|\d+(?:[.,]\d{1,2})?"

# Amount patterns, tried in order
_AMOUNT_PATTERNS = [
    re.compile(rf"r\$\s*({_NUMBER})", re.IGNORECASE),
    re.compile(rf"({_NUMBER})\s*(?:reais|real)\b", re.IGNORECASE),
    re.compile(
        rf"\b(?:recebi|ganhei|gastei|paguei|comprei|vendi|de|por)\s+({_NUMBER})",
        re.IGNORECASE,
    ),
]
_ANY_NUMBER = re.compile(_NUMBER)

INCOME_KEYWORDS: tuple[str, ...] = (
    "recebi", "ganhei", "entrou", "entrada", "salário", "salario",
    "pagamento recebido", "crédito", "credito", "depositei", "depósito", "deposito",
    "cliente pagou", "me pagou", "pagou-me", "venda", "vendi", "lucro",
    "renda", "provento", "recebimento", "freelance", "freela", "serviço",
    "de um cliente", "do cliente", "cliente",
)

EXPENSE_KEYWORDS: tuple[str, ...] = (
    "gastei", "paguei", "comprei", "despesa", "saída", "saida",
    "débito", "debito", "gasto", "compra", "pagamento de", "pagar",
    "conta de", "boleto", "fatura", "dívida", "divida", "parcela",
    "prestação", "prestacao", "aluguel", "mensalidade",
)

# "cliente" almost always means money coming in
_CLIENT_BOOST = 20

# keyword -> category; first match in insertion order wins
CATEGORY_KEYWORDS: dict[str, str] = {
    # Alimentação
    "almoço": "Alimentação", "almoco": "Alimentação", "jantar": "Alimentação",
    "café": "Alimentação", "cafe": "Alimentação", "lanche": "Alimentação",
    "comida": "Alimentação", "restaurante": "Alimentação", "ifood": "Alimentação",
    "mercado": "Alimentação", "supermercado": "Alimentação", "padaria": "Alimentação",
    # Transporte
    "gasolina": "Transporte", "combustível": "Transporte", "combustivel": "Transporte",
    "uber": "Transporte", "taxi": "Transporte", "táxi": "Transporte",
    "ônibus": "Transporte", "onibus": "Transporte", "metrô": "Transporte", "metro": "Transporte",
    "passagem": "Transporte", "estacionamento": "Transporte", "pedágio": "Transporte",
    # Contas
    "luz": "Contas", "energia": "Contas", "água": "Contas", "agua": "Contas",
    "internet": "Contas", "telefone": "Contas", "celular": "Contas",
    "gás": "Contas", "gas": "Contas", "iptu": "Contas", "ipva": "Contas",
    # Moradia
    "aluguel": "Moradia", "condomínio": "Moradia", "condominio": "Moradia",
    # Salário
    "cliente": "Salário", "salário": "Salário", "salario": "Salário",
    "venda": "Salário", "recebimento": "Salário", "freelance": "Salário",
    "freela": "Salário", "serviço": "Salário", "servico": "Salário",
    "comissão": "Salário", "comissao": "Salário",
    # Saúde
    "médico": "Saúde", "medico": "Saúde", "farmácia": "Saúde", "farmacia": "Saúde",
    "remédio": "Saúde", "remedio": "Saúde", "consulta": "Saúde", "exame": "Saúde",
    # Lazer
    "cinema": "Lazer", "show": "Lazer", "festa": "Lazer", "bar": "Lazer",
    "cerveja": "Lazer", "viagem": "Lazer", "passeio": "Lazer",
    # Compras
    "roupa": "Compras", "sapato": "Compras", "shopping": "Compras", "loja": "Compras",
}

INCOME_FALLBACK_CATEGORY = "Salário"

_DATE_PARTS = re.compile(r"\b(\d{1,2})/(\d{1,2})(?:/(\d{4}|\d{2}))?\b")
_DAY_OF_MONTH = re.compile(r"\b(?:no\s+)?dia\s+(\d{1,2})\b")

MAX_DESCRIPTION_LENGTH = 200


def _contains_word(text: str, keyword: str) -> bool:
    """Whole-word match so "gas" does not hit "gastei" nor "bar" hit "barato"."""
    return re.search(rf"(?<!\w){re.escape(keyword)}(?!\w)", text) is not None


def _to_decimal(raw: str) -> Decimal | None:
    """Normalize a pt-BR or plain number string."""
    if "," in raw:
        normalized = raw.replace(".", "").replace(",", ".")
    elif re.fullmatch(r"\d{1,3}(?:\.\d{3})+", raw):
        normalized = raw.replace(".", "")
    else:
        normalized = raw
    try:
        return Decimal(normalized)
    except InvalidOperation:
        return None


def extract_amount(text: str) -> Decimal | None:
    """Extract the transaction amount from text.

    Explicit money markers win; otherwise the first number >= 1 is used
    (dates are stripped first so "05/03" is not read as 5).
    """
    for pattern in _AMOUNT_PATTERNS:
        match = pattern.search(text)
        if match:
            value = _to_decimal(match.group(1))
            if value is not None and value > 0:
                return value

    without_dates = _DATE_PARTS.sub(" ", text)
    for match in _ANY_NUMBER.finditer(without_dates):
        value = _to_decimal(match.group(0))
        if value is not None and value >= 1:
            return value

    return None


def _score(text: str, keywords: tuple[str, ...]) -> int:
    return sum(len(kw) for kw in keywords if _contains_word(text, kw))


def classify_kind(text: str) -> TransactionKind | None:
    """Income vs expense by keyword score. None when tied (caller decides)."""
    lower = text.lower()
    income = _score(lower, INCOME_KEYWORDS)
    expense = _score(lower, EXPENSE_KEYWORDS)
    if _contains_word(lower, "cliente"):
        income += _CLIENT_BOOST

    if income > expense:
        return TransactionKind.INCOME
    if expense > income:
        return TransactionKind.EXPENSE
    return None


def extract_category(text: str) -> str | None:
    """First category whose keyword appears in text."""
    lower = _DATE_PARTS.sub(" ", text.lower())
    # Amounts never name a category
    lower = re.sub(rf"r\$\s*(?:{_NUMBER})", " ", lower)
    for keyword, category in CATEGORY_KEYWORDS.items():
        if _contains_word(lower, keyword):
            return category
    return None


def _build_date(year: int, month: int, day: int) -> date | None:
    try:
        return date(year, month, day)
    except ValueError:
        return None


def extract_date(text: str, today: date) -> date | None:
    """Resolve the date the user mentioned.

    Returns None when no date is mentioned or the text says "hoje"; the
    caller treats None as today.
    """
    lower = text.lower()

    if _contains_word(lower, "anteontem"):
        return today - timedelta(days=2)
    if _contains_word(lower, "ontem"):
        return today - timedelta(days=1)
    if _contains_word(lower, "amanhã") or _contains_word(lower, "amanha"):
        return today + timedelta(days=1)
    if _contains_word(lower, "hoje"):
        return None

    match = _DATE_PARTS.search(lower)
    if match:
        day, month, year = match.group(1), match.group(2), match.group(3)
        if year is None:
            resolved_year = today.year
        elif len(year) == 2:
            resolved_year = 2000 + int(year)
        else:
            resolved_year = int(year)
        return _build_date(resolved_year, int(month), int(day))

    match = _DAY_OF_MONTH.search(lower)
    if match:
        return _build_date(today.year, today.month, int(match.group(1)))

    return None


def parse_transaction(text: str, today: date) -> TransactionIntent | None:
    """Parse free text into a TransactionIntent.

    Args:
        text: User message (already normalized).
        today: Reference date in the user's timezone.

    Returns:
        TransactionIntent, or None when no positive amount is found.
    """
    cleaned = text.strip()
    if not cleaned:
        return None

    amount = extract_amount(cleaned)
    if amount is None:
        return None

    # No clear direction but an amount: expenses are the common case
    kind = classify_kind(cleaned) or TransactionKind.EXPENSE

    category = extract_category(cleaned)
    if category is None:
        category = (
            INCOME_FALLBACK_CATEGORY if kind is TransactionKind.INCOME else DEFAULT_CATEGORY
        )

    return TransactionIntent(
        description=cleaned[:MAX_DESCRIPTION_LENGTH],
        amount=amount,
        category=category,
        kind=kind,
        occurred_on=extract_date(cleaned, today),
    )


GREETINGS: frozenset[str] = frozenset({"oi", "olá", "ola", "oie", "bom dia", "boa tarde", "boa noite"})


def is_greeting(text: str) -> bool:
    """True for a bare greeting like "Oi!" or "Olá"."""
    normalized = re.sub(r"[^\w\s]", "", text.lower()).strip()
    return normalized in GREETINGS


# ── Reminders ────────────────────────────────────────────

REMINDER_KEYWORDS: tuple[str, ...] = (
    "lembrete", "lembrar", "não esquecer", "nao esquecer", "não esquece", "nao esquece",
    "reunião", "reuniao", "meeting", "consulta", "compromisso", "agendar", "agendamento",
    "marcar", "marcado", "evento", "encontro", "entrevista", "apresentação", "apresentacao",
    "dentista", "médico", "medico", "exame", "prova", "aniversário", "aniversario",
    "festa", "casamento", "voo", "viagem", "hotel", "reserva", "prazo", "deadline",
)

# Money mentioned: the message is a transaction, not an appointment
_FINANCIAL_MARKERS = (
    re.compile(r"\b(?:recebi|ganhei|gastei|paguei|comprei|vendi)\b", re.IGNORECASE),
    re.compile(r"\d+\s*(?:reais|real|r\$)", re.IGNORECASE),
    re.compile(r"r\$\s*\d", re.IGNORECASE),
)

_TIME_PATTERNS = (
    re.compile(r"\b(\d{1,2}):(\d{2})\b"),
    re.compile(r"\b(\d{1,2})\s*h\s*(\d{2})?\b"),
    re.compile(r"\b(\d{1,2})()\s*horas?\b"),
    re.compile(r"\b(?:às|as)\s+(\d{1,2})()\b"),
)

# Parts of the day, checked when no clock time is given
_DAY_PERIODS: tuple[tuple[tuple[str, ...], str], ...] = (
    (("meio-dia", "meio dia"), "12:00"),
    (("manhã", "manha"), "09:00"),
    (("tarde",), "14:00"),
    (("noite",), "19:00"),
)

# Tried in order; "1 dia" must win over the bare "1" inside "1 hora"
_CHOICE_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"\b(?:1|um)\s+dia\b|\b1440\b"), "lembrete_1440"),
    (re.compile(r"\b(?:1|uma)\s+hora\b|\b60\b"), "lembrete_60"),
    (re.compile(r"\b(?:30|trinta)\b"), "lembrete_30"),
    (re.compile(r"\b(?:não|nao|sem)\b"), "lembrete_none"),
)


def has_financial_marker(text: str) -> bool:
    return any(pattern.search(text) for pattern in _FINANCIAL_MARKERS)


def extract_time(text: str) -> str | None:
    """Clock time mentioned in text as "HH:MM", else a part-of-day default."""
    lower = _DATE_PARTS.sub(" ", text.lower())
    for pattern in _TIME_PATTERNS:
        for match in pattern.finditer(lower):
            hours = int(match.group(1))
            minutes = int(match.group(2)) if match.group(2) else 0
            if 0 <= hours <= 23 and 0 <= minutes <= 59:
                return f"{hours:02d}:{minutes:02d}"

    for words, value in _DAY_PERIODS:
        if any(_contains_word(lower, word) for word in words):
            return value
    return None


def _event_date(text: str, today: date) -> date:
    resolved = extract_date(text, today)
    if resolved is None:
        return today
    # "dia 5" after the 5th means next month's 5th
    if resolved < today and not _DATE_PARTS.search(text) and _DAY_OF_MONTH.search(text.lower()):
        month = today.month % 12 + 1
        year = today.year + (1 if month == 1 else 0)
        return _build_date(year, month, resolved.day) or today
    return resolved


def parse_reminder(text: str, today: date) -> ReminderIntent | None:
    """Parse an appointment ("Reunião amanhã às 15h") into a ReminderIntent.

    Returns None unless the text has a reminder keyword and mentions no
    money.
    """
    cleaned = text.strip()
    if not cleaned:
        return None

    lower = cleaned.lower()
    if not any(_contains_word(lower, keyword) for keyword in REMINDER_KEYWORDS):
        return None
    if has_financial_marker(cleaned):
        return None

    return ReminderIntent(
        title=cleaned[:MAX_TITLE_LENGTH],
        occurred_on=_event_date(cleaned, today),
        time=extract_time(cleaned),
        description=cleaned[:MAX_REMINDER_DESCRIPTION],
    )


def parse_reminder_choice(text: str) -> str | None:
    """Map a typed answer ("30", "1 dia", "sem") to a reminder button id."""
    lower = text.lower().strip()
    if not lower or has_financial_marker(lower):
        return None
    for pattern, choice in _CHOICE_PATTERNS:
        if pattern.search(lower):
            return choice
    return None
