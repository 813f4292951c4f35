"""WhatsApp reply templates (PII-free).

Templates contain static text with placeholders for non-PII params only.
Text is rendered only in-memory at send time, never persisted.
"""

from typing import Any

TEMPLATES: dict[str, dict[str, Any]] = {
    "pedir_email_inicial": {
        "text": (
            "Olá! 👋 Eu sou o Anotatudo, seu assistente financeiro.\n\n"
            "Para começar, me envie o e-mail que você usou no cadastro."
        ),
        "allowed_params": [],
    },
    "pedir_email": {
        "text": "Não encontrei um e-mail válido. Envie seu e-mail (ex: nome@exemplo.com).",
        "allowed_params": [],
    },
    "boas_vindas_autenticado": {
        "text": (
            "Tudo certo{vocative}! ✅ Seu WhatsApp está conectado.\n\n"
            "Agora é só me mandar seus gastos e receitas, por exemplo: "
            "'Almoço R$ 45' ou 'Recebi 100 reais'."
        ),
        "allowed_params": ["first_name"],
    },
    "transacao_nao_entendida": {
        "text": (
            "Não consegui identificar o valor. Pode enviar novamente? "
            "Ex: 'Almoço R$ 45' ou 'Recebi 100 reais'"
        ),
        "allowed_params": [],
    },
    "erro_processamento": {
        "text": "Não consegui processar esse arquivo agora. Pode tentar de novo ou digitar o valor?",
        "allowed_params": [],
    },
    "erro_geral": {
        "text": "Ops{vocative}! Algo deu errado por aqui. Tente novamente em instantes.",
        "allowed_params": ["first_name"],
    },
    "video_nao_suportado": {
        "text": (
            "Ainda não consigo ler vídeos{vocative}. 🎬 "
            "Envie uma foto do comprovante, um áudio ou digite o valor (ex: 'Almoço R$ 45')."
        ),
        "allowed_params": ["first_name"],
    },
    "edicao_iniciada": {
        "text": (
            "Certo{vocative}! ✏️ Envie os novos dados da transação "
            "(ex: 'Mercado R$ 120 ontem')."
        ),
        "allowed_params": ["first_name"],
    },
}

# Templates address the user through {vocative}: ", <first_name>" or nothing.


def render(template_key: str, params: dict[str, Any]) -> str:
    """Render template with params. Validates allowed_params.

    Missing params render as empty. first_name is never interpolated directly;
    it becomes the {vocative} placeholder so an unknown name leaves no gap.

    Args:
        template_key: Template identifier.
        params: Parameters to interpolate (must be in allowed_params).

    Returns:
        Rendered text string.

    Raises:
        ValueError: If template_key unknown or params contains disallowed keys.
    """
    if template_key not in TEMPLATES:
        raise ValueError(f"Unknown template: {template_key}")

    template = TEMPLATES[template_key]
    allowed = set(template["allowed_params"])
    provided = set(params.keys())

    # Validate no extra params (defense against PII leakage)
    extras = provided - allowed
    if extras:
        raise ValueError(f"Disallowed params for {template_key}: {extras}")

    values = {key: params.get(key) or "" for key in allowed}
    if "first_name" in allowed:
        first_name = values.pop("first_name")
        values["vocative"] = f", {first_name}" if first_name else ""

    return template["text"].format(**values)
