"""WhatsApp message templates for the ISP service bot.

Every text the bot sends lives here. Params are validated against
allowed_params so nothing unexpected is ever interpolated into a reply.
Each reply that leaves the user mid-flow points at the menu command (8).
"""

from typing import Any

_BACK_TO_MENU = "———\nDigite *8* para voltar ao menu."

_PAYMENT_CHOICES = (
    "*1️⃣ PIX* (ou digite *pix*)\n\n"
    "*2️⃣ BOLETO*"
)

TEMPLATES: dict[str, dict[str, Any]] = {
    "main_menu": {
        "text": (
            "*COMO POSSO AJUDAR?*\n\n"
            "*1️⃣ PAGAMENTO / SEGUNDA VIA*\n\n"
            "*2️⃣ SUPORTE TÉCNICO*\n\n"
            "*3️⃣ FALAR COM ATENDENTE*\n\n"
            "*4️⃣ OUTRAS DÚVIDAS*\n\n"
            "———\n"
            "Digite o *número* da opção ou envie *8* para voltar ao menu."
        ),
        "allowed_params": [],
    },
    "payment_ask_cpf": {
        "text": (
            "*PAGAMENTO / SEGUNDA VIA*\n\n"
            "Para gerar seu boleto ou PIX, envie seu *CPF*.\n\n"
            f"{_BACK_TO_MENU}"
        ),
        "allowed_params": [],
    },
    "support_menu": {
        "text": (
            "*SUPORTE TÉCNICO*\n\n"
            "1️⃣ Internet lenta\n"
            "2️⃣ Sem conexão\n"
            "3️⃣ Já paguei\n\n"
            "———\n"
            "Digite o número da opção ou *8* para voltar ao menu."
        ),
        "allowed_params": [],
    },
    "human_handoff": {
        "text": "Um atendente humano vai assumir. Aguarde alguns instantes.",
        "allowed_params": [],
    },
    "other_ask_question": {
        "text": f"Envie sua dúvida e nossa equipe irá analisar.\n{_BACK_TO_MENU}",
        "allowed_params": [],
    },
    "support_slow_internet": {
        "text": (
            "🔧 *INTERNET LENTA*\n\n"
            "Desligue e ligue os equipamentos, aguarde alguns minutos e teste a conexão.\n\n"
            "Se o problema persistir, digite *3*.\n\n"
            f"{_BACK_TO_MENU}"
        ),
        "allowed_params": [],
    },
    "support_no_connection": {
        "text": (
            "🚫 *SEM CONEXÃO*\n\n"
            "Verifique cabos e energia do roteador. Caso persista, aguarde alguns minutos.\n\n"
            "Precisa falar com suporte? Responda *3*.\n"
            f"{_BACK_TO_MENU}"
        ),
        "allowed_params": [],
    },
    "support_already_paid": {
        "text": (
            "🧾 *JÁ PAGUEI*\n\n"
            "Se você já quitou o boleto/PIX, aguarde até 5 minutos para que o sistema atualize.\n"
            "Caso não volte em breve, nosso time entrará em contato para finalizar a liberação.\n"
            f"{_BACK_TO_MENU}"
        ),
        "allowed_params": [],
    },
    "support_agent_followup": {
        "text": "Em breve um dos nossos atendentes irá continuar nosso atendimento.",
        "allowed_params": [],
    },
    "cpf_processing": {
        "text": "Processando CPF, aguarde...",
        "allowed_params": [],
    },
    "cpf_invalid": {
        "text": f"CPF inválido. Verifique os números e envie novamente.\n{_BACK_TO_MENU}",
        "allowed_params": [],
    },
    "cpf_incomplete": {
        "text": (
            "CPF incompleto. Encontrei apenas {digit_count} dígitos. "
            "Preciso de 11 números.\n"
            f"{_BACK_TO_MENU}"
        ),
        "allowed_params": ["digit_count"],
    },
    "cpf_too_many_digits": {
        "text": (
            "CPF com muitos dígitos. Encontrei {digit_count} dígitos. "
            "Preciso de exatamente 11 números.\n"
            f"{_BACK_TO_MENU}"
        ),
        "allowed_params": ["digit_count"],
    },
    "cpf_missing": {
        "text": f"Preciso do CPF com 11 números para localizar seu cadastro.\n{_BACK_TO_MENU}",
        "allowed_params": [],
    },
    "cpf_not_found": {
        "text": f"CPF não encontrado. Verifique o número e envie novamente.\n{_BACK_TO_MENU}",
        "allowed_params": [],
    },
    "client_without_services": {
        "text": f"Cliente encontrado mas sem serviços ativos.\n{_BACK_TO_MENU}",
        "allowed_params": [],
    },
    "client_without_bills": {
        "text": f"Nenhuma cobrança encontrada para este cliente.\n{_BACK_TO_MENU}",
        "allowed_params": [],
    },
    "no_open_bills": {
        "text": (
            "Não há nenhuma cobrança em atraso. "
            "Entre em contato conosco caso tenha dúvidas.\n"
            f"{_BACK_TO_MENU}"
        ),
        "allowed_params": [],
    },
    "payment_options": {
        "text": (
            "*CPF CONFIRMADO: {client_name}*\n\n"
            "📅 *Vencimento:* {due_date}\n"
            "💰 *Valor:* {amount}\n\n"
            "Como você deseja pagar?\n\n"
            f"{_PAYMENT_CHOICES}\n\n"
            "⏱️ *Liberação em até 5 minutos após o pagamento*\n\n"
            "———\n"
            "Digite o *número* da opção ou *8* para voltar ao menu."
        ),
        "allowed_params": ["client_name", "due_date", "amount"],
    },
    "payment_options_reprompt": {
        "text": (
            "*Por favor, escolha uma opção:*\n\n"
            f"{_PAYMENT_CHOICES}\n\n"
            "———\n"
            "Digite o *número* da opção ou *8* para voltar ao menu."
        ),
        "allowed_params": [],
    },
    "payment_data_missing": {
        "text": (
            "*❌ ERRO*\n\n"
            "Dados não encontrados. Por favor, envie seu CPF novamente.\n"
            f"{_BACK_TO_MENU}"
        ),
        "allowed_params": [],
    },
    "pix_qr_intro": {
        "text": "QR code PIX. Escaneie para pagar via PIX.",
        "allowed_params": [],
    },
    "pix_qr_caption": {
        "text": "*🔵 QRCODE PIX*\n\n*ESCANEIE PARA PAGAR VIA PIX*",
        "allowed_params": [],
    },
    "pix_payload_intro": {
        "text": "Copia o código abaixo e cole no seu banco para efetuar o pagamento",
        "allowed_params": [],
    },
    "pix_unusable": {
        "text": (
            "Erro! PIX gerado, mas não recebi imagem nem código utilizável da API.\n"
            f"{_BACK_TO_MENU}"
        ),
        "allowed_params": [],
    },
    "pix_aftercare": {
        "text": (
            "*PIX ENVIADO!*\n\n"
            "⏱️ *Liberação em até 5 minutos*\n\n"
            "*Se após 5 minutos não houve liberação automática:*\n\n"
            "*• Desligue e ligue o roteador*\n"
            "*• Aguarde a reconexão*\n\n"
            "📞 *Não voltou?* Digite *\"3\"*\n\n"
            "———\n"
            "📱 *Digite 8 para voltar ao menu*"
        ),
        "allowed_params": [],
    },
    "boleto_intro": {
        "text": "Boleto de {client_name}. Liberação em até 5 minutos após o pagamento.",
        "allowed_params": ["client_name"],
    },
    "boleto_caption": {
        "text": (
            "*📄 BOLETO DE {client_name}*\n\n"
            "⏱️ *Liberação em até 5 minutos após o pagamento*\n\n"
            "———\n"
            "📱 *Digite 8 para voltar ao menu*"
        ),
        "allowed_params": ["client_name"],
    },
}


def render(template_key: str, params: dict[str, Any] | None = None) -> str:
    """Render template with params. Validates allowed_params.

    Raises:
        ValueError: If template_key unknown or params contains disallowed keys.
    """
    if template_key not in TEMPLATES:
        raise ValueError(f"Unknown template: {template_key}")

    params = params or {}
    template = TEMPLATES[template_key]
    allowed = set(template["allowed_params"])
    provided = set(params.keys())

    extras = provided - allowed
    if extras:
        raise ValueError(f"Disallowed params for {template_key}: {extras}")

    missing = allowed - provided
    if missing:
        raise ValueError(f"Missing params for {template_key}: {missing}")

    return template["text"].format(**params)
