"""
User-facing sentences for action outcomes, in English and Portuguese.

Keys are stable identifiers used by the dispatcher; params are substituted
with str.format.
"""

DEFAULT_LANGUAGE = "en"

MESSAGES: dict[str, dict[str, str]] = {
    "en": {
        # Ticket problems
        "forbidden": "Forbidden",
        "ticket_expired": "This link has expired. Links are valid for {days} days.",
        "no_longer_exists": "This message no longer exists.",
        "system_error": "An internal error occurred. Please try again later.",
        "encryption_unavailable": "This service is not configured to process links.",
        "method_not_allowed": "Forbidden",
        # Gates and waiting
        "captcha_required": "Please confirm that you are not a robot to continue.",
        "captcha_unavailable": "The human verification service is unavailable. Please try again later.",
        "reputation_unavailable": "The reputation service is unavailable. Please try again later.",
        "please_wait": "Your request is being processed. This page will refresh in {seconds} seconds.",
        "mail_unavailable": "Outbound mail is not available at the moment. Please try again later.",
        # spam
        "spam_reported": "Your complaint was recorded. You may also block the identifiers below.",
        "spam_already_reported": "This message was already reported as spam.",
        "spam_select_identifiers": "Select at least one identifier to block.",
        "spam_blocked": "The following identifiers are now blocked: {tokens}.",
        "spam_already_blocked": "The selected identifiers were already blocked.",
        # unblock / white
        "unblock_confirm": "Confirm to ask {recipient} to accept mail from {sender}.",
        "unblock_not_authenticated": (
            "The sender {sender} could not be authenticated for {ip} (result {result})."
        ),
        "unblock_request_sent": "A request to accept your messages was sent to {recipient}.",
        "already_unblocked": "The sender {sender} is already unblocked for {recipient}.",
        "white_confirm": "Confirm to accept mail from {sender}.",
        "white_confirmed": "The sender {sender} was unblocked and has been notified.",
        "white_added_without_notice": (
            "The sender {sender} was unblocked. The sender could not be notified."
        ),
        "white_confirmation_failed": (
            "The sender {sender} was unblocked, but the confirmation message could not be sent: {reason}"
        ),
        # holding / unhold / block
        "hold_already_delivered": "This message was already delivered.",
        "hold_already_released": "This message was already released.",
        "hold_already_blocked": "The sender of this message was already blocked.",
        "hold_already_advised": "The recipient was already advised about this message.",
        "hold_recipient_advised": "The recipient was advised that your message is waiting.",
        "query_confirm_release": "Confirm to release this message.",
        "query_confirm_block": "Confirm to block the sender of this message.",
        "query_released": "The message was released and will be delivered.",
        "query_sender_blocked": "The sender {sender} was blocked.",
        # unsubscribe / release
        "unsubscribed": "The address {email} will no longer receive alerts.",
        "already_unsubscribed": "The address {email} was already unsubscribed.",
        "message_released": "The message was released for delivery.",
        "already_released": "This message was already released.",
        # Transport failures
        "transport_address_nonexistent": "The destination address {recipient} does not exist.",
        "transport_server_unreachable": "The destination mail server could not be reached.",
        "transport_server_timeout": "The destination mail server did not answer in time.",
        "transport_server_rejected": "The destination mail server rejected the message.",
        "transport_generic": "The message could not be delivered.",
        # Reputation page
        "reputation_listed": "{target} is listed.",
        "reputation_allowed": "{target} is on the allow list.",
        "reputation_unlisted": "{target} is not listed.",
        "reputation_probe_reachable": "{target} is suspicious, but its SMTP service answers: {banner}",
        "reputation_probe_unreachable": "{target} is suspicious and its SMTP service does not answer.",
        "reputation_invalid": "Invalid query.",
        # Page chrome
        "button_confirm": "Confirm",
        "button_block": "Block selected",
        "page_title": "Mail action",
    },
    "pt": {
        "forbidden": "Proibido",
        "ticket_expired": "Este link expirou. Os links são válidos por {days} dias.",
        "no_longer_exists": "Esta mensagem não existe mais.",
        "system_error": "Ocorreu um erro interno. Tente novamente mais tarde.",
        "encryption_unavailable": "Este serviço não está configurado para processar links.",
        "method_not_allowed": "Proibido",
        "captcha_required": "Confirme que você não é um robô para continuar.",
        "captcha_unavailable": "O serviço de verificação humana está indisponível. Tente novamente mais tarde.",
        "reputation_unavailable": "O serviço de reputação está indisponível. Tente novamente mais tarde.",
        "please_wait": "Sua solicitação está sendo processada. Esta página será atualizada em {seconds} segundos.",
        "mail_unavailable": "O envio de e-mail não está disponível no momento. Tente novamente mais tarde.",
        "spam_reported": "Sua reclamação foi registrada. Você também pode bloquear os identificadores abaixo.",
        "spam_already_reported": "Esta mensagem já foi denunciada como spam.",
        "spam_select_identifiers": "Selecione pelo menos um identificador para bloquear.",
        "spam_blocked": "Os seguintes identificadores foram bloqueados: {tokens}.",
        "spam_already_blocked": "Os identificadores selecionados já estavam bloqueados.",
        "unblock_confirm": "Confirme para pedir a {recipient} que aceite mensagens de {sender}.",
        "unblock_not_authenticated": (
            "O remetente {sender} não pôde ser autenticado para {ip} (resultado {result})."
        ),
        "unblock_request_sent": "Um pedido para aceitar suas mensagens foi enviado a {recipient}.",
        "already_unblocked": "O remetente {sender} já está desbloqueado para {recipient}.",
        "white_confirm": "Confirme para aceitar mensagens de {sender}.",
        "white_confirmed": "O remetente {sender} foi desbloqueado e notificado.",
        "white_added_without_notice": (
            "O remetente {sender} foi desbloqueado. Não foi possível notificar o remetente."
        ),
        "white_confirmation_failed": (
            "O remetente {sender} foi desbloqueado, mas a confirmação não pôde ser enviada: {reason}"
        ),
        "hold_already_delivered": "Esta mensagem já foi entregue.",
        "hold_already_released": "Esta mensagem já foi liberada.",
        "hold_already_blocked": "O remetente desta mensagem já foi bloqueado.",
        "hold_already_advised": "O destinatário já foi avisado sobre esta mensagem.",
        "hold_recipient_advised": "O destinatário foi avisado de que sua mensagem está aguardando.",
        "query_confirm_release": "Confirme para liberar esta mensagem.",
        "query_confirm_block": "Confirme para bloquear o remetente desta mensagem.",
        "query_released": "A mensagem foi liberada e será entregue.",
        "query_sender_blocked": "O remetente {sender} foi bloqueado.",
        "unsubscribed": "O endereço {email} não receberá mais alertas.",
        "already_unsubscribed": "O endereço {email} já havia cancelado a inscrição.",
        "message_released": "A mensagem foi liberada para entrega.",
        "already_released": "Esta mensagem já foi liberada.",
        "transport_address_nonexistent": "O endereço de destino {recipient} não existe.",
        "transport_server_unreachable": "O servidor de e-mail de destino não pôde ser alcançado.",
        "transport_server_timeout": "O servidor de e-mail de destino não respondeu a tempo.",
        "transport_server_rejected": "O servidor de e-mail de destino rejeitou a mensagem.",
        "transport_generic": "A mensagem não pôde ser entregue.",
        "reputation_listed": "{target} está listado.",
        "reputation_allowed": "{target} está na lista de permissões.",
        "reputation_unlisted": "{target} não está listado.",
        "reputation_probe_reachable": "{target} é suspeito, mas seu serviço SMTP responde: {banner}",
        "reputation_probe_unreachable": "{target} é suspeito e seu serviço SMTP não responde.",
        "reputation_invalid": "Consulta inválida.",
        "button_confirm": "Confirmar",
        "button_block": "Bloquear selecionados",
        "page_title": "Ação de e-mail",
    },
}


def negotiate_language(accept_language: str | None) -> str:
    """Pick a supported language from an Accept-Language header."""
    if not accept_language:
        return DEFAULT_LANGUAGE

    candidates = []
    for position, part in enumerate(accept_language.split(",")):
        tag, _, params = part.strip().partition(";")
        quality = 1.0
        if params.strip().startswith("q="):
            try:
                quality = float(params.strip()[2:])
            except ValueError:
                quality = 0.0
        language = tag.strip().lower().split("-")[0]
        if language in MESSAGES and quality > 0:
            candidates.append((-quality, position, language))

    if not candidates:
        return DEFAULT_LANGUAGE
    return min(candidates)[2]


def translate(key: str, language: str = DEFAULT_LANGUAGE, **params) -> str:
    catalog = MESSAGES.get(language, MESSAGES[DEFAULT_LANGUAGE])
    template = catalog.get(key) or MESSAGES[DEFAULT_LANGUAGE].get(key, key)
    try:
        return template.format(**params)
    except (KeyError, IndexError):
        return template
