"""
HTML and plain-text responses for action outcomes.

Pages are deliberately minimal: one sentence, an optional confirmation form
(with identifier checkboxes and the CAPTCHA widget) and an optional refresh
for outcomes that are still being processed.
"""

import html

from fastapi.responses import HTMLResponse, PlainTextResponse

from app.config import settings
from app.models.domain.action_domain import ActionResult, MachineResult
from app.utils.messages import translate

PAGE_TEMPLATE = """<!DOCTYPE html>
<html lang="{language}">
<head>
<meta charset="utf-8">
<meta name="viewport" content="width=device-width, initial-scale=1">
<meta name="robots" content="noindex, nofollow">
{refresh}<title>{title}</title>
{script}</head>
<body>
<p>{message}</p>
{form}</body>
</html>
"""


def render_action_page(
    result: ActionResult,
    language: str = "en",
    form_action: str | None = None,
) -> HTMLResponse:
    """
    Build the HTML page for an action result.

    Args:
        result: Outcome returned by the dispatcher
        language: Negotiated page language
        form_action: URL the confirmation form posts to (the ticket path)

    Returns:
        HTMLResponse: Page with the result's HTTP status
    """
    message = translate(result.message_key, language, **result.params)

    refresh = ""
    if result.refresh_seconds:
        refresh = f'<meta http-equiv="refresh" content="{int(result.refresh_seconds)}">\n'

    show_form = form_action is not None and (result.confirm or bool(result.choices))
    show_widget = show_form and result.show_captcha and settings.captcha_enabled()

    script = ""
    if show_widget:
        script = f'<script src="{html.escape(settings.CAPTCHA_SCRIPT_URL)}" async defer></script>\n'

    form = _render_form(result, language, form_action, show_widget) if show_form else ""

    page = PAGE_TEMPLATE.format(
        language=html.escape(language),
        refresh=refresh,
        title=html.escape(translate("page_title", language)),
        script=script,
        message=html.escape(message),
        form=form,
    )
    return HTMLResponse(content=page, status_code=result.http_status)


def _render_form(
    result: ActionResult, language: str, form_action: str, show_widget: bool
) -> str:
    lines = [f'<form method="post" action="{html.escape(form_action)}">']

    for choice in result.choices:
        value = html.escape(choice)
        lines.append(
            f'<label><input type="checkbox" name="identifier" value="{value}"> {value}</label><br>'
        )

    if show_widget:
        lines.append(
            f'<div class="h-captcha" data-sitekey="{html.escape(settings.CAPTCHA_SITE_KEY or "")}"></div>'
        )

    button_key = "button_block" if result.choices else "button_confirm"
    lines.append(f'<button type="submit">{html.escape(translate(button_key, language))}</button>')
    lines.append("</form>")
    return "\n".join(lines) + "\n"


def render_error_page(status_code: int, message_key: str, language: str = "en") -> HTMLResponse:
    page = PAGE_TEMPLATE.format(
        language=html.escape(language),
        refresh="",
        title=html.escape(translate("page_title", language)),
        script="",
        message=html.escape(translate(message_key, language)),
        form="",
    )
    return HTMLResponse(content=page, status_code=status_code)


def render_machine_result(result: MachineResult) -> PlainTextResponse:
    return PlainTextResponse(content=result.body + "\n", status_code=result.http_status)
