"""Jinja2 rendering of outbound account email bodies."""

from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path

from jinja2 import Environment, FileSystemLoader, StrictUndefined, TemplateError, select_autoescape

from shop_auth.application.ports.notifier_port import MailTemplateKind, NotifierError

_TEMPLATE_DIR = Path(__file__).resolve().parent / "templates"

_TEMPLATE_FILES: dict[MailTemplateKind, str] = {
    MailTemplateKind.EMAIL_VERIFICATION: "email_verification.html",
    MailTemplateKind.PASSWORD_RESET: "password_reset.html",
}


class MailTemplateRenderer:
    """Render one HTML body per template kind with strict variable checking."""

    def __init__(self, *, template_dir: Path | None = None) -> None:
        self._environment = Environment(
            loader=FileSystemLoader(str(template_dir or _TEMPLATE_DIR)),
            autoescape=select_autoescape(["html"]),
            undefined=StrictUndefined,
        )

    def render(self, kind: MailTemplateKind, variables: Mapping[str, str]) -> str:
        try:
            template = self._environment.get_template(_TEMPLATE_FILES[kind])
            return template.render(**variables)
        except TemplateError as exc:
            raise NotifierError(f"failed to render {kind.value} template: {exc}") from exc
