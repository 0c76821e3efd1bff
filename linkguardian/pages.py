from pathlib import Path
from typing import Optional

from fastapi.responses import HTMLResponse
from jinja2 import Environment, FileSystemLoader, select_autoescape

from .models import Branding, Link

TEMPLATE_DIR = Path(__file__).resolve().parent / "templates"

DEFAULT_PRIMARY = "#3B82F6"
DEFAULT_SECONDARY = "#8B5CF6"


class PageRenderer:
    """Branded HTML pages shown to browsers when a redirect is refused."""

    def __init__(self, app_name: str, app_url: str, template_dir: Path = TEMPLATE_DIR):
        self.app_name = app_name
        self.app_url = app_url
        self._jinja = Environment(
            loader=FileSystemLoader(str(template_dir)),
            autoescape=select_autoescape(["html", "xml"]),
        )

    def _render(self, template: str, status_code: int, branding: Optional[Branding], **context) -> HTMLResponse:
        html = self._jinja.get_template(template).render(
            app_name=self.app_name,
            app_url=self.app_url,
            primary_color=(branding.primary_color if branding else None) or DEFAULT_PRIMARY,
            secondary_color=(branding.secondary_color if branding else None) or DEFAULT_SECONDARY,
            logo=branding.logo if branding else None,
            **context,
        )
        return HTMLResponse(html, status_code=status_code)

    def expired(self, message: str, branding: Optional[Branding] = None) -> HTMLResponse:
        return self._render(
            "expired.html",
            410,
            branding,
            title=(branding.redirect_title if branding else None) or "Link Expired",
            message=(branding.redirect_message if branding else None) or message,
        )

    def password_required(self, link: Link, error: Optional[str] = None, branding: Optional[Branding] = None) -> HTMLResponse:
        return self._render("password.html", 403, branding, short_code=link.short_code, error=error)

    def not_found(self) -> HTMLResponse:
        return self._render("not_found.html", 404, None)
