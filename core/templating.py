from jinja2 import Environment, FileSystemLoader

from core.config import settings


def format_money(value, currency: str = "") -> str:
    try:
        amount = f"{float(value):.2f}"
    except (TypeError, ValueError):
        amount = "0.00"
    return f"{amount} {currency}".strip()


def create_template_env(templates_dir: str | None = None) -> Environment:
    """Jinja2 environment for generated storefront pages.

    Autoescape is off: merchant text reaching this layer is sanitized upstream and
    pages embed stored HTML fragments. Templates escape catalog- and
    request-derived values explicitly with ``|e``.
    """
    env = Environment(
        loader=FileSystemLoader(searchpath=templates_dir or settings.TEMPLATES_DIR),
        autoescape=False,
        trim_blocks=True,
        lstrip_blocks=True,
        keep_trailing_newline=True,
    )
    env.filters["money"] = format_money
    return env
