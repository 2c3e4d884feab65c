"""Auto-submitting redirect form that carries the encrypted envelope to the MITEC 3DS page."""
from pathlib import Path

from jinja2 import Environment, FileSystemLoader

# marketplace/templates
_TEMPLATES_DIR = Path(__file__).resolve().parent.parent.parent / "templates"
_ENV = Environment(loader=FileSystemLoader(str(_TEMPLATES_DIR)), autoescape=True)

AUTO_SUBMIT_DELAY_MS = 3000


def render_redirect_form(action_url: str, form_xml: str, reference: str) -> str:
    # Autoescape turns the envelope into entities; the browser decodes them before posting
    return _ENV.get_template("payment/redirect_form.html").render(
        action_url=action_url,
        form_xml=form_xml,
        reference=reference,
        delay_ms=AUTO_SUBMIT_DELAY_MS,
    )
