"""
Read-only XML request templates for the Tally gateway.

Templates are Jinja2 files rendered by `tally_order_sync.codec.templates`.
"""
from pathlib import Path

TEMPLATE_DIR = Path(__file__).parent

TEMPLATES = {
    "optional_vouchers": "optional_vouchers.xml.j2",
    "voucher_detail": "voucher_detail.xml.j2",
    "list_groups": "list_groups.xml.j2",
}


def get_template_path(name: str) -> Path:
    """Get path to a template file."""
    if name not in TEMPLATES:
        raise ValueError(f"Unknown template: {name}. Valid: {list(TEMPLATES.keys())}")
    return TEMPLATE_DIR / TEMPLATES[name]


def load_template(name: str) -> str:
    """Load template contents."""
    return get_template_path(name).read_text(encoding="utf-8")
