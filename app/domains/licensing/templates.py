from typing import Dict, List

from app.core.exceptions import NotFound
from app.domains.licensing.terms import LicenseTerms


DEFAULT_LICENSE_TERMS = LicenseTerms(
    purpose="Advertising - Social & Web",
    term_months=12,
    territory="Worldwide",
    media=["Web", "Social", "Email"],
    exclusivity="non-exclusive",
    deliverables="Right to use artwork image in campaign creatives.",
    credit_required=True,
    usage_notes="No logo lockups; link back to creator profile when possible.",
    fee={"amount": 1500, "currency": "USD"},
)


class LicenseTemplate:
    """Готовый набор условий для быстрого запроса"""

    def __init__(self, template_id: str, title: str, terms: LicenseTerms):
        self.id = template_id
        self.title = title
        self.terms = terms

    def __repr__(self) -> str:
        return f"LicenseTemplate(id={self.id}, title={self.title})"


LICENSE_TEMPLATES: List[LicenseTemplate] = [
    LicenseTemplate(
        "social-promo",
        "Social Promo (non-exclusive, WW, 6m)",
        LicenseTerms(
            purpose="Advertising - Social & Web",
            term_months=6,
            territory="Worldwide",
            media=["Web", "Social"],
            exclusivity="non-exclusive",
            credit_required=True,
            credit_line="© Creator Name",
            preapproval_required=True,
            approval_sla_days=2,
            prohibited_uses=[
                "Hate, violence or illegal content",
                "Political advertising",
                "AI training or model ingestion",
                "Watermark removal",
            ],
            deliverables="Use on social/web creatives.",
            usage_notes="Link back to creator.",
            fee={"amount": 1200, "currency": "USD"},
            payment_terms={"due_days": 14, "method": "bank"},
            tax={"responsible_party": "licensee"},
            sublicense=False,
            derivative_edits=["resize", "crop"],
        ),
    ),
    LicenseTemplate(
        "paid-ads",
        "Paid Ads (US+CA, 12m)",
        LicenseTerms(
            purpose="Advertising - Paid Media",
            term_months=12,
            territory=["US", "CA"],
            media=["Web", "Social", "Display"],
            exclusivity="non-exclusive",
            fee={"amount": 2500, "currency": "USD"},
            payment_terms={"due_days": 30, "method": "bank"},
            tax={"responsible_party": "licensee"},
            preapproval_required=True,
        ),
    ),
]

_TEMPLATES_BY_ID: Dict[str, LicenseTemplate] = {t.id: t for t in LICENSE_TEMPLATES}


def get_template(template_id: str) -> LicenseTemplate:
    """Поиск шаблона по идентификатору"""
    template = _TEMPLATES_BY_ID.get(template_id)
    if template is None:
        raise NotFound(f"License template '{template_id}' not found")
    return template
