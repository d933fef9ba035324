import html
import uuid
from typing import List, Optional, Tuple

from app.core.exceptions import ValidationError
from app.domains.licensing.terms import LicenseTerms, format_money, stringify_territory


CONTENT_TYPES = {
    "html": "text/html; charset=utf-8",
    "md": "text/markdown; charset=utf-8",
    "txt": "text/plain; charset=utf-8",
}


class ContractRenderer:
    """Рендер человекочитаемого черновика договора из снимка условий"""

    title = "Artwork License Agreement"

    def items(self, terms: LicenseTerms) -> List[Tuple[str, str]]:
        """Пары (подпись, значение) в порядке вывода"""
        rows = [
            ("Purpose", terms.purpose or "—"),
            ("Term", f"{terms.term_months} months"),
            ("Territory", stringify_territory(terms.territory) or "—"),
            ("Media", ", ".join(terms.media) or "—"),
            ("Exclusivity", terms.exclusivity.value),
            ("Fee", format_money(terms.fee)),
        ]

        if terms.start_date:
            rows.append(("Start date", terms.start_date.isoformat()))
        if terms.deliverables:
            rows.append(("Deliverables", terms.deliverables))
        if terms.credit_required is not None:
            credit = "Required" if terms.credit_required else "Not required"
            if terms.credit_line:
                credit = f"{credit} ({terms.credit_line})"
            rows.append(("Credit", credit))
        if terms.sublicense is not None:
            rows.append(("Sublicensing", "Allowed" if terms.sublicense else "Not allowed"))
        if terms.derivative_edits:
            rows.append(("Permitted edits", ", ".join(terms.derivative_edits)))
        if terms.payment_terms:
            rows.append(("Payment", f"Due within {terms.payment_terms.due_days} days"))
        if terms.prohibited_uses:
            rows.append(("Prohibited uses", "; ".join(terms.prohibited_uses)))
        if terms.disputes:
            rows.append(("Disputes", f"{terms.disputes.mode}, governed by the law of {terms.disputes.law}"))
        if terms.usage_notes:
            rows.append(("Notes", terms.usage_notes))

        return rows

    def render(
        self,
        request_id: uuid.UUID,
        terms: LicenseTerms,
        fmt: str = "html",
        artwork_title: Optional[str] = None
    ) -> bytes:
        """Документ в формате html, md или txt"""
        rows = self.items(terms)
        artwork = artwork_title or "Untitled"
        footer = f"Request {request_id}"

        if fmt == "txt":
            lines = [self.title, "", f"Artwork: {artwork}"]
            lines += [f"{label}: {value}" for label, value in rows]
            lines += ["", footer]
            content = "\n".join(lines)
        elif fmt == "md":
            lines = [f"# {self.title}", "", f"**Artwork:** {artwork}", ""]
            lines += [f"- **{label}:** {value}" for label, value in rows]
            lines += ["", f"_{footer}_"]
            content = "\n".join(lines)
        elif fmt == "html":
            body = "\n".join(
                f"<dt>{html.escape(label)}</dt><dd>{html.escape(value)}</dd>" for label, value in rows
            )
            content = f"""<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
    <title>{html.escape(self.title)}</title>
</head>
<body>
    <h1>{html.escape(self.title)}</h1>
    <p>Artwork: {html.escape(artwork)}</p>
    <dl>
{body}
    </dl>
    <footer>{html.escape(footer)}</footer>
</body>
</html>
"""
        else:
            raise ValidationError(f"Unsupported format: {fmt}")

        return content.encode("utf-8")
