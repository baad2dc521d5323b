"""
Formatting of shoes and retrieved documents for prompts.
"""
from typing import Any, Dict, List, Optional

from langchain_core.documents import Document

NO_SHOES_MESSAGE = "No relevant shoes found in the database."


def _number(value: Optional[float]) -> str:
    if value is None:
        return "unknown"
    return f"{value:g}"


def format_shoe(shoe: Dict[str, Any]) -> str:
    lines = [f"## {shoe.get('brand', '')} {shoe.get('model', '')}".rstrip()]

    lines.append("### Specifications")
    lines.append(f"- Forefoot Stack Height: {_number(shoe.get('forefoot_stack_height_mm'))}mm")
    lines.append(f"- Heel Stack Height: {_number(shoe.get('heel_stack_height_mm'))}mm")
    lines.append(f"- Drop: {_number(shoe.get('drop_mm'))}mm")
    lines.append(f"- Fit: {shoe.get('fit') or 'unknown'}")
    lines.append(f"- Wide Option: {'Yes' if shoe.get('wide_option') else 'No'}")
    if shoe.get("intended_use"):
        lines.append(f"- Intended Use: {shoe['intended_use']}")
    if shoe.get("description"):
        lines.append(f"- Description: {shoe['description']}")

    genders = shoe.get("genders") or []
    if genders:
        lines.append("### Gender Specific information")
        for version in genders:
            line = f"- {version.get('gender')} version"
            if version.get("price_rrp"):
                line += f", RRP: ${_number(version['price_rrp'])}"
            if version.get("price"):
                line += f", Current Price: ${_number(version['price'])}"
            if version.get("weight_grams") is not None:
                line += f", Weight: {_number(version['weight_grams'])}g"
            lines.append(line)

    reviews = shoe.get("reviews") or []
    if reviews:
        lines.append("### Reviews")
        for review in reviews:
            for label, key in (("Fit", "fit"), ("Feel", "feel"), ("Durability", "durability")):
                if review.get(key):
                    lines.append(f"- {label}: {review[key]}")
            if review.get("source_url"):
                lines.append(f"- Source: {review['source_url']}")

    return "\n".join(lines)


def format_shoe_data(shoes: List[Dict[str, Any]]) -> str:
    """Render shoes as Markdown sections for inclusion in a prompt."""
    if not shoes:
        return NO_SHOES_MESSAGE
    return "\n\n".join(format_shoe(shoe) for shoe in shoes)


def format_doc(doc: Document) -> str:
    metadata = doc.metadata or {}
    attributes = "".join(
        f" {key}={value}" for key, value in metadata.items()
        if key in ("source", "title", "last_modified")
    )
    return f"<document{attributes}>\n{doc.page_content}\n</document>"


def format_docs(docs: Optional[List[Document]]) -> str:
    """Wrap retrieved documents in XML-like tags for the response prompt."""
    if not docs:
        return "<documents></documents>"
    formatted = "\n".join(format_doc(doc) for doc in docs)
    return f"<documents>\n{formatted}\n</documents>"


def render_template(template: str, **values: Any) -> str:
    """
    Substitute ``{name}`` placeholders without interpreting other braces.

    Custom templates may contain literal braces, so str.format is not used.
    """
    for key, value in values.items():
        template = template.replace("{" + key + "}", str(value))
    return template
