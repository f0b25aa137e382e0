"""Labelled-context protocol.

Each non-empty session section is rendered as its own tagged block, and the
prompt names which block is authoritative for the draft type being extracted.
"""

import json

from backend.app.models.common import DataType, SectionLabel, SectionValue
from backend.app.models.drafts import SECTION_FOR_DATA_TYPE
from backend.app.models.session import Session

_SOURCE_RULES = {
    SectionLabel.skipper_profile: (
        "use ONLY for the skipper's own details: name, bio, experience level, "
        "certifications, skills, boat info."
    ),
    SectionLabel.crew_requirements: (
        "use ONLY for crew skill/experience requirements. NEVER read crew "
        "requirements as the skipper's own skills or experience."
    ),
    SectionLabel.journey_details: (
        "use ONLY for the journey/route step (locations, dates, waypoints). "
        "Ignore for profile and boat steps."
    ),
}


def authoritative_section(data_type: DataType) -> SectionLabel:
    """The one labelled block extraction may read for a data type."""
    return SECTION_FOR_DATA_TYPE[data_type]


def render_section(value: SectionValue) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip()
    return json.dumps(value, sort_keys=True, default=str)


def render_block(label: SectionLabel, value: SectionValue) -> str:
    """One tagged block, or an empty string for an empty section."""
    body = render_section(value)
    return f"{label.tag}:\n{body}" if body else ""


def build_labelled_context(session: Session, data_type: DataType | None = None) -> str:
    """STORED CONTEXT preamble with one tagged block per non-empty section.

    With a data type, the preamble names the block authoritative for it.
    Returns an empty string when every section is empty.
    """
    blocks = [render_block(label, value) for label, value in session.sections().items()]
    blocks = [b for b in blocks if b]
    if not blocks:
        return ""

    lines = ["## STORED CONTEXT", "", "DATA SOURCE RULES:"]
    lines += [f"- {label.tag} -> {rule}" for label, rule in _SOURCE_RULES.items()]
    if data_type is not None:
        label = authoritative_section(data_type)
        lines.append(f"- For {data_type.value}, {label.tag} is authoritative; ignore the other blocks.")
    lines.append("")
    return "\n".join(lines) + "\n" + "\n\n".join(blocks) + "\n"

