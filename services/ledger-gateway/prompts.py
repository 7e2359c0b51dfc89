"""Extraction instructions for handwritten sign-in forms.

Two layouts: a flat form (one value per field) and a sign-in sheet (a header
block plus one row per worker). Both end with strict JSON-only output rules.
"""

from models import FieldDefinition

_UNREADABLE_RULE = (
    "If a field is completely unreadable or left blank, set its value to null"
)

_JSON_SUFFIX = """

CRITICAL OUTPUT RULES:
- Return ONLY a single valid JSON value. No other text before or after.
- Do NOT include any preamble, explanation, or markdown formatting.
- Do NOT wrap in code fences. Just raw JSON."""


def _field_lines(fields: list[FieldDefinition]) -> str:
    return "\n".join(
        f'- {field.display_label} ({field.type}) -> key "{field.name}"' for field in fields
    )


def build_flat_prompt(fields: list[FieldDefinition]) -> str:
    return (
        "Extract data from this handwritten form. The form contains these fields:\n"
        f"{_field_lines(fields)}\n\n"
        "For each field return a JSON object with:\n"
        '{ "field_name": <key>, "extracted_value": string or null, "confidence": number 0-1 }\n\n'
        f"{_UNREADABLE_RULE} and confidence to 0.\n"
        "Dates should be written as YYYY-MM-DD.\n"
        "Return a JSON array with exactly one object per field."
        + _JSON_SUFFIX
    )


def build_row_prompt(header_fields: list[FieldDefinition], worker_fields: list[FieldDefinition]) -> str:
    header_example = ", ".join(f'"{f.name}": "..."' for f in header_fields)
    worker_example = ", ".join(f'"{f.name}": "..."' for f in worker_fields)
    return (
        "You are analyzing a handwritten sign-in sheet.\n"
        "The sheet has a header block that appears once, followed by a table with one "
        "row per worker.\n\n"
        f"Header block fields:\n{_field_lines(header_fields)}\n\n"
        f"Worker row fields (repeat for every filled-in row, top to bottom):\n"
        f"{_field_lines(worker_fields)}\n\n"
        "Return a JSON object of this shape, using EXACTLY these keys:\n"
        f'{{"header": {{{header_example}}}, "workers": [{{{worker_example}}}]}}\n\n'
        "Important:\n"
        f"- {_UNREADABLE_RULE}.\n"
        "- Skip rows that are entirely empty.\n"
        "- Dates should be written as YYYY-MM-DD."
        + _JSON_SUFFIX
    )
