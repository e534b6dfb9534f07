"""Text sanitization for labels coming from the field descriptor source."""

import re
from typing import Any


def sanitize_label(text: Any) -> Any:
    """
    Remove HTML tags and control characters from a label; pass through non-strings unchanged.

    Descriptor labels are typed by administrators and occasionally carry markup
    copied from rich text editors. They end up inside validation messages, so
    they are cleaned once when the schema is built.

    Examples:
        >>> sanitize_label('<b>Peso</b> bruto')
        'Peso bruto'
        >>> sanitize_label('Linha1\\nLinha2')
        'Linha1 Linha2'
        >>> sanitize_label(None) is None
        True
    """
    if not isinstance(text, str):
        return text

    clean_text = re.sub(r"<[^>]+>", "", text)
    clean_text = re.sub(r'[\x00-\x1f\x7f-\x9f]', ' ', clean_text)

    return " ".join(clean_text.split())
