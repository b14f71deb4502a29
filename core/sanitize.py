"""Plain-text cleaning for free-form fields (names, notes, reasons)."""
import bleach


def clean_text(value) -> str:
    """Strip every tag from ``value`` and trim surrounding whitespace.

    Ampersands come back as typed; ``<`` and ``>`` that were text rather
    than markup stay entity-escaped.
    """
    cleaned = bleach.clean(str(value or ''), tags=set(), attributes={}, strip=True, strip_comments=True)
    return cleaned.replace('&amp;', '&').strip()
