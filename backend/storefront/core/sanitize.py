"""Cleanup for shopper and admin supplied text before it is stored."""

import html
import re

# Everything below 0x20 except tab, newline and carriage return, plus DEL
CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")


def sanitize_text(value: str | None) -> str | None:
    """Strip whitespace and control characters, then HTML-escape.

    Applied to names, delivery instructions, group order names and admin
    copy, all of which are rendered back into the storefront and written
    into Stripe metadata and Shopify order notes.
    """
    if value is None:
        return None
    return html.escape(CONTROL_CHARS.sub("", value).strip(), quote=True)
