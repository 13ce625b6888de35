from typing import Any, Dict

LDAP_ESCAPES = {
    "=": "%5C%3D",
    ",": "%5C%2C",
}


def escape_ldap_string(value: str) -> str:
    """Escape the iDRAC query delimiters in a DN or filter: '=' -> %5C%3D, ',' -> %5C%2C."""
    return "".join(LDAP_ESCAPES.get(c, c) for c in value)


def safe_json_parse(response: Any) -> Dict[str, Any]:
    """Safely parse a JSON response, returning a dict with the raw text on failure."""
    try:
        data = response.json()
    except ValueError:
        full_text = response.text if hasattr(response, "text") else str(response.content)
        # Truncated; only used for logging and error messages
        return {"_raw_response": (full_text or "")[:2000], "_parse_error": "Not valid JSON"}

    if isinstance(data, dict):
        return data
    return {"_data": data}
