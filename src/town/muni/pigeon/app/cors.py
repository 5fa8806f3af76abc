from typing import Dict, List, Optional
from urllib.parse import urlparse


def get_cors_headers(
    origin_value: Optional[str], allowed_origins: List[str]
) -> Dict[str, str]:
    """Return appropriate CORS headers based on the request origin."""
    headers = {
        "Access-Control-Allow-Methods": "GET, OPTIONS",
        "Access-Control-Allow-Headers": "Authorization, Content-Type",
        "Vary": "Origin",
    }

    if "*" in allowed_origins:
        headers["Access-Control-Allow-Origin"] = "*"
    elif origin_value:
        parsed = urlparse(origin_value)
        base = f"{parsed.scheme}://{parsed.netloc}" if parsed.scheme and parsed.netloc else origin_value

        if base in allowed_origins:
            headers["Access-Control-Allow-Origin"] = origin_value

    return headers
