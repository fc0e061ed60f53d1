from urllib.parse import urlsplit, urlunsplit

from app.errors import ValidationError

ALLOWED_REDIRECT_SCHEMES = {"http", "https"}


def append_template_param(url: str, key: str, placeholder: str) -> str:
    """Append a provider placeholder such as ``{CHECKOUT_SESSION_ID}`` without URL-encoding it."""
    parts = urlsplit(url)
    separator = "&" if parts.query else ""
    updated_query = f"{parts.query}{separator}{key}={placeholder}"
    return urlunsplit((parts.scheme, parts.netloc, parts.path, updated_query, parts.fragment))


def validate_callback_url(url: str, field_name: str) -> str:
    """Validate a client-supplied payment callback URL.

    Allows only absolute HTTP(S) URLs without embedded user credentials.
    """
    parts = urlsplit(url)
    if parts.scheme not in ALLOWED_REDIRECT_SCHEMES or not parts.netloc:
        raise ValidationError(f"{field_name} must be an absolute http(s) URL")
    if parts.username or parts.password:
        raise ValidationError(f"{field_name} must not contain credentials")
    return url
