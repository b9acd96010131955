from pydantic import AnyUrl, TypeAdapter, ValidationError

_url_adapter = TypeAdapter(AnyUrl)


def parse_and_validate_url(raw: str) -> AnyUrl:
    """
    Parses an absolute URL, rejecting values with no scheme or no host.
    Raises ValueError with a short reason on failure.
    """
    try:
        url = _url_adapter.validate_python(raw)
    except ValidationError as e:
        raise ValueError(f"{raw!r} is not a valid url: {e.errors()[0]['msg']}")
    if not url.scheme:
        raise ValueError(f"{raw!r} url does not contain a valid scheme")
    if not url.host:
        raise ValueError(f"{raw!r} url does not contain a valid hostname")
    return url
