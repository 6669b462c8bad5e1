import ipaddress

from starlette.requests import Request

UNKNOWN_IP = "unknown"


def _valid_ip(value: str) -> str | None:
    value = value.strip()
    if not value:
        return None
    # "[::1]:443" and "1.2.3.4:80" forms
    if value.startswith("[") and "]" in value:
        value = value[1 : value.index("]")]
    elif value.count(":") == 1:
        value = value.split(":", 1)[0]
    try:
        return str(ipaddress.ip_address(value))
    except ValueError:
        return None


def client_ip_from_headers(forwarded_for: str | None, peer: str | None) -> str:
    """Left-most valid X-Forwarded-For entry, else the socket peer."""
    if forwarded_for:
        for token in forwarded_for.split(","):
            ip = _valid_ip(token)
            if ip:
                return ip
            if token.strip():
                break
    if peer:
        return _valid_ip(peer) or peer
    return UNKNOWN_IP


def get_client_ip(request: Request) -> str:
    peer = request.client.host if request.client else None
    return client_ip_from_headers(request.headers.get("x-forwarded-for"), peer)
