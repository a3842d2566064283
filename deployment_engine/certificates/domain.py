# deployment_engine/certificates/domain.py
import ipaddress

RESERVED_SUFFIXES = (".local", ".test", ".example", ".invalid", ".localhost")


def _is_ip_literal(host: str) -> bool:
    try:
        ipaddress.ip_address(host.strip("[]"))
        return True
    except ValueError:
        return False


def is_eligible_domain(host) -> bool:
    """
    Can a public CA issue a certificate for this host?

    Runs before any call to the certificate authority.
    """
    if not host:
        return False
    host = host.strip().rstrip(".").lower()

    if host == "localhost":
        return False
    if _is_ip_literal(host):
        return False
    if host.endswith(RESERVED_SUFFIXES) or host in {s.lstrip(".") for s in RESERVED_SUFFIXES}:
        return False
    if "." not in host:
        return False
    return True
