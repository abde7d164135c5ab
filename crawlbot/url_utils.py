from urllib.parse import urlparse

import tldextract

# Bundled public suffix snapshot only, no network fetch at runtime
_extract = tldextract.TLDExtract(cache_dir=None, suffix_list_urls=())


def canonicalize(url: str) -> str:
    """
    Canonical form used as the deduplication key:
    - fragment removed
    - everything else preserved
    """
    return url.split("#", 1)[0]


def resource_key(url: str) -> str:
    """Key for per-load attempt counting: no query, no fragment."""
    return url.split("#", 1)[0].split("?", 1)[0]


def is_http(url: str) -> bool:
    try:
        return urlparse(url).scheme in ("http", "https")
    except ValueError:
        return False


def registrable_domain(url_or_host: str) -> str:
    """
    Registrable domain (domain + public suffix) of a URL or bare host.
    Uses tldextract so that multi-label suffixes (e.g. co.uk) are kept whole.
    Hosts without a public suffix (localhost, IPs) are returned as-is.
    """
    if not url_or_host:
        return ""
    extracted = _extract(url_or_host)
    if extracted.domain and extracted.suffix:
        return f"{extracted.domain}.{extracted.suffix}".lower()
    host = urlparse(url_or_host).hostname if "://" in url_or_host else url_or_host.split(":")[0]
    return (host or "").lower()


def screenshot_name(url: str, limit: int = 100) -> str:
    """
    File stem for a page screenshot: URL path with . / : % # replaced by '_',
    truncated to `limit` characters.
    """
    path = urlparse(url).path
    name = "".join("_" if c in "./:%#" else c for c in path)
    return name[:limit]

