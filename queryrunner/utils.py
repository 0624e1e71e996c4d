from urllib.parse import urlencode

UTM_SOURCE_EMAIL = "saved-search-email"
UTM_SOURCE_SLACK = "saved-search-slack"


def search_url(external_url: str, query: str, utm_source: str) -> str:
    """Link to the search results page for ``query``, tagged with where the link was shown."""
    params = urlencode({"q": query, "utm_source": utm_source})
    return f"{external_url.rstrip('/')}/search?{params}"
