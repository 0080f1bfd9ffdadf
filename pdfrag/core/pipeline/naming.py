from urllib.parse import urlsplit

DOCUMENT_EXTENSION = ".pdf"
DEFAULT_NAME = "document"


def resolve_file_name(url: str) -> str:
    """
    Derives the canonical file name for a source URL.

    Takes the last path segment, drops any query string or fragment and forces
    the .pdf suffix (arXiv style URLs such as /pdf/1706.03762 have none).

    >>> resolve_file_name("https://x.org/pdf/1706.03762?lang=en")
    '1706.03762.pdf'
    """
    last = urlsplit(url.strip()).path.rsplit("/", 1)[-1]
    if not last:
        last = DEFAULT_NAME
    if not last.lower().endswith(DOCUMENT_EXTENSION):
        last += DOCUMENT_EXTENSION
    return last
