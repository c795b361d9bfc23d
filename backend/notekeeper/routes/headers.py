"""
NoteKeeper Backend — Response Header Helpers
==============================================

What:  Builds the Location and Content-Disposition values for routes that
       echo attachment ids or archive ids back to the client.
How:   HTTP header values are latin-1 on the wire, while ids may be any
       Unicode the store accepts. Locations carry the ids percent-encoded;
       downloads carry an ASCII `filename` plus an RFC 5987 `filename*`.
Who:   routes/attachments.py, routes/archives.py
"""

from urllib.parse import quote

from fastapi import Request


def url_for_path(request: Request, name: str, **path_params: str) -> str:
    """`request.url_for` with each path parameter percent-encoded."""
    encoded = {key: quote(value, safe="") for key, value in path_params.items()}
    return str(request.url_for(name, **encoded))


def content_disposition(filename: str) -> str:
    """
    Content-Disposition for a download named `filename`.

    Example:
        >>> content_disposition("文件.png")
        'attachment; filename="__.png"; filename*=UTF-8\\'\\'%E6%96%87%E4%BB%B6.png'
    """
    fallback = "".join(
        ch if " " <= ch <= "~" and ch not in '"\\' else "_"
        for ch in filename
    )
    return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{quote(filename, safe='')}"
