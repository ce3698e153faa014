# ============================================================
# Lithia - Interactive SQL Console
# utils/helpers.py - Password masking and result formatting
# ============================================================

from urllib.parse import urlsplit, urlunsplit

MASK_CHAR = "●"


class Password:
    """A secret that renders masked unless visible is set."""

    def __init__(self, secret: str, visible: bool = False):
        self._secret = secret
        self.visible = visible

    def __str__(self) -> str:
        if self.visible:
            return self._secret
        return MASK_CHAR * len(self._secret)

    def __repr__(self) -> str:
        return f"<Password {MASK_CHAR * 3}>"


def mask_uri(uri: str, visible: bool = False) -> str:
    """
    Replace the password component of a connection URI with mask characters.
    Anything that does not parse as a URI with a password is returned as is.
    """
    try:
        parts = urlsplit(uri)
        password = parts.password
    except ValueError:
        return uri
    if not password:
        return uri

    userinfo, _, hostinfo = parts.netloc.rpartition("@")
    user, _, _ = userinfo.partition(":")
    netloc = f"{user}:{Password(password, visible)}@{hostinfo}"
    return urlunsplit((parts.scheme, netloc, parts.path, parts.query, parts.fragment))


def truncate_string(s: str, max_len: int = 80, suffix: str = "...") -> str:
    if len(s) <= max_len:
        return s
    return s[: max_len - len(suffix)] + suffix


def rows_summary(row_count: int, execution_ms: int) -> str:
    """MySQL CLI style summary line, e.g. '2 rows in set (0.004 sec)'."""
    if row_count == 0:
        return f"Empty set ({execution_ms / 1000:.3f} sec)"
    row_word = "row" if row_count == 1 else "rows"
    return f"{row_count} {row_word} in set ({execution_ms / 1000:.3f} sec)"
