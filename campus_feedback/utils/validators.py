import re

# Simple, pragmatic patterns
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_ACADEMIC_YEAR_RE = re.compile(r"^(\d{4})-(\d{2})$")

def clean_str(val, max_len: int = 255):
    """
    Collapse whitespace, trim, enforce max length. Returns None if empty after cleaning.
    """
    if val is None:
        return None
    s = re.sub(r"\s+", " ", str(val)).strip()
    if not s:
        return None
    return s[:max_len]

def is_valid_email(val) -> bool:
    if not val:
        return False
    return bool(_EMAIL_RE.match(val))

def is_valid_academic_year(val) -> bool:
    """'2024-25': the second part must be the year after the first."""
    if not val:
        return False
    m = _ACADEMIC_YEAR_RE.match(val.strip())
    if not m:
        return False
    start, end = int(m.group(1)), int(m.group(2))
    return (start + 1) % 100 == end
