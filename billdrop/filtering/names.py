"""Service-name guessing from subjects and sender addresses."""

from email.utils import parseaddr

from billdrop.filtering.patterns import PatternTables

# Second-level labels that sit under a country code (acme.co.uk → acme).
_SECOND_LEVEL_LABELS = frozenset({"co", "com", "org", "net", "ac", "gov", "edu"})


def title_case(name: str) -> str:
    """'acme  widgets' → 'Acme Widgets' (whitespace collapsed)."""
    return " ".join(w[:1].upper() + w[1:].lower() for w in name.split())


def _clean_name(raw: str, stopwords: frozenset[str]) -> str | None:
    words = raw.split()
    while words and words[0].lower() in stopwords:
        words.pop(0)
    while words and words[-1].lower() in stopwords:
        words.pop()
    if not words:
        return None
    return title_case(" ".join(words))


def extract_dynamic_service_name(
    subject: str, sender: str, tables: PatternTables | None = None
) -> str | None:
    """Guess a service name from phrasing like "Receipt from X" or "Your X invoice".

    The subject is tried before the sender's display name; the address part of
    the sender is never used here (see ``company_from_sender``).
    """
    tables = tables or PatternTables.default()
    display_name, _ = parseaddr(sender)
    for text in (subject, display_name):
        if not text:
            continue
        for pattern in tables.compiled_dynamic_names:
            match = pattern.search(text)
            if match is None:
                continue
            name = _clean_name(match.group("name"), tables.name_stopwords)
            if name:
                return name
    return None


def sender_domain_label(sender: str) -> str | None:
    """Return the registrable label of the sender's domain.

    'Netflix <info@mailer.netflix.com>' → 'netflix',
    'billing@acme.co.uk' → 'acme'.
    """
    _, address = parseaddr(sender)
    if "@" not in address:
        return None
    labels = [label for label in address.rsplit("@", 1)[1].lower().split(".") if label]
    if len(labels) < 2:
        return None
    if len(labels) >= 3 and labels[-2] in _SECOND_LEVEL_LABELS and len(labels[-1]) == 2:
        return labels[-3]
    return labels[-2]


def company_from_sender(sender: str, tables: PatternTables | None = None) -> str | None:
    """Plausible company name from the sender's domain, skipping webmail hosts."""
    tables = tables or PatternTables.default()
    label = sender_domain_label(sender)
    if not label or label in tables.generic_domains:
        return None
    return title_case(label.replace("-", " "))
