from typing import Iterable, List

DEFAULT_CATEGORIES = [
    {"id": "ssc", "name": "SSC", "icon": "school"},
    {"id": "upsc", "name": "UPSC", "icon": "account_balance"},
    {"id": "jee", "name": "JEE", "icon": "engineering"},
    {"id": "neet", "name": "NEET", "icon": "medical_services"},
    {"id": "gate", "name": "GATE", "icon": "computer"},
    {"id": "banking", "name": "Banking", "icon": "account_balance"},
    {"id": "railway", "name": "Railway", "icon": "train"},
    {"id": "cbse", "name": "CBSE", "icon": "book"},
]

# first matching keyword group wins
ICON_KEYWORDS = [
    (("physics", "chemistry", "chem", "science", "biology"), "science"),
    (("math",), "engineering"),
    (("medical",), "medical_services"),
    (("bank", "finance", "economy"), "account_balance"),
    (("railway", "transport"), "train"),
    (("history", "geography", "social"), "book"),
    (("computer", "programming", "coding"), "computer"),
]


def icon_for_category(name: str) -> str:
    lowered = (name or "").lower()
    for keywords, icon in ICON_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return icon
    return "school"


def slugify(name: str) -> str:
    return "-".join((name or "").lower().split())


def build_categories(subjects: Iterable[str]) -> List[dict]:
    """Defaults first, then every subject not already covered"""
    categories = [dict(c) for c in DEFAULT_CATEGORIES]
    seen = {c["id"] for c in categories} | {c["name"].lower() for c in categories}
    for subject in sorted({s.strip() for s in subjects if s and s.strip()}):
        slug = slugify(subject)
        if slug in seen or subject.lower() in seen:
            continue
        seen.add(slug)
        categories.append({"id": slug, "name": subject, "icon": icon_for_category(subject)})
    return categories
