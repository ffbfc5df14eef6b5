from __future__ import annotations

import unicodedata
from typing import Dict, List, Optional


SERVICES: List[Dict[str, str]] = sorted(
    [
        {"name": "Cardiology", "icon": "heart-pulse"},
        {"name": "Dentistry", "icon": "tooth-outline"},
        {"name": "ENT (Otolaryngology)", "icon": "ear-hearing"},
        {"name": "Gastroenterology", "icon": "stomach"},
        {"name": "Gynecology", "icon": "gender-female"},
        {"name": "Neurology", "icon": "brain"},
        {"name": "Oncology", "icon": "ribbon"},
        {"name": "Ophthalmology", "icon": "eye-outline"},
        {"name": "Orthopedics", "icon": "walk"},
        {"name": "Pediatrics", "icon": "baby-face-outline"},
        {"name": "Psychiatry", "icon": "emoticon-outline"},
        {"name": "Pulmonology", "icon": "lungs"},
        {"name": "Radiology", "icon": "radiology-box"},
        {"name": "Urology", "icon": "water"},
    ],
    key=lambda s: s["name"].lower(),
)


def greeting(name: Optional[str]) -> str:
    """
    Examples:
      None -> 'User'
      'Asha Patel' -> 'Asha Patel'
      'Dr. Christopher Montgomery' -> 'Dr. Christopher ...'
    """
    if not name:
        return "User"
    return f"{name[:17]}..." if len(name) > 20 else name


def toggle_service(current: Optional[str], name: str) -> Optional[str]:
    return None if current == name else name


def _sort_key(v) -> str:
    """
    Case- and accent-insensitive, so 'Émile' sorts with the E's.
    Examples:
      'Émile' -> 'emile'
      None -> ''
    """
    if not isinstance(v, str):
        return ""
    decomposed = unicodedata.normalize("NFKD", v)
    return "".join(c for c in decomposed if not unicodedata.combining(c)).casefold()


def _matches(v, q: str) -> bool:
    # doctors without the field never match, even on an empty query
    return isinstance(v, str) and q in v.lower()


def filter_directory(
    doctors: List[dict],
    search_text: str = "",
    selected_service: Optional[str] = None,
    ascending: bool = True,
) -> dict:
    q = (search_text or "").lower()

    services = [s for s in SERVICES if q in s["name"].lower()]

    matched = [
        d for d in (doctors or [])
        if (_matches(d.get("name"), q) or _matches(d.get("department_name"), q))
        and (not selected_service or d.get("department_name") == selected_service)
    ]
    matched.sort(key=lambda d: _sort_key(d.get("name")), reverse=not ascending)

    return {"services": services, "doctors": matched}
