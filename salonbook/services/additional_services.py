"""
Add-on services travel inside the appointment notes:

    Serviços Adicionais: Escova (30min - R$ 25.00), Hidratação (20min - R$ 40.00)

Booking writes that line; availability reads the durations and revenue
posting reads the prices.
"""
import re
from typing import Iterable, Optional

from salonbook.models.db_models import Service

ADDITIONAL_SERVICES_LABEL = "Serviços Adicionais:"
ADDITIONAL_SERVICES_RE = re.compile(r"Serviços Adicionais:\s*(.+?)(?:\n\n|$)", re.S)
ADDITIONAL_SERVICE_RE = re.compile(r"([^(,]+?)\s*\((\d+)min\s*-\s*R\$\s*([\d,]+(?:\.\d{2})?)\)")


def parse_additional_services(notes: Optional[str]) -> list[dict]:
    if not notes:
        return []
    block = ADDITIONAL_SERVICES_RE.search(notes)
    if not block:
        return []

    services = []
    for name, duration, price in ADDITIONAL_SERVICE_RE.findall(block.group(1)):
        services.append({
            "name": name.strip(),
            "duration": int(duration),
            "price": float(price.replace(",", "")),
            "type": "additional",
        })
    return services


def format_additional_services(services: Iterable[Service], notes: Optional[str] = None) -> Optional[str]:
    """Appends the add-on line to the client's notes. None when both are empty."""
    notes = notes.strip() if notes and notes.strip() else None
    items = [
        f"{s.name} ({s.duration_minutes or 0}min - R$ {float(s.price or 0):.2f})"
        for s in services or []
    ]
    if not items:
        return notes

    line = f"{ADDITIONAL_SERVICES_LABEL} {', '.join(items)}"
    return f"{notes}\n\n{line}" if notes else line
