"""
vCard -> ContactRecord transformation.

Like the event parser, this never raises; failures are logged and the
object is skipped.
"""

import logging
from typing import Iterable, Optional

import vobject

from .models import ContactName, ContactRecord, RemoteObject


logger = logging.getLogger(__name__)


def _field(value) -> Optional[str]:
    """Structured vCard fields may come back as lists when they contain commas."""
    if isinstance(value, (list, tuple)):
        value = ' '.join(str(v) for v in value if v)
    value = (value or '').strip()
    return value or None


def _first_value(card, name: str) -> Optional[str]:
    lines = card.contents.get(name, [])
    if not lines:
        return None
    return _field(lines[0].value)


def parse_name(card) -> ContactName:
    formatted = _first_value(card, 'fn')
    family = given = None
    lines = card.contents.get('n', [])
    if lines:
        value = lines[0].value
        if isinstance(value, str):
            parts = value.split(';')
            family = _field(parts[0])
            given = _field(parts[1]) if len(parts) > 1 else None
        else:
            family = _field(value.family)
            given = _field(value.given)
    return ContactName(formatted=formatted, given=given, family=family)


def parse_organization(card) -> Optional[str]:
    lines = card.contents.get('org', [])
    if not lines:
        return None
    value = lines[0].value
    if isinstance(value, (list, tuple)):
        # ORG is "name;unit;unit", only the organization name is kept
        for part in value:
            if part and str(part).strip():
                return str(part).strip()
        return None
    return _field(value)


def parse_contact(obj: RemoteObject) -> Optional[ContactRecord]:
    """
    Parse one vCard into a ContactRecord.

    Returns:
        ContactRecord, or None if the object is not a usable vCard
    """
    if not obj.data or not obj.data.strip():
        logger.warning("Skipping empty vCard", extra={"url": obj.url})
        return None

    try:
        card = vobject.readOne(obj.data)
        if card.name != 'VCARD':
            logger.warning(
                "Skipping non-VCARD object",
                extra={"url": obj.url, "component": card.name},
            )
            return None

        uid = _first_value(card, 'uid')
        if not uid:
            logger.warning("Skipping vCard without UID", extra={"url": obj.url})
            return None

        version = _first_value(card, 'version')

        return ContactRecord(
            uid=uid,
            url=obj.url,
            name=parse_name(card),
            emails=[v for v in (_field(l.value) for l in card.contents.get('email', [])) if v],
            phones=[v for v in (_field(l.value) for l in card.contents.get('tel', [])) if v],
            organization=parse_organization(card),
            version="4.0" if version == "4.0" else "3.0",
            etag=obj.etag,
            _raw=obj.data,
        )
    except Exception as e:
        logger.warning(
            "Failed to parse vCard",
            extra={"url": obj.url, "error": str(e)},
        )
        return None


def parse_contacts(objects: Iterable[RemoteObject]) -> list[ContactRecord]:
    records = []
    for obj in objects:
        record = parse_contact(obj)
        if record is not None:
            records.append(record)
    return records
