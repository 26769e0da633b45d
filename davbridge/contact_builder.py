"""
Typed inputs -> vCard text, built and patched with vobject.
"""

import uuid

import vobject
from vobject.vcard import Name

from .models import CreateContactInput, UpdateContactInput


def split_name(name: str) -> tuple[str, str]:
    """
    Split a display name into (family, given) on the last space.

    "John Doe" -> ("Doe", "John"), "Madonna" -> ("Madonna", "").
    """
    name = name.strip()
    if ' ' not in name:
        return name, ''
    given, family = name.rsplit(' ', 1)
    return family, given.strip()


def _structured_name(name: str) -> Name:
    family, given = split_name(name)
    return Name(family=family, given=given)


def _set_first(card, name: str, value, **params) -> None:
    """Replace the value of the first `name` line, adding one if missing."""
    lines = card.contents.get(name, [])
    if lines:
        lines[0].value = value
        return
    line = card.add(name)
    line.value = value
    for key, param in params.items():
        setattr(line, f'{key}_param', param)


def build_contact(input: CreateContactInput) -> str:
    """Build a vCard 3.0 for a new contact."""
    card = vobject.vCard()
    card.add('version').value = '3.0'
    card.add('uid').value = str(uuid.uuid4())
    card.add('fn').value = input.name
    card.add('n').value = _structured_name(input.name)
    if input.email:
        _set_first(card, 'email', input.email, type='INTERNET')
    if input.phone:
        _set_first(card, 'tel', input.phone)
    if input.organization:
        card.add('org').value = [input.organization]
    return card.serialize(validate=False)


def patch_contact(raw: str, changes: UpdateContactInput) -> str:
    """
    Apply changes to an existing vCard and re-serialize it.

    Only the first EMAIL and first TEL are replaced; further addresses,
    PHOTO, grouped properties and X- properties are left as they are.

    Raises:
        ValueError: if raw is not a vCard.
    """
    card = vobject.readOne(raw)
    if card.name != 'VCARD':
        raise ValueError(f"Expected VCARD, got {card.name}")

    if changes.name is not None:
        _set_first(card, 'fn', changes.name)
        _set_first(card, 'n', _structured_name(changes.name))
    if changes.email is not None:
        _set_first(card, 'email', changes.email, type='INTERNET')
    if changes.phone is not None:
        _set_first(card, 'tel', changes.phone)
    if changes.organization is not None:
        _set_first(card, 'org', [changes.organization])

    return card.serialize(validate=False)
