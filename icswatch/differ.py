from __future__ import annotations

from icswatch.models import Occurrence, Property


# Regenerated on every fetch, carries no change signal.
VOLATILE_PROPERTIES = frozenset({"DTSTAMP"})


def _stable_properties(occurrence: Occurrence) -> list[Property]:
    return [prop for prop in occurrence.properties if prop.name not in VOLATILE_PROPERTIES]


def _first_by_name(properties: list[Property], name: str) -> Property | None:
    for prop in properties:
        if prop.name == name:
            return prop
    return None


def _property_differs(before: Property, after: Property) -> bool:
    if before.value != after.value:
        return True
    if before.params is None or after.params is None:
        return (before.params is None) != (after.params is None)
    return before.params != after.params


def changed_properties(before: Occurrence, after: Occurrence) -> set[str] | None:
    """Names of the properties that differ between two occurrences, or None."""
    before_props = _stable_properties(before)
    after_props = _stable_properties(after)
    changed: set[str] = set()

    for prop in before_props:
        match = _first_by_name(after_props, prop.name)
        if match is None or _property_differs(prop, match):
            changed.add(prop.name)

    before_names = {prop.name for prop in before_props}
    for prop in after_props:
        if prop.name not in before_names:
            changed.add(prop.name)

    return changed or None
