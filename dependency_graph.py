"""
Dependency Graph
Parent, bundled-child and variation relationships between addons
"""

import logging

log = logging.getLogger(__name__)


def _entry(addon):
    return getattr(addon, 'entry', addon)


def parents_of(addon, installed):
    """Installed addons (other than addon) listing addon's main folder.

    Args:
        addon: InstalledAddon or CatalogEntry
        installed: dict - folder -> InstalledAddon

    Returns:
        list - Parent InstalledAddon objects
    """
    entry = _entry(addon)
    main = entry.main_folder
    if main is None:
        return []
    return [
        other for other in installed.values()
        if other.id != entry.id and main in other.entry.folder_names
    ]


def children_of(addon, installed):
    """Installed addons (other than addon) whose main folder addon lists."""
    entry = _entry(addon)
    folders = set(entry.folder_names)
    return [
        other for other in installed.values()
        if other.id != entry.id and other.entry.main_folder in folders
    ]


def all_descendants(addon, installed):
    """Transitive closure of children_of, safe against cycles.

    Returns:
        list - Descendants in depth-first discovery order, without addon itself
    """
    root_id = _entry(addon).id
    visited = {root_id}
    ordered = []
    stack = [addon]
    while stack:
        current = stack.pop()
        for child in children_of(current, installed):
            if child.id in visited:
                continue
            visited.add(child.id)
            ordered.append(child)
            stack.append(child)
    return ordered


def root_of(entry, catalog_by_id):
    """Follow variation_of links up to the root entry.

    A link to an unknown id ends the walk; a cycle ends it at the entry
    where the cycle was detected.
    """
    entry = _entry(entry)
    seen = {entry.id}
    current = entry
    while current.variation_of is not None:
        parent = catalog_by_id.get(current.variation_of)
        if parent is None:
            break
        if parent.id in seen:
            log.warning("Variation cycle detected at catalog entry %s", parent.id)
            break
        seen.add(parent.id)
        current = parent
    return current


def family_of(entry, catalog_by_id):
    """The root of an entry's variation chain plus every known variant.

    Returns:
        tuple - (root CatalogEntry, tuple of every family member)
    """
    entry = _entry(entry)
    root = root_of(entry, catalog_by_id)
    members = [root]
    seen = {root.id}
    for variant_id in root.variant_ids:
        variant = catalog_by_id.get(variant_id)
        if variant is not None and variant.id not in seen:
            members.append(variant)
            seen.add(variant.id)
    if entry.id not in seen:
        members.append(entry)
    return root, tuple(members)


def exclusive_children(family, installed):
    """Installed children of installed family members with no installed parent outside the family.

    A standalone addon the family merely bundles has no installed parent
    and is not reported.

    Args:
        family: iterable - CatalogEntry members of one variation family
        installed: dict - folder -> InstalledAddon

    Returns:
        list - InstalledAddon objects that would lose their only parent
    """
    family = list(family)
    family_ids = {member.id for member in family}
    installed_ids = {addon.id for addon in installed.values()}
    found = {}
    for member in family:
        if member.id not in installed_ids:
            continue
        for child in children_of(member, installed):
            if child.id in family_ids or child.id in found:
                continue
            parent_ids = {parent.id for parent in parents_of(child, installed)}
            if parent_ids and parent_ids <= family_ids:
                found[child.id] = child
    return list(found.values())


def same_family(left, right, catalog_by_id):
    return root_of(left, catalog_by_id).id == root_of(right, catalog_by_id).id
