"""Directory.Packages.props rendering, reading and merging."""

from __future__ import annotations

import os
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from xml.sax.saxutils import quoteattr

import structlog

from cpm_migrate.exceptions import FileOperationError
from cpm_migrate.models.options import ConflictStrategy
from cpm_migrate.models.package import VersionMap, add_version
from cpm_migrate.version_resolver import VersionResolver

log = structlog.get_logger(__name__)

PROPS_FILE_NAME = "Directory.Packages.props"
_CPM_PROPERTY = "ManagePackageVersionsCentrally"


@dataclass
class MergeOutcome:
    text: str
    added: int
    updated: int
    had_conditional_entries: bool


def resolve_all(
    version_map: VersionMap,
    strategy: ConflictStrategy,
    resolver: VersionResolver,
    overrides: dict[str, str] | None = None,
) -> dict[str, str]:
    """One version per package, honouring user-picked overrides."""
    overrides = overrides or {}
    resolved: dict[str, str] = {}
    for name in sorted(version_map):
        versions = version_map[name]
        if not versions:
            continue
        resolved[name] = overrides.get(name) or resolver.resolve_version(versions, strategy)
    return resolved


def render_manifest(
    version_map: VersionMap,
    strategy: ConflictStrategy = ConflictStrategy.HIGHEST,
    resolver: VersionResolver | None = None,
    overrides: dict[str, str] | None = None,
) -> str:
    resolver = resolver or VersionResolver()
    lines = [
        "<Project>",
        "  <PropertyGroup>",
        f"    <{_CPM_PROPERTY}>true</{_CPM_PROPERTY}>",
        "  </PropertyGroup>",
        "  <ItemGroup>",
    ]
    for name, version in resolve_all(version_map, strategy, resolver, overrides).items():
        lines.append(f"    <PackageVersion Include={quoteattr(name)} Version={quoteattr(version)} />")
    lines += ["  </ItemGroup>", "</Project>", ""]
    return "\n".join(lines)


# ── existing files ──


def _local(tag: object) -> str:
    return tag.rsplit("}", 1)[-1] if isinstance(tag, str) else ""


def _parse(path: str) -> ET.ElementTree:
    if not os.path.isfile(path):
        raise FileOperationError(f"Props file not found: {path}") from FileNotFoundError(path)
    parser = ET.XMLParser(target=ET.TreeBuilder(insert_comments=True))
    try:
        return ET.parse(path, parser=parser)
    except (OSError, ET.ParseError) as e:
        raise FileOperationError(f"Cannot read '{path}': {e}") from e


def _package_versions(root: ET.Element):
    """Yield ``(item_group, item, package_name)`` for each PackageVersion."""
    for group in root:
        if _local(group.tag) != "ItemGroup":
            continue
        for item in group:
            if _local(item.tag) != "PackageVersion":
                continue
            name = (item.get("Include") or item.get("Update") or "").strip()
            if name:
                yield group, item, name


def _item_version(item: ET.Element) -> str | None:
    if item.get("Version"):
        return item.get("Version").strip()
    for child in item:
        if _local(child.tag) == "Version" and child.text:
            return child.text.strip()
    return None


def _set_item_version(item: ET.Element, version: str) -> None:
    for child in item:
        if _local(child.tag) == "Version":
            child.text = version
            return
    item.set("Version", version)


def read_existing_versions(path: str) -> tuple[VersionMap, bool]:
    """Versions pinned in an existing props file, plus whether any are conditional."""
    root = _parse(path).getroot()
    version_map: VersionMap = {}
    conditional = False
    for group, item, name in _package_versions(root):
        if group.get("Condition") or item.get("Condition"):
            conditional = True
        version = _item_version(item)
        if version:
            add_version(version_map, name, version)
    return version_map, conditional


def merge_into_existing(
    path: str,
    version_map: VersionMap,
    strategy: ConflictStrategy = ConflictStrategy.HIGHEST,
    resolver: VersionResolver | None = None,
    overrides: dict[str, str] | None = None,
) -> MergeOutcome:
    """Update mismatched entries and append missing ones to an existing props file."""
    resolver = resolver or VersionResolver()
    tree = _parse(path)
    root = tree.getroot()
    ns = root.tag[: root.tag.index("}") + 1] if root.tag.startswith("{") else ""
    if ns:
        ET.register_namespace("", ns[1:-1])

    items: dict[str, list[ET.Element]] = {}
    target_group: ET.Element | None = None
    conditional = False
    for group, item, name in _package_versions(root):
        if group.get("Condition") or item.get("Condition"):
            conditional = True
        elif target_group is None:
            target_group = group
        items.setdefault(name, []).append(item)

    _ensure_cpm_property(root, ns)
    if target_group is None:
        target_group = ET.SubElement(root, f"{ns}ItemGroup")

    added = updated = 0
    for name, version in resolve_all(version_map, strategy, resolver, overrides).items():
        existing = items.get(name)
        if existing is None:
            ET.SubElement(target_group, f"{ns}PackageVersion", {"Include": name, "Version": version})
            added += 1
            continue
        changed = False
        for item in existing:
            if (_item_version(item) or "").lower() != version.lower():
                _set_item_version(item, version)
                changed = True
        if changed:
            updated += 1

    ET.indent(tree, space="  ")
    text = ET.tostring(root, encoding="unicode") + "\n"
    log.debug("props.merged", path=path, added=added, updated=updated)
    return MergeOutcome(text=text, added=added, updated=updated, had_conditional_entries=conditional)


def _ensure_cpm_property(root: ET.Element, ns: str) -> None:
    for group in root:
        if _local(group.tag) != "PropertyGroup":
            continue
        for prop in group:
            if _local(prop.tag) == _CPM_PROPERTY:
                return
    group = next(
        (g for g in root if _local(g.tag) == "PropertyGroup" and not g.get("Condition")),
        None,
    )
    if group is None:
        group = ET.Element(f"{ns}PropertyGroup")
        root.insert(0, group)
    ET.SubElement(group, f"{ns}{_CPM_PROPERTY}").text = "true"
