"""Read PackageReferences from project files and strip their versions."""

from __future__ import annotations

import os
import re
import xml.etree.ElementTree as ET
from xml.sax.saxutils import unescape

import structlog

from cpm_migrate.exceptions import FileOperationError
from cpm_migrate.models.package import PackageReference, VersionMap, add_version
from cpm_migrate.reporting.base import Reporter

log = structlog.get_logger(__name__)

_MSBUILD_NS = "{http://schemas.microsoft.com/developer/msbuild/2003}"

# Textual rewrite keeps the rest of the file byte-for-byte.
_ELEMENT_RE = re.compile(
    r"<PackageReference\b(?P<attrs>[^>]*?)(?:/>|>(?P<body>.*?)</PackageReference\s*>)",
    re.DOTALL,
)
_INCLUDE_ATTR_RE = re.compile(r"""\bInclude\s*=\s*(["'])(?P<value>.*?)\1""")
_VERSION_ATTR_RE = re.compile(r"""\s+Version\s*=\s*(["'])(?P<value>.*?)\1""")
_VERSION_CHILD_RE = re.compile(r"\s*<Version>\s*(?P<value>[^<]*?)\s*</Version\s*>")
_COMMENT_RE = re.compile(r"<!--.*?-->", re.DOTALL)
_XML_ENTITIES = {"&quot;": "\"", "&apos;": "'"}


def _text(element: ET.Element | None) -> str | None:
    if element is None:
        return None
    return element.text.strip() if element.text else None


def project_name(project_path: str) -> str:
    return os.path.splitext(os.path.basename(project_path))[0]


def _read(path: str) -> str:
    try:
        with open(path, encoding="utf-8-sig", newline="") as f:
            return f.read()
    except OSError as e:
        raise FileOperationError(f"Cannot read '{path}': {e}") from e


class ProjectFileScanner:
    """Scanner for SDK-style and legacy (namespaced) MSBuild project files."""

    def __init__(self, reporter: Reporter | None = None):
        self.reporter = reporter

    def scan_project(self, project_path: str) -> tuple[list[PackageReference], bool]:
        """Return the versioned PackageReferences of a project (read-only).

        The flag is False when the file cannot be read or is not valid XML.
        """
        name = project_name(project_path)
        try:
            root = ET.fromstring(_read(project_path))
        except (FileOperationError, ET.ParseError) as e:
            log.warning("project.scan_failed", project=project_path, error=str(e))
            if self.reporter is not None:
                self.reporter.warn(f"Could not read project {os.path.basename(project_path)}: {e}")
            return [], False

        refs: list[PackageReference] = []
        for ns in ("", _MSBUILD_NS):
            for el in root.iter(f"{ns}PackageReference"):
                package = el.get("Include")
                version = el.get("Version") or _text(el.find(f"{ns}Version"))
                if not package or not version:
                    continue
                refs.append(
                    PackageReference(
                        package_name=package.strip(),
                        version=version.strip(),
                        project_path=os.path.abspath(project_path),
                        project_name=name,
                    )
                )
        return refs, True

    def transform_project(
        self,
        project_path: str,
        version_map: VersionMap,
        keep_version_attribute: bool = False,
    ) -> str:
        """Return the project text with PackageReference versions removed.

        Every versioned reference is also recorded in ``version_map``. With
        ``keep_version_attribute`` the text is returned unchanged.
        """
        content = _read(project_path)
        comments = [m.span() for m in _COMMENT_RE.finditer(content)]

        def in_comment(pos: int) -> bool:
            return any(start <= pos < end for start, end in comments)

        def rewrite(m: re.Match) -> str:
            if in_comment(m.start()):
                return m.group(0)
            include = _INCLUDE_ATTR_RE.search(m.group("attrs"))
            if include is None:
                return m.group(0)
            package = unescape(include.group("value").strip(), _XML_ENTITIES)

            attr = _VERSION_ATTR_RE.search(m.group("attrs"))
            body = m.group("body")
            child = _VERSION_CHILD_RE.search(body) if body else None
            if attr and attr.group("value").strip():
                version = unescape(attr.group("value").strip(), _XML_ENTITIES)
            elif child and child.group("value"):
                version = unescape(child.group("value"), _XML_ENTITIES)
            else:
                return m.group(0)
            add_version(version_map, package, version)
            if keep_version_attribute:
                return m.group(0)

            # Strip the attribute and the child element alike.
            cuts = []
            if attr:
                cuts.append((m.start("attrs") + attr.start(), m.start("attrs") + attr.end()))
            if child:
                cuts.append((m.start("body") + child.start(), m.start("body") + child.end()))
            element = m.group(0)
            for start, end in reversed(cuts):
                element = element[: start - m.start()] + element[end - m.start():]
            return element

        transformed = _ELEMENT_RE.sub(rewrite, content)
        log.debug("project.transformed", project=project_path, changed=transformed != content)
        return transformed
