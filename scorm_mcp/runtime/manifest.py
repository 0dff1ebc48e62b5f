# scorm_mcp/runtime/manifest.py
"""Just enough imsmanifest.xml reading to find a launchable entry and the activity tree."""

from __future__ import annotations

import posixpath
import xml.etree.ElementTree as ET
from pathlib import Path
from urllib.parse import unquote

from pydantic import BaseModel, Field

from scorm_mcp.errors import ErrorCode, ScormMcpError

XML_BASE = "{http://www.w3.org/XML/1998/namespace}base"


class ManifestItem(BaseModel):
    identifier: str
    title: str | None = None
    identifierref: str | None = None
    isvisible: bool = True
    parameters: str | None = None
    children: list[ManifestItem] = Field(default_factory=list)


class ManifestOrganization(BaseModel):
    identifier: str
    title: str | None = None
    items: list[ManifestItem] = Field(default_factory=list)


class ManifestResource(BaseModel):
    identifier: str
    href: str | None = None
    type: str | None = None
    scorm_type: str | None = None
    base: str | None = None


class Manifest(BaseModel):
    identifier: str | None = None
    schemaversion: str | None = None
    base: str | None = None
    default_organization: str | None = None
    organizations: list[ManifestOrganization] = Field(default_factory=list)
    resources: dict[str, ManifestResource] = Field(default_factory=dict)

    def organization(self) -> ManifestOrganization | None:
        for org in self.organizations:
            if org.identifier == self.default_organization:
                return org
        return self.organizations[0] if self.organizations else None


def _local(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _children(el: ET.Element, name: str) -> list[ET.Element]:
    return [c for c in el if _local(c.tag) == name]


def _child(el: ET.Element, name: str) -> ET.Element | None:
    for c in el:
        if _local(c.tag) == name:
            return c
    return None


def _text(el: ET.Element | None) -> str | None:
    if el is None or el.text is None:
        return None
    return el.text.strip() or None


def _attr(el: ET.Element, name: str) -> str | None:
    for key, value in el.attrib.items():
        if _local(key) == name and key != XML_BASE:
            return value
    return None


def _parse_item(el: ET.Element) -> ManifestItem:
    return ManifestItem(
        identifier=el.get("identifier", ""),
        title=_text(_child(el, "title")),
        identifierref=el.get("identifierref"),
        isvisible=(el.get("isvisible", "true").strip().lower() != "false"),
        parameters=el.get("parameters"),
        children=[_parse_item(c) for c in _children(el, "item")],
    )


def parse_manifest(source: str | Path) -> Manifest:
    path = Path(source)
    try:
        root = ET.parse(path).getroot()
    except FileNotFoundError as e:
        raise ScormMcpError(ErrorCode.MANIFEST_NOT_FOUND, f"Manifest not found: {path}") from e
    except ET.ParseError as e:
        raise ScormMcpError(ErrorCode.MANIFEST_NOT_FOUND, f"Manifest is not well-formed XML: {e}") from e

    manifest = Manifest(identifier=root.get("identifier"), base=root.get(XML_BASE))

    metadata = _child(root, "metadata")
    if metadata is not None:
        manifest.schemaversion = _text(_child(metadata, "schemaversion"))

    orgs = _child(root, "organizations")
    if orgs is not None:
        manifest.default_organization = orgs.get("default")
        for org in _children(orgs, "organization"):
            manifest.organizations.append(
                ManifestOrganization(
                    identifier=org.get("identifier", ""),
                    title=_text(_child(org, "title")),
                    items=[_parse_item(i) for i in _children(org, "item")],
                )
            )

    resources = _child(root, "resources")
    if resources is not None:
        resources_base = resources.get(XML_BASE)
        for res in _children(resources, "resource"):
            rid = res.get("identifier")
            if not rid:
                continue
            manifest.resources[rid] = ManifestResource(
                identifier=rid,
                href=res.get("href"),
                type=res.get("type"),
                scorm_type=_attr(res, "scormType") or _attr(res, "scormtype"),
                base=posixpath.join(resources_base or "", res.get(XML_BASE) or "") or None,
            )
    return manifest


def iter_items(items: list[ManifestItem]):
    """Depth-first, document order."""
    for item in items:
        yield item
        yield from iter_items(item.children)


def resolve_launch_href(manifest: Manifest) -> tuple[str, ManifestResource] | None:
    """The href to launch: first visible item with a launchable resource, else any resource."""
    org = manifest.organization()
    if org is not None:
        for item in iter_items(org.items):
            if not item.isvisible or not item.identifierref:
                continue
            res = manifest.resources.get(item.identifierref)
            if res is not None and res.href:
                href = res.href
                if item.parameters:
                    href = href + item.parameters
                return href, res
    for res in manifest.resources.values():
        if res.href:
            return res.href, res
    return None


def resolve_entry_path(package_dir: str | Path) -> Path:
    """Absolute path of the file a learner would launch first."""
    root = Path(package_dir)
    manifest = parse_manifest(root / "imsmanifest.xml")
    found = resolve_launch_href(manifest)
    if found is None:
        raise ScormMcpError(
            ErrorCode.MANIFEST_LAUNCH_NOT_FOUND,
            "No launchable resource found in manifest",
            {"package_path": str(root)},
        )
    href, res = found
    # query strings and fragments do not name a file
    href = unquote(href.split("?", 1)[0].split("#", 1)[0])
    entry = root / (manifest.base or "") / (res.base or "") / href
    if not entry.is_file():
        raise ScormMcpError(
            ErrorCode.MANIFEST_LAUNCH_NOT_FOUND,
            f"Launch file not found: {entry}",
            {"href": href},
        )
    return entry.resolve()
