"""Manifest (package.json) version checks against curated vulnerability tables."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from .models import SEVERITY_HIGH, SEVERITY_MEDIUM, Finding
from .rules import create_finding

logger = logging.getLogger("riskscan.dependency_analyzer")
logger.addHandler(logging.NullHandler())

VERSION_PATTERN = re.compile(r"(\d+(?:\.\d+){0,3})")
MANIFEST_PATHS = ("/package.json", "/api/package.json")


@dataclass(frozen=True)
class VulnerableRange:
    below: Tuple[int, ...]
    cve: str
    severity: str
    fixed_in: str
    at_least: Tuple[int, ...] = ()


@dataclass(frozen=True)
class MajorBaseline:
    latest: int
    minimum: int


KNOWN_VULNERABILITIES: Dict[str, List[VulnerableRange]] = {
    "lodash": [VulnerableRange((4, 17, 21), "CVE-2021-23337", SEVERITY_HIGH, "4.17.21")],
    "axios": [VulnerableRange((0, 21, 2), "CVE-2021-3749", SEVERITY_MEDIUM, "0.21.2")],
    "express": [VulnerableRange((4, 17, 3), "CVE-2022-24999", SEVERITY_MEDIUM, "4.17.3")],
    "next": [VulnerableRange((12, 1, 0), "CVE-2022-23646", SEVERITY_HIGH, "12.1.0")],
    "react-dom": [
        VulnerableRange((16, 14, 0), "CVE-2021-23654", SEVERITY_MEDIUM, "16.14.0"),
        VulnerableRange((17, 0, 2), "CVE-2021-23654", SEVERITY_MEDIUM, "17.0.2", at_least=(17, 0, 0)),
    ],
}

OUTDATED_MAJORS: Dict[str, MajorBaseline] = {
    "react": MajorBaseline(latest=18, minimum=17),
    "next": MajorBaseline(latest=14, minimum=13),
    "typescript": MajorBaseline(latest=5, minimum=4),
    "webpack": MajorBaseline(latest=5, minimum=4),
}


def parse_version(spec: str) -> Optional[Tuple[int, ...]]:
    cleaned = (spec or "").strip().lstrip("^~=v<> ")
    match = VERSION_PATTERN.match(cleaned)
    if not match:
        return None
    return tuple(int(part) for part in match.group(1).split("."))


def _pad(version: Tuple[int, ...], length: int) -> Tuple[int, ...]:
    return version + (0,) * (length - len(version))


def version_is_older(found: Tuple[int, ...], baseline: Tuple[int, ...]) -> bool:
    length = max(len(found), len(baseline))
    return _pad(found, length) < _pad(baseline, length)


def _matching_range(version: Tuple[int, ...], ranges: List[VulnerableRange]) -> Optional[VulnerableRange]:
    for candidate in ranges:
        if candidate.at_least and version_is_older(version, candidate.at_least):
            continue
        if version_is_older(version, candidate.below):
            return candidate
    return None


def _collect_dependencies(manifest: Dict) -> Dict[str, str]:
    merged: Dict[str, str] = {}
    for section in ("dependencies", "devDependencies"):
        entries = manifest.get(section)
        if isinstance(entries, dict):
            for name, spec in entries.items():
                if isinstance(spec, str):
                    merged.setdefault(name, spec)
    return merged


def analyze_dependencies(manifest_text: str, locator: str = "package.json") -> List[Finding]:
    try:
        manifest = json.loads(manifest_text or "")
    except (json.JSONDecodeError, TypeError):
        logger.info("Manifest %s is not valid JSON; skipping", locator)
        return []
    if not isinstance(manifest, dict):
        return []

    findings: List[Finding] = []
    for name, spec in _collect_dependencies(manifest).items():
        version = parse_version(spec)
        if version is None:
            continue
        location = f"{locator} - {name}"
        evidence = f"{name}@{spec}"

        vulnerable = _matching_range(version, KNOWN_VULNERABILITIES.get(name, []))
        if vulnerable is not None:
            findings.append(
                create_finding(
                    "WSS-DEP-001",
                    location,
                    evidence,
                    description=(
                        f"{name} {spec} is affected by {vulnerable.cve}; upgrade to {vulnerable.fixed_in} or later"
                    ),
                    severity=vulnerable.severity,
                )
            )

        baseline = OUTDATED_MAJORS.get(name)
        if baseline is not None and version[0] < baseline.minimum:
            findings.append(
                create_finding(
                    "WSS-DEP-002",
                    location,
                    evidence,
                    description=(
                        f"{name} major version {version[0]} is outdated; current major is {baseline.latest}"
                    ),
                )
            )
    return findings
