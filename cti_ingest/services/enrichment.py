"""Indicator extraction from item text.

Pure functions only: no I/O and no state, so identical input always yields an
identical ``EnrichmentResult``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Pattern, Tuple

from cti_ingest.models.domain import Severity

from .tech_dictionary import boundary_pattern, detect_technologies

CVE_REGEX = re.compile(r"CVE-\d{4}-\d{4,}", re.IGNORECASE)
CWE_REGEX = re.compile(r"CWE-\d{1,6}", re.IGNORECASE)

KNOWN_VENDORS: Dict[str, Tuple[str, ...]] = {
    "Microsoft": ("windows", "azure", "office", "exchange", "teams"),
    "Google": ("chrome", "android", "gmail", "gcp"),
    "Apple": ("macos", "ios", "safari", "iphone", "xcode"),
    "Apache": ("log4j", "struts", "tomcat", "httpd", "kafka"),
    "Oracle": ("java", "mysql", "weblogic", "virtualbox"),
    "VMware": ("vsphere", "esxi", "vcenter"),
    "Cisco": ("ios-xe", "asa", "firepower"),
    "Fortinet": ("fortigate", "fortios", "fortimanager"),
    "Palo Alto": ("pan-os", "cortex", "prisma"),
}

# First match wins, most severe first.
_SEVERITY_RULES: Tuple[Tuple[Severity, Pattern[str]], ...] = (
    (Severity.CRITICAL, re.compile(r"\bcritical\b|cvss[\s:]*(?:9|10)(?!\d)", re.IGNORECASE)),
    (Severity.HIGH, re.compile(r"\bhigh\b|cvss[\s:]*[78](?!\d)", re.IGNORECASE)),
    (Severity.MEDIUM, re.compile(r"\bmedium\b|cvss[\s:]*[4-6](?!\d)", re.IGNORECASE)),
    (Severity.LOW, re.compile(r"\blow\b|cvss[\s:]*[1-3](?!\d)", re.IGNORECASE)),
)

_VENDOR_PATTERNS = [
    (vendor, boundary_pattern([vendor]), [(product, boundary_pattern([product])) for product in products])
    for vendor, products in KNOWN_VENDORS.items()
]


@dataclass(frozen=True)
class EnrichmentResult:
    cves: Tuple[str, ...] = ()
    cwes: Tuple[str, ...] = ()
    tags: Tuple[str, ...] = ()
    vendors: Tuple[str, ...] = ()
    products: Tuple[str, ...] = ()
    severity: Optional[Severity] = None

    def as_columns(self) -> Dict[str, object]:
        return {
            "cves": list(self.cves),
            "cwes": list(self.cwes),
            "tags": list(self.tags),
            "vendors": list(self.vendors),
            "products": list(self.products),
            "severity": self.severity.value if self.severity else None,
        }


def _unique(values: Iterable[str]) -> Tuple[str, ...]:
    return tuple(dict.fromkeys(values))


def extract_identifiers(text: str, pattern: Pattern[str]) -> Tuple[str, ...]:
    return _unique(match.upper() for match in pattern.findall(text))


def detect_vendors(text: str) -> Tuple[Tuple[str, ...], Tuple[str, ...]]:
    """Return ``(vendors, products)``; a product hit also flags its vendor."""
    vendors: List[str] = []
    products: List[str] = []
    for vendor, vendor_pattern, product_patterns in _VENDOR_PATTERNS:
        flagged = bool(vendor_pattern.search(text))
        for product, product_pattern in product_patterns:
            if product_pattern.search(text):
                products.append(product)
                flagged = True
        if flagged:
            vendors.append(vendor)
    return _unique(vendors), _unique(products)


def detect_severity(text: str) -> Optional[Severity]:
    for severity, pattern in _SEVERITY_RULES:
        if pattern.search(text):
            return severity
    return None


def enrich(title: str, summary: Optional[str] = "", content: Optional[str] = "") -> EnrichmentResult:
    full_text = f"{title or ''} {summary or ''} {content or ''}"
    vendors, products = detect_vendors(full_text)
    return EnrichmentResult(
        cves=extract_identifiers(full_text, CVE_REGEX),
        cwes=extract_identifiers(full_text, CWE_REGEX),
        tags=tuple(detect_technologies(full_text)),
        vendors=vendors,
        products=products,
        severity=detect_severity(full_text),
    )
