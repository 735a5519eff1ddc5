"""
Structured (XBRL instance) emissions report: serialization and validation.

One fact element per scope total, one repeated block per category
breakdown, plus provenance metadata. The validator separates blocking
errors from non-blocking warnings.
"""
import io
import xml.etree.ElementTree as ET
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Set, Union

from core.exceptions import ReportGenerationError
from core.logger import setup_logger
from core.schema import XBRLData, XBRLValidationResult

logger = setup_logger(__name__)

XBRLI_NS = "http://www.xbrl.org/2003/instance"
XSI_NS = "http://www.w3.org/2001/XMLSchema-instance"
LINK_NS = "http://www.xbrl.org/2003/linkbase"
XLINK_NS = "http://www.w3.org/1999/xlink"
CSRD_NS = "http://eba.europa.eu/xbrl/csrd"
ISO4217_NS = "http://www.xbrl.org/2003/iso4217"

SCHEMA_HREF = "https://eba.europa.eu/xbrl/csrd/csrd-2024-12-31.xsd"
IDENTIFIER_SCHEME = "http://standards.iso.org/iso/17442"
REPORTING_TOOL = "Carbon Ledger Service"

CONTEXT_ID = "entity-context"
EMISSIONS_UNIT_ID = "co2e-kg"

# Prefix -> URI. "" is the default namespace.
NAMESPACES = {
    "": XBRLI_NS,
    "xsi": XSI_NS,
    "link": LINK_NS,
    "xlink": XLINK_NS,
    "csrd": CSRD_NS,
    "iso4217": ISO4217_NS,
}

REQUIRED_NAMESPACE_PREFIXES = ("", "xsi", "csrd")

MANDATORY_FACTS = (
    "Scope1GHGEmissions",
    "Scope2GHGEmissions",
    "Scope3GHGEmissions",
    "TotalGHGEmissions",
)

RECOMMENDED_FACTS = (
    "EntityName",
    "GHGAccountingMethodology",
    "EmissionFactorsSource",
    "CalculationMethod",
    "ReportGenerationDate",
)

def _q(namespace: str, tag: str) -> str:
    return f"{{{namespace}}}{tag}"


def _csrd(parent: ET.Element, tag: str, text: str, **attrib) -> ET.Element:
    element = ET.SubElement(parent, _q(CSRD_NS, tag), attrib)
    element.text = text
    return element


def _emission_fact(parent: ET.Element, tag: str, value: float) -> ET.Element:
    return _csrd(
        parent, tag, f"{value:.2f}",
        contextRef=CONTEXT_ID, unitRef=EMISSIONS_UNIT_ID, decimals="2",
    )


def build_xbrl_tree(data: XBRLData, generated_at: Optional[datetime] = None) -> ET.Element:
    """
    Build the XBRL instance element tree for an emissions snapshot.

    Args:
        data: Entity, period, scope totals and category breakdown
        generated_at: Generation timestamp (defaults to now, UTC)

    Returns:
        Root <xbrl> element
    """
    generated_at = generated_at or datetime.now(timezone.utc)

    root = ET.Element(_q(XBRLI_NS, "xbrl"), {
        "xmlns:xsi": XSI_NS,
        "xmlns:iso4217": ISO4217_NS,
    })

    ET.SubElement(root, _q(LINK_NS, "schemaRef"), {
        _q(XLINK_NS, "type"): "simple",
        _q(XLINK_NS, "href"): SCHEMA_HREF,
    })

    context = ET.SubElement(root, _q(XBRLI_NS, "context"), {"id": CONTEXT_ID})
    entity = ET.SubElement(context, _q(XBRLI_NS, "entity"))
    identifier = ET.SubElement(entity, _q(XBRLI_NS, "identifier"), {"scheme": IDENTIFIER_SCHEME})
    identifier.text = data.entity_identifier
    period = ET.SubElement(context, _q(XBRLI_NS, "period"))
    ET.SubElement(period, _q(XBRLI_NS, "startDate")).text = data.start_date.isoformat()
    ET.SubElement(period, _q(XBRLI_NS, "endDate")).text = data.end_date.isoformat()

    for unit_id, measure in (
        ("currency", f"iso4217:{data.currency}"),
        ("pure", "pure"),
        (EMISSIONS_UNIT_ID, "csrd:CO2EquivalentKilograms"),
    ):
        unit = ET.SubElement(root, _q(XBRLI_NS, "unit"), {"id": unit_id})
        ET.SubElement(unit, _q(XBRLI_NS, "measure")).text = measure

    _csrd(root, "EntityName", data.entity_name, contextRef=CONTEXT_ID)

    summary = data.summary
    _emission_fact(root, "Scope1GHGEmissions", summary.scope1_emissions)
    _emission_fact(root, "Scope2GHGEmissions", summary.scope2_emissions)
    _emission_fact(root, "Scope3GHGEmissions", summary.scope3_emissions)
    _emission_fact(root, "TotalGHGEmissions", summary.total_emissions)

    _csrd(root, "GHGAccountingMethodology", data.framework, contextRef=CONTEXT_ID)
    _csrd(root, "EmissionFactorsSource", data.emission_factors_source, contextRef=CONTEXT_ID)
    _csrd(root, "CalculationMethod", data.calculation_method, contextRef=CONTEXT_ID)

    for index, category in enumerate(data.categories, start=1):
        block = ET.SubElement(root, _q(CSRD_NS, "EmissionCategoryBreakdown"), {"id": f"category-{index}"})
        _csrd(block, "CategoryName", category.name, contextRef=CONTEXT_ID)
        _csrd(block, "Scope", str(category.scope), contextRef=CONTEXT_ID)
        _emission_fact(block, "Emissions", category.emissions)
        _csrd(block, "Description", category.description, contextRef=CONTEXT_ID)

    _csrd(root, "ReportGenerationDate", generated_at.isoformat(), contextRef=CONTEXT_ID)
    _csrd(root, "ReportingTool", REPORTING_TOOL, contextRef=CONTEXT_ID)

    return root


def _register_prefixes() -> None:
    for prefix, uri in NAMESPACES.items():
        # xsi and iso4217 are declared explicitly on the root
        if prefix not in ("xsi", "iso4217"):
            ET.register_namespace(prefix, uri)


def generate_xbrl_document(data: XBRLData, generated_at: Optional[datetime] = None) -> str:
    """Serialize an emissions snapshot to an XBRL instance document string."""
    root = build_xbrl_tree(data, generated_at)
    _register_prefixes()
    ET.indent(root, space="  ")
    body = ET.tostring(root, encoding="unicode")
    return f'<?xml version="1.0" encoding="UTF-8"?>\n{body}\n'


def write_xbrl_document(document: str, output_path: str) -> str:
    """
    Write a serialized document to disk.

    Raises:
        ReportGenerationError: If the file cannot be written
    """
    try:
        path = Path(output_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(document, encoding="utf-8")
    except OSError as e:
        raise ReportGenerationError(
            "Failed to write XBRL document",
            details={"output_path": output_path, "error": str(e)}
        )
    logger.info(f"XBRL document written to {output_path}")
    return output_path


def _declared_namespaces(data: bytes) -> Set[str]:
    """Prefixes declared on the root element ("" for the default namespace)."""
    declared: Set[str] = set()
    for event, item in ET.iterparse(io.BytesIO(data), events=("start-ns", "start")):
        if event == "start":
            break
        prefix, _uri = item
        declared.add(prefix)
    return declared


def validate_xbrl_document(document: Union[str, bytes]) -> XBRLValidationResult:
    """
    Validate the structure of an XBRL instance document.

    Blocking errors: unparseable XML, wrong root element, missing required
    namespace declarations, missing mandatory scope/total facts.
    Warnings: missing recommended facts, non-numeric fact values, no
    category breakdown.

    Args:
        document: Serialized document

    Returns:
        XBRLValidationResult
    """
    errors: List[str] = []
    warnings: List[str] = []

    data = document.encode("utf-8") if isinstance(document, str) else document

    try:
        root = ET.fromstring(data)
        declared = _declared_namespaces(data)
    except ET.ParseError as e:
        return XBRLValidationResult(is_valid=False, errors=[f"Invalid XML: {e}"])

    if root.tag != _q(XBRLI_NS, "xbrl"):
        errors.append("Root element must be xbrl")

    for prefix in REQUIRED_NAMESPACE_PREFIXES:
        if prefix not in declared:
            errors.append(f"Missing required namespace declaration: {'xmlns:' + prefix if prefix else 'xmlns'}")

    for tag in MANDATORY_FACTS:
        element = root.find(_q(CSRD_NS, tag))
        if element is None:
            errors.append(f"Missing required element: csrd:{tag}")
            continue
        try:
            float((element.text or "").strip())
        except ValueError:
            warnings.append(f"Non-numeric value in csrd:{tag}")

    for tag in RECOMMENDED_FACTS:
        if root.find(_q(CSRD_NS, tag)) is None:
            warnings.append(f"Missing recommended element: csrd:{tag}")

    if root.find(_q(CSRD_NS, "EmissionCategoryBreakdown")) is None:
        warnings.append("No emission category breakdown provided")

    if errors:
        logger.warning(f"XBRL validation failed with {len(errors)} error(s): {errors}")

    return XBRLValidationResult(is_valid=not errors, errors=errors, warnings=warnings)
