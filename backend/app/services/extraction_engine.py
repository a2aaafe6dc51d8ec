"""
Document extraction — FRE, synthetic budget and physical-financial schedule.

Files are turned into prompt content first:
  - .xlsx / .xls  -> first sheet as CSV text (pandas)
  - .csv / .txt   -> decoded text
  - PDF / images  -> base64 payload for the vision model

LLM output is cleaned of markdown fences, parsed as JSON and validated into
one of the tagged extraction models. Anything the model returns that cannot be
parsed raises ExtractionError; FRE data that parses but fails field checks
raises ValidationFailed with every failing field, and nothing is applied.
"""
import base64
import io
import json
import logging
import mimetypes
import re
from typing import List, Optional, Tuple, Union

import pandas as pd
from pydantic import ValidationError

from app.agents.tool_schemas import (
    BudgetTemplateExtraction,
    ProjectMetadataExtraction,
    ScheduleExtraction,
    parse_extraction,
)
from app.services import llm_client
from app.services.errors import BoundaryError, ExtractionError, ValidationFailed

logger = logging.getLogger("pls-extraction")

EXCEL_EXTENSIONS = (".xlsx", ".xls")
TEXT_EXTENSIONS = (".csv", ".txt")
VISION_MIME_PREFIXES = ("image/",)
VISION_MIME_TYPES = ("application/pdf",)

POSTAL_CODE_RE = re.compile(r"^\d{5}-?\d{3}$")
_FENCE_RE = re.compile(r"^\s*```(?:json)?\s*|\s*```\s*$", re.IGNORECASE)

NUMBER_RULES = (
    "When parsing numbers remove currency symbols (R$) and percent signs, remove "
    "thousands separators (.) and use a period as the decimal separator: "
    "\"R$ 12.177.921,44\" becomes 12177921.44."
)

FRE_PROMPT = f"""
Analyze the attached FRE (Ficha Resumo do Empreendimento) issued by CAIXA and
return ONLY one JSON object, without markdown, with these keys:
projectName ("Nome do Empreendimento"), costOfWorks ("Custo total das obras"),
totalEnterpriseCost ("Custo total de empreendimento"), vgv ("VGV - Valor global
de vendas"), developerName and developerCnpj ("Incorporador" and its CPF/CNPJ),
constructionCompanyName and constructionCompanyCnpj ("Construtora", may appear
as "Proponente"), addressStreet (address plus "Complemento"), addressCity
("Município"), addressState ("UF"), addressZip ("CEP"), engineerName,
engineerCrea (without the "CREA" label) and engineerEmail of the "Responsável
técnico", units (total number of houses or apartments, an integer).
{NUMBER_RULES}
"""

BUDGET_PROMPT = f"""
The text below comes from a CAIXA "Orçamento Sintético - Habitação". Extract the
main service categories and their direct sub-items and return ONLY a JSON array
of categories: {{"id": "1", "name": "...", "subItems": [{{"id": "1.1", "name":
"...", "incidence": 0.57, "unit": "vb"}}]}}.
Take "incidence" straight from the "Incidência" column; do not compute it.
A category with an incidence but no numbered sub-items gets one sub-item with
the category's name and id "X.1". Units: vb (bundle), un (single unit), mes
(monthly), etapa (whole stage); use vb when unsure. Skip items with 0% incidence.
{NUMBER_RULES}
"""

SCHEDULE_PROMPT = f"""
Analyze the attached CAIXA "Cronograma Físico-Financeiro Global" and return ONLY
one JSON object with two keys:
"projectDetails": the same keys as an FRE extraction (projectName, costOfWorks
taken from the "Edificações" total, totalEnterpriseCost, vgv, developerName,
developerCnpj, constructionCompanyName, constructionCompanyCnpj, addressStreet,
addressCity, addressState, addressZip, engineerName, engineerCrea,
engineerEmail, units); use null for anything not present in this document.
"scheduleDetails": {{"duration_months": number of stages, "schedule": [{{"stage": 1,
"physical_progress_stage": 6.0, "physical_progress_accumulated": 6.0,
"financial_release_stage": 6.0, "financial_release_accumulated": 6.0}}]}}.
{NUMBER_RULES}
"""

FileContent = Union[Tuple[str, str], Tuple[str, str, str]]


# ---------------------------------------------------------------------------
# File preparation
# ---------------------------------------------------------------------------

def excel_to_csv(content: bytes) -> str:
    try:
        frame = pd.read_excel(io.BytesIO(content), sheet_name=0, header=None)
    except Exception as e:
        logger.error(f"Excel parse failed: {e}")
        raise ExtractionError("Could not read the Excel file") from e
    return frame.to_csv(index=False, header=False)


def decode_text(content: bytes) -> str:
    try:
        return content.decode("utf-8-sig")
    except UnicodeDecodeError:
        return content.decode("latin-1")


def prepare_file_content(content: bytes, filename: str, content_type: Optional[str] = None) -> FileContent:
    """("text", text) for spreadsheets and text files, ("binary", base64, mime) for PDFs and images."""
    name = (filename or "").lower()
    mime = content_type or mimetypes.guess_type(name)[0] or ""

    if name.endswith(EXCEL_EXTENSIONS) or "spreadsheetml" in mime or "ms-excel" in mime:
        return "text", excel_to_csv(content)
    if name.endswith(TEXT_EXTENSIONS) or mime.startswith("text/"):
        return "text", decode_text(content)
    if mime in VISION_MIME_TYPES or mime.startswith(VISION_MIME_PREFIXES):
        return "binary", base64.b64encode(content).decode("ascii"), mime
    raise ExtractionError(
        f"Unsupported file type: {mime or 'unknown'}. Send an image, a PDF or an Excel file."
    )


# ---------------------------------------------------------------------------
# Response parsing
# ---------------------------------------------------------------------------

def clean_json_response(text: str):
    cleaned = _FENCE_RE.sub("", (text or "").strip())
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError as e:
        logger.error(f"LLM returned invalid JSON: {e}; raw={text[:500]!r}")
        raise ExtractionError("The AI response could not be read as JSON") from e


def normalize_postal_code(value: Optional[str]) -> Optional[str]:
    """Keep digits only; eight digits are reformatted as ddddd-ddd."""
    if value is None:
        return None
    digits = re.sub(r"\D", "", value)
    if len(digits) == 8:
        return f"{digits[:5]}-{digits[5:]}"
    return digits


def _coerce_unit_count(value) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def validate_project_metadata(data: ProjectMetadataExtraction) -> List[str]:
    errors = []

    def blank(value: Optional[str]) -> bool:
        return not (value or "").strip()

    if blank(data.project_name):
        errors.append("projectName: not found")
    if not data.cost_of_works or data.cost_of_works <= 0:
        errors.append("costOfWorks: missing or not positive")
    if not data.total_enterprise_cost or data.total_enterprise_cost <= 0:
        errors.append("totalEnterpriseCost: missing or not positive")
    if data.vgv is None or data.vgv < 0:
        errors.append("vgv: missing or negative")
    for field, label in (
        ("developer_name", "developerName"),
        ("developer_cnpj", "developerCnpj"),
        ("construction_company_name", "constructionCompanyName"),
        ("construction_company_cnpj", "constructionCompanyCnpj"),
        ("address_street", "addressStreet"),
        ("address_city", "addressCity"),
        ("address_state", "addressState"),
        ("engineer_name", "engineerName"),
        ("engineer_crea", "engineerCrea"),
    ):
        if blank(getattr(data, field)):
            errors.append(f"{label}: not found")
    if blank(data.address_zip) or not POSTAL_CODE_RE.match(data.address_zip):
        errors.append("addressZip: invalid or not found")
    count = _coerce_unit_count(data.units)
    if count is None or count < 0:
        errors.append("units: must be a non-negative integer")
    return errors


def _normalized_metadata(raw: dict) -> ProjectMetadataExtraction:
    try:
        data = parse_extraction({**raw, "kind": "project_metadata"})
    except ValidationError as e:
        raise ExtractionError(f"Unexpected FRE structure: {e.error_count()} field error(s)") from e
    data.address_zip = normalize_postal_code(data.address_zip)
    count = _coerce_unit_count(data.units)
    if count is not None:
        data.units = count
    return data


# ---------------------------------------------------------------------------
# LLM calls
# ---------------------------------------------------------------------------

async def _ask(prepared: FileContent, prompt: str) -> str:
    try:
        if prepared[0] == "binary":
            return await llm_client.complete_with_vision(
                [prepared[1]], prompt, mime_type=prepared[2], json_mode=True
            )
        messages = [
            {"role": "system", "content": llm_client.get_system_prompt("extractor")},
            {"role": "user", "content": f"Data from the spreadsheet:\n\n{prepared[1]}\n\n---\n\n{prompt}"},
        ]
        return await llm_client.complete(messages, json_mode=True, max_tokens=8192)
    except BoundaryError as e:
        raise ExtractionError(str(e)) from e


async def extract_project_metadata(
    content: bytes, filename: str, content_type: Optional[str] = None
) -> ProjectMetadataExtraction:
    prepared = prepare_file_content(content, filename, content_type)
    raw = clean_json_response(await _ask(prepared, FRE_PROMPT))
    if not isinstance(raw, dict):
        raise ExtractionError("Expected a JSON object for the FRE")
    data = _normalized_metadata(raw)
    errors = validate_project_metadata(data)
    if errors:
        logger.warning("FRE extraction rejected: %s", "; ".join(errors))
        raise ValidationFailed(errors, "Extracted FRE data is invalid")
    return data


async def extract_budget_template(
    content: bytes, filename: str, content_type: Optional[str] = None
) -> BudgetTemplateExtraction:
    prepared = prepare_file_content(content, filename, content_type)
    if prepared[0] == "binary":
        # transcribe first, then structure the text
        try:
            text = await llm_client.complete_with_vision(
                [prepared[1]], "Extract all text from this document.", mime_type=prepared[2]
            )
        except BoundaryError as e:
            raise ExtractionError(str(e)) from e
    else:
        text = prepared[1]
    if not (text or "").strip():
        raise ExtractionError("No text could be extracted from the file")

    try:
        response = await llm_client.complete(
            [
                {"role": "system", "content": llm_client.get_system_prompt("extractor")},
                {"role": "user", "content": f"{BUDGET_PROMPT}\nBudget text:\n---\n{text}\n---"},
            ],
            max_tokens=8192,
        )
    except BoundaryError as e:
        raise ExtractionError(str(e)) from e

    raw = clean_json_response(response)
    if isinstance(raw, dict):
        raw = raw.get("categories", [])
    try:
        result = parse_extraction({"kind": "budget_template", "categories": raw})
    except ValidationError as e:
        raise ExtractionError(f"Unexpected budget structure: {e.error_count()} field error(s)") from e
    if not result.categories:
        raise ExtractionError("No budget categories were found in the file")
    return result


async def extract_schedule(
    content: bytes, filename: str, content_type: Optional[str] = None
) -> ScheduleExtraction:
    prepared = prepare_file_content(content, filename, content_type)
    raw = clean_json_response(await _ask(prepared, SCHEDULE_PROMPT))
    if not isinstance(raw, dict):
        raise ExtractionError("Expected a JSON object for the schedule")

    details = raw.get("projectDetails")
    schedule = raw.get("scheduleDetails") or {}
    try:
        result = parse_extraction({
            "kind": "budget_schedule",
            "project_details": None,
            "duration_months": schedule.get("duration_months"),
            "schedule": schedule.get("schedule") or [],
        })
    except ValidationError as e:
        raise ExtractionError(f"Unexpected schedule structure: {e.error_count()} field error(s)") from e
    if isinstance(details, dict):
        result.project_details = _normalized_metadata(details)
    return result
