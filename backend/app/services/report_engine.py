"""
Report Engine — progress measurement deliverables for a PLS project.

Outputs:
  - JSON progress report (sections chosen by ReportOptions)
  - PLS measurement workbook (xlsx, live SUM/AVERAGE formulas)
  - PDF progress report (A4 portrait or landscape, layout colours)
  - Per-unit progress report (JSON / xlsx)

Every writer reads one ProjectSnapshot from the aggregation engine, so the
figures in all formats agree. Files are saved to DOWNLOAD_DIR and the path is
returned for FileResponse.
"""
import json
import logging
import os
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import xlsxwriter
from reportlab.lib.pagesizes import A4, landscape
from reportlab.lib.units import cm
from reportlab.lib.utils import simpleSplit
from reportlab.pdfgen import canvas as rl_canvas
from xlsxwriter.exceptions import XlsxWriterException
from xlsxwriter.utility import xl_col_to_name

from app.models.pls_schema import LayoutTemplate, PricedCategory, Project, ReportOptions
from app.services import llm_client
from app.services.aggregation_engine import AggregationEngine
from app.services.errors import BoundaryError, ResolutionError
from app.services.progress_matrix import read_row, unit_index, value_at

logger = logging.getLogger("pls-report")

DOWNLOAD_DIR = os.getenv("DOWNLOAD_DIR", "/tmp/downloads")
DEFAULT_PRIMARY_COLOR = "#1e3a5f"
PLS_TITLE = "PLANILHA DE LEVANTAMENTO DE SERVIÇOS EXECUTADOS - PLS"


# ── Formatting ────────────────────────────────────────────────────────────────

def format_brl(value: float) -> str:
    """Brazilian currency display: 1234.5 -> 'R$ 1.234,50'."""
    text = f"{abs(value):,.2f}".replace(",", "X").replace(".", ",").replace("X", ".")
    return f"-R$ {text}" if value < 0 else f"R$ {text}"


def format_percent(value: float, decimals: int = 2) -> str:
    return f"{value:.{decimals}f}".replace(".", ",") + "%"


def safe_filename(name: str) -> str:
    return re.sub(r"[^\w\-.]+", "_", name.strip()).strip("_") or "projeto"


def _hex_to_rgb(hex_color: str) -> tuple:
    """Convert '#RRGGBB' to (r, g, b) floats 0-1."""
    h = (hex_color or "").lstrip("#")
    if len(h) != 6:
        return _hex_to_rgb(DEFAULT_PRIMARY_COLOR)
    try:
        return (int(h[0:2], 16) / 255, int(h[2:4], 16) / 255, int(h[4:6], 16) / 255)
    except ValueError:
        return _hex_to_rgb(DEFAULT_PRIMARY_COLOR)


def default_layout(project: Project) -> Optional[LayoutTemplate]:
    """The project's default layout, else its first one, else None."""
    for layout in project.layouts:
        if layout.is_default:
            return layout
    return project.layouts[0] if project.layouts else None


def _today_br() -> str:
    return datetime.now().strftime("%d/%m/%Y")


# ── PDF helpers ───────────────────────────────────────────────────────────────

def _draw_header(c, page_w, page_h, project_name: str, header_text: Optional[str], theme_rgb: tuple):
    c.setFillColorRGB(*theme_rgb)
    c.rect(0, page_h - 1.6*cm, page_w, 1.6*cm, fill=1, stroke=0)
    c.setFillColorRGB(1, 1, 1)
    c.setFont("Helvetica-Bold", 10)
    c.drawString(1.5*cm, page_h - 1.0*cm, project_name[:80])
    if header_text:
        c.setFont("Helvetica", 8)
        c.drawRightString(page_w - 1.5*cm, page_h - 1.0*cm, header_text[:90])
    c.setFillColorRGB(0, 0, 0)


def _draw_footer(c, page_w, page_num: int, footer_text: Optional[str]):
    c.setFillColorRGB(0.5, 0.5, 0.5)
    c.setFont("Helvetica", 7)
    c.drawString(1.5*cm, 0.8*cm, (footer_text or f"Gerado em {_today_br()}")[:110])
    c.drawRightString(page_w - 1.5*cm, 0.8*cm, f"Página {page_num}")
    c.setStrokeColorRGB(0.7, 0.7, 0.7)
    c.line(1.5*cm, 1.2*cm, page_w - 1.5*cm, 1.2*cm)


class ReportEngine:

    def __init__(
        self,
        project: Project,
        options: Optional[ReportOptions] = None,
        output_dir: Optional[str] = None,
    ):
        self.project = project
        self.options = options or ReportOptions()
        self.output_dir = output_dir or DOWNLOAD_DIR
        self.engine = AggregationEngine.for_project(project)
        self.snapshot = self.engine.snapshot(project.id, project.name)
        layout = self.options.layout or default_layout(project)
        self.theme_rgb = _hex_to_rgb(layout.primary_color if layout else DEFAULT_PRIMARY_COLOR)
        self.header_text = layout.header_text if layout else None
        self.footer_text = layout.footer_text if layout else None

    def _path(self, filename: str) -> str:
        os.makedirs(self.output_dir, exist_ok=True)
        return os.path.join(self.output_dir, filename)

    def selected_categories(self) -> List[PricedCategory]:
        wanted = set(self.options.selected_category_ids)
        if not wanted:
            return list(self.snapshot.pls)
        return [cat for cat in self.snapshot.pls if cat.id in wanted]

    def generate(self, report_format: str) -> str:
        """Write the report in `report_format` (json | xlsx | pdf) and return its path."""
        writers = {"json": self.write_json, "xlsx": self.write_pls_xlsx, "pdf": self.write_pdf}
        if report_format not in writers:
            raise ValueError(f"Unsupported report format: {report_format}")
        try:
            return writers[report_format]()
        except (OSError, XlsxWriterException) as e:
            logger.error(f"{report_format.upper()} report failed for {self.project.id}: {e}",
                         extra={"project_id": self.project.id})
            raise BoundaryError(f"Could not write the {report_format} report") from e

    # ── JSON ──────────────────────────────────────────────────────────────────

    def build_json_report(self) -> Dict[str, Any]:
        project = self.project
        opts = self.options
        unit_count = len(project.housing_units)
        report: Dict[str, Any] = {
            "reportTitle": opts.title,
            "generatedAt": datetime.now(timezone.utc).isoformat(),
            "measurementNumber": opts.measurement_number,
        }
        if opts.ai_summary:
            report["aiGeneratedSummary"] = opts.ai_summary
        if opts.include_project_details:
            report["projectDetails"] = {
                "name": project.name,
                "costOfWorks": project.cost_of_works,
                "developer": project.developer.to_wire(),
                "constructionCompany": project.construction_company.to_wire(),
                "address": project.address.to_wire(),
                "responsibleEngineer": project.responsible_engineer.to_wire(),
                "housingUnits": {
                    "count": unit_count,
                    "units": [u.to_wire() for u in project.housing_units],
                },
            }
        if opts.include_financial_summary:
            report["financialSummary"] = self.snapshot.financials.to_wire()
        if opts.include_progress_table:
            report["progressTable"] = [
                {
                    "id": cat.id,
                    "name": cat.name,
                    "totalIncidence": cat.total_incidence,
                    "subItems": [
                        {
                            "id": item.id,
                            "name": item.name,
                            "incidence": item.incidence,
                            "cost": item.cost,
                            "progressPerUnit": read_row(project.progress, item.id, unit_count),
                            "averageProgress": self.engine.average_progress(item.id),
                        }
                        for item in cat.sub_items
                    ],
                }
                for cat in self.selected_categories()
            ]
        if opts.include_unit_details:
            report["detailedProgressByUnit"] = [
                {
                    "unitId": unit.id,
                    "unitName": unit.name,
                    "services": [p.to_wire() for p in unit.progressed_items],
                }
                for unit in self.snapshot.units
                if unit.progressed_items
            ]
        return report

    def write_json(self) -> str:
        date_tag = datetime.now().strftime("%Y-%m-%d")
        path = self._path(f"PLS_Relatorio_{safe_filename(self.project.name)}_{date_tag}.json")
        with open(path, "w", encoding="utf-8") as f:
            json.dump(self.build_json_report(), f, ensure_ascii=False, indent=2)
        logger.info(f"JSON report generated: {path}")
        return path

    # ── XLSX (PLS measurement sheet) ──────────────────────────────────────────

    def write_pls_xlsx(self) -> str:
        project = self.project
        financials = self.snapshot.financials
        units = project.housing_units
        unit_count = len(units)
        total_cols = 4 + unit_count
        last_col = total_cols - 1

        path = self._path(
            f"PLS_{safe_filename(project.name)}_{self.options.measurement_number}.xlsx"
        )
        wb = xlsxwriter.Workbook(path)
        try:
            title_fmt = wb.add_format({"bold": True, "font_size": 12, "align": "center"})
            line_fmt = wb.add_format({"font_size": 10})
            hdr = wb.add_format({"bold": True, "bg_color": "#1E3A5F", "font_color": "#FFFFFF",
                                 "border": 1, "text_wrap": True, "valign": "vcenter"})
            cat_txt = wb.add_format({"bold": True, "bg_color": "#F0F0F0", "border": 1})
            cat_pct = wb.add_format({"bold": True, "bg_color": "#F0F0F0", "border": 1, "num_format": "0.00%"})
            txt = wb.add_format({"border": 1, "font_size": 9})
            pct = wb.add_format({"border": 1, "font_size": 9, "num_format": "0.00%"})
            total_txt = wb.add_format({"bold": True, "border": 1})
            total_pct = wb.add_format({"bold": True, "border": 1, "num_format": "0.00%"})

            ws = wb.add_worksheet("PLS")
            ws.set_column(0, 0, 10)
            ws.set_column(1, 1, 50)
            ws.set_column(2, 3, 20)
            if unit_count:
                ws.set_column(4, last_col, 8)

            header_lines = [
                (PLS_TITLE, title_fmt),
                (f"Medição: {self.options.measurement_number}", line_fmt),
                (f"Data da Medição: {_today_br()}", line_fmt),
                (project.name, line_fmt),
                (f"Proponente: {project.developer.name or 'N/A'} - CNPJ: {project.developer.cnpj or 'N/A'}", line_fmt),
                (f"Construtora: {project.construction_company.name or 'N/A'} - CNPJ: "
                 f"{project.construction_company.cnpj or 'N/A'}", line_fmt),
                (f"Responsável Técnico: {project.responsible_engineer.name or 'N/A'} - CREA: "
                 f"{project.responsible_engineer.crea or 'N/A'}", line_fmt),
                (f"Endereço da Obra: {project.address.street}, {project.address.city} - "
                 f"{project.address.state}", line_fmt),
            ]
            for row, (text, fmt) in enumerate(header_lines):
                ws.merge_range(row, 0, row, last_col, text, fmt)

            measured_row, executed_row, cost_row = 9, 10, 11
            ws.merge_range(cost_row, 0, cost_row, last_col,
                           f"Custo da Obra: {format_brl(project.cost_of_works)}", line_fmt)

            header_row = 13
            ws.write_row(header_row, 0, [
                "Item", "Discriminação do Evento", "Incidência Global (%)", "Incidência Mensurada (%)",
                *[u.name for u in units],
            ], hdr)

            first_unit_col = xl_col_to_name(4)
            last_unit_col = xl_col_to_name(last_col)
            category_rows: List[int] = []
            row = header_row + 1
            by_id = {c.id: c for c in financials.category_totals}

            for cat in self.snapshot.pls:
                cat_row = row
                category_rows.append(cat_row + 1)
                n = len(cat.sub_items)
                first, last = cat_row + 2, cat_row + 1 + n  # 1-based sub-item rows
                ws.write(cat_row, 0, f"{cat.id}.0", cat_txt)
                ws.write(cat_row, 1, cat.name, cat_txt)
                measured = by_id[cat.id].measured_incidence if cat.id in by_id else 0.0
                if n:
                    ws.write_formula(cat_row, 2, f"=SUM(C{first}:C{last})", cat_pct, cat.total_incidence / 100)
                    ws.write_formula(cat_row, 3, f"=SUM(D{first}:D{last})", cat_pct, measured / 100)
                else:
                    ws.write_number(cat_row, 2, 0, cat_pct)
                    ws.write_number(cat_row, 3, 0, cat_pct)
                for col in range(4, total_cols):
                    ws.write_blank(cat_row, col, None, cat_txt)

                for offset, item in enumerate(cat.sub_items):
                    r = cat_row + 1 + offset
                    excel_row = r + 1
                    ws.write(r, 0, item.id, txt)
                    ws.write(r, 1, item.name, txt)
                    ws.write_number(r, 2, item.incidence / 100, pct)
                    if unit_count:
                        ws.write_formula(
                            r, 3,
                            f"=C{excel_row}*AVERAGE({first_unit_col}{excel_row}:{last_unit_col}{excel_row})",
                            pct,
                            self.engine.measured_incidence(item) / 100,
                        )
                    else:
                        ws.write_number(r, 3, 0, pct)
                    for i in range(unit_count):
                        ws.write_number(r, 4 + i, value_at(project.progress, item.id, i) / 100, pct)
                row = cat_row + 1 + n

            total_excel_row = row + 1
            c_refs = ",".join(f"C{r}" for r in category_rows) or "0"
            d_refs = ",".join(f"D{r}" for r in category_rows) or "0"
            ws.write(row, 0, "TOTAL", total_txt)
            ws.write_blank(row, 1, None, total_txt)
            ws.write_formula(row, 2, f"=SUM({c_refs})", total_pct, self.snapshot.balance.total / 100)
            ws.write_formula(row, 3, f"=SUM({d_refs})", total_pct, financials.total_progress / 100)
            for col in range(4, total_cols):
                ws.write_blank(row, col, None, total_txt)

            ws.merge_range(measured_row, 0, measured_row, last_col, "", line_fmt)
            ws.write_formula(
                measured_row, 0,
                f'="Incidência Mensurada: "&TEXT(D{total_excel_row},"0.00%")',
                line_fmt,
                f"Incidência Mensurada: {format_percent(financials.total_progress)}",
            )
            ws.merge_range(executed_row, 0, executed_row, last_col, "", line_fmt)
            ws.write_formula(
                executed_row, 0,
                f'="Executado: "&TEXT(D{total_excel_row}*{project.cost_of_works},"R$ #,##0.00")',
                line_fmt,
                f"Executado: {format_brl(financials.total_released)}",
            )
            ws.freeze_panes(header_row + 1, 2)
        finally:
            wb.close()
        logger.info(f"PLS workbook generated: {path}")
        return path

    # ── PDF ───────────────────────────────────────────────────────────────────

    def write_pdf(self) -> str:
        project = self.project
        opts = self.options
        financials = self.snapshot.financials
        pagesize = landscape(A4) if opts.orientation == "l" else A4
        page_w, page_h = pagesize
        path = self._path(f"Relatorio_{safe_filename(project.name)}.pdf")
        c = rl_canvas.Canvas(path, pagesize=pagesize)
        top = page_h - 2.6*cm

        def new_page():
            c.showPage()
            _draw_header(c, page_w, page_h, project.name, self.header_text, self.theme_rgb)
            _draw_footer(c, page_w, c.getPageNumber(), self.footer_text)
            return top

        def ensure_space(y, needed):
            return new_page() if y - needed < 2*cm else y

        def section_title(y, text):
            y = ensure_space(y, 1.5*cm)
            c.setFillColorRGB(*self.theme_rgb)
            c.setFont("Helvetica-Bold", 13)
            c.drawString(1.5*cm, y, text)
            c.setFillColorRGB(0, 0, 0)
            return y - 0.8*cm

        try:
            _draw_header(c, page_w, page_h, project.name, self.header_text, self.theme_rgb)
            _draw_footer(c, page_w, 1, self.footer_text)

            y = top - 0.6*cm
            c.setFont("Helvetica-Bold", 20)
            c.setFillColorRGB(*self.theme_rgb)
            c.drawCentredString(page_w / 2, y, opts.title)
            y -= 0.9*cm
            c.setFont("Helvetica", 13)
            c.setFillColorRGB(0.2, 0.2, 0.2)
            c.drawCentredString(page_w / 2, y, project.name)
            y -= 1.0*cm
            c.setFont("Helvetica", 10)
            c.drawString(1.5*cm, y, f"Medição: {opts.measurement_number}")
            c.drawRightString(page_w - 1.5*cm, y, f"Data da medição: {_today_br()}")
            y -= 1.0*cm

            if opts.include_project_details:
                y = section_title(y, "Detalhes do Projeto")
                address = project.address
                details = [
                    ("Endereço", f"{address.street}, {address.city} - {address.state} {address.zip}".strip()),
                    ("Proponente", f"{project.developer.name} ({project.developer.cnpj})"),
                    ("Construtora", f"{project.construction_company.name} ({project.construction_company.cnpj})"),
                    ("Responsável técnico", f"{project.responsible_engineer.name} - CREA {project.responsible_engineer.crea}"),
                    ("Unidades habitacionais", str(len(project.housing_units))),
                    ("Custo das obras", format_brl(project.cost_of_works)),
                ]
                c.setFont("Helvetica", 9)
                for label, value in details:
                    y = ensure_space(y, 0.5*cm)
                    c.setFillColorRGB(0.4, 0.4, 0.4)
                    c.drawString(1.5*cm, y, label)
                    c.setFillColorRGB(0.1, 0.1, 0.1)
                    c.drawString(6.5*cm, y, value[:90])
                    y -= 0.5*cm
                y -= 0.4*cm

            # metric boxes
            y = ensure_space(y, 2.5*cm)
            metrics = [
                ("Progresso total", format_percent(financials.total_progress)),
                ("Valor liberado", format_brl(financials.total_released)),
                ("Saldo a medir", format_brl(financials.balance_to_measure)),
            ]
            box_w = (page_w - 3*cm - 2*0.5*cm) / 3
            for i, (label, value) in enumerate(metrics):
                x = 1.5*cm + i * (box_w + 0.5*cm)
                c.setStrokeColorRGB(*self.theme_rgb)
                c.rect(x, y - 1.8*cm, box_w, 1.8*cm, fill=0)
                c.setFont("Helvetica", 9)
                c.setFillColorRGB(0.4, 0.4, 0.4)
                c.drawCentredString(x + box_w / 2, y - 0.6*cm, label)
                c.setFont("Helvetica-Bold", 12)
                c.setFillColorRGB(0.1, 0.1, 0.1)
                c.drawCentredString(x + box_w / 2, y - 1.3*cm, value)
            y -= 2.6*cm

            if opts.ai_summary:
                y = section_title(y, "Resumo Executivo (IA)")
                c.setFont("Helvetica", 10)
                for line in simpleSplit(opts.ai_summary, "Helvetica", 10, page_w - 3*cm):
                    y = ensure_space(y, 0.5*cm)
                    c.drawString(1.5*cm, y, line)
                    y -= 0.45*cm
                y -= 0.4*cm

            selected = self.selected_categories()
            if opts.include_financial_summary:
                y = section_title(y, "Resumo Financeiro por Etapa")
                cols = [1.5*cm, page_w * 0.42, page_w * 0.54, page_w * 0.66, page_w * 0.80, page_w - 1.5*cm]
                heads = ["Etapa", "Inc. Global", "Inc. Mensurada", "Progresso", "Valor Liberado", "Custo Total"]
                c.setFont("Helvetica-Bold", 8)
                c.drawString(cols[0], y, heads[0])
                for x, head in zip(cols[1:], heads[1:]):
                    c.drawRightString(x, y, head)
                y -= 0.5*cm
                c.setFont("Helvetica", 8)
                by_id = {cat.id: cat for cat in financials.category_totals}
                for cat in selected:
                    totals = by_id.get(cat.id)
                    if totals is None:
                        continue
                    y = ensure_space(y, 0.45*cm)
                    c.drawString(cols[0], y, f"{cat.id}. {cat.name}"[:48])
                    c.drawRightString(cols[1], y, format_percent(totals.total_incidence))
                    c.drawRightString(cols[2], y, format_percent(totals.measured_incidence))
                    c.drawRightString(cols[3], y, format_percent(totals.progress))
                    c.drawRightString(cols[4], y, format_brl(totals.released))
                    c.drawRightString(cols[5], y, format_brl(totals.total_cost))
                    y -= 0.45*cm
                y -= 0.5*cm

            if opts.include_progress_table:
                y = section_title(y, "Detalhamento de Progresso da PLS")
                for cat in selected:
                    y = ensure_space(y, 1.0*cm)
                    c.setFont("Helvetica-Bold", 9)
                    c.drawString(1.5*cm, y, f"{cat.id}. {cat.name}"[:70])
                    y -= 0.45*cm
                    c.setFont("Helvetica", 8)
                    for item in cat.sub_items:
                        y = ensure_space(y, 0.45*cm)
                        avg = self.engine.average_progress(item.id)
                        c.drawString(1.8*cm, y, item.id)
                        c.drawString(3.2*cm, y, item.name[:60])
                        c.drawRightString(page_w * 0.66, y, format_percent(item.incidence))
                        c.drawRightString(page_w * 0.78, y, format_percent(avg))
                        c.drawRightString(page_w - 1.5*cm, y, format_brl(item.cost))
                        y -= 0.42*cm
                    y -= 0.2*cm

            if opts.include_unit_details:
                y = section_title(y, "Detalhamento por Casas")
                for unit in self.snapshot.units:
                    if not unit.progressed_items:
                        continue
                    y = ensure_space(y, 1.0*cm)
                    c.setFont("Helvetica-Bold", 9)
                    c.drawString(1.5*cm, y, f"{unit.name}: {format_percent(unit.progress)}")
                    y -= 0.45*cm
                    c.setFont("Helvetica", 8)
                    for item in unit.progressed_items:
                        y = ensure_space(y, 0.42*cm)
                        c.drawString(1.8*cm, y, f"{item.id} {item.name}"[:80])
                        c.drawRightString(page_w - 1.5*cm, y, format_percent(item.progress, 0))
                        y -= 0.42*cm
        finally:
            c.save()
        logger.info(f"PDF report generated: {path}")
        return path

    # ── Per-unit reports ──────────────────────────────────────────────────────

    def unit_report(self, unit_id: str) -> Dict[str, Any]:
        index = unit_index(self.project.housing_units, unit_id)
        if index == -1:
            raise ResolutionError(f"Housing unit '{unit_id}' not found")
        unit = self.snapshot.units[index]
        return {
            "project": self.project.name,
            "unit": unit.name,
            "generatedAt": datetime.now(timezone.utc).isoformat(),
            "weightedProgress": unit.progress,
            "progress": [
                {"category": p.category, "service": p.name, "progress": p.progress}
                for p in unit.progressed_items
            ],
        }

    def write_unit_json(self, unit_id: str) -> str:
        report = self.unit_report(unit_id)
        path = self._path(f"Relatorio_{safe_filename(report['unit'])}.json")
        with open(path, "w", encoding="utf-8") as f:
            json.dump(report, f, ensure_ascii=False, indent=2)
        return path

    def write_unit_xlsx(self, unit_id: str) -> str:
        report = self.unit_report(unit_id)
        path = self._path(f"Relatorio_{safe_filename(report['unit'])}.xlsx")
        wb = xlsxwriter.Workbook(path)
        try:
            bold = wb.add_format({"bold": True})
            hdr = wb.add_format({"bold": True, "bg_color": "#1E3A5F", "font_color": "#FFFFFF", "border": 1})
            ws = wb.add_worksheet("Relatório Unidade")
            ws.set_column(0, 0, 35)
            ws.set_column(1, 1, 60)
            ws.set_column(2, 2, 14)
            ws.write_row(0, 0, ["Projeto", report["project"]])
            ws.write_row(1, 0, ["Unidade", report["unit"]])
            ws.write_row(2, 0, ["Data", _today_br()])
            ws.write(3, 0, "Progresso ponderado", bold)
            ws.write(3, 1, format_percent(report["weightedProgress"]))
            ws.write_row(5, 0, ["Categoria", "Serviço", "Progresso (%)"], hdr)
            for i, entry in enumerate(report["progress"]):
                ws.write_row(6 + i, 0, [entry["category"], entry["service"], f"{entry['progress']:g}%"])
        finally:
            wb.close()
        return path


# ── AI executive summary ──────────────────────────────────────────────────────

def summary_prompt(project: Project, options: ReportOptions) -> str:
    engine = ReportEngine(project, options)
    financials = engine.snapshot.financials
    by_id = {c.id: c for c in financials.category_totals}
    lines = [
        f"Projeto: {project.name}",
        f"Unidades: {len(project.housing_units)}",
        f"Custo total das obras: {format_brl(project.cost_of_works)}",
        f"Custo total do empreendimento: {format_brl(project.total_enterprise_cost)}",
        f"VGV: {format_brl(project.vgv)}",
        "",
        f"Progresso total: {format_percent(financials.total_progress)}",
        f"Valor liberado: {format_brl(financials.total_released)}",
        f"Saldo a medir: {format_brl(financials.balance_to_measure)}",
        "",
        "Etapas:",
    ]
    for cat in engine.selected_categories():
        totals = by_id.get(cat.id)
        if totals is None:
            continue
        lines.append(
            f"- {cat.name}: custo {format_brl(totals.total_cost)}, progresso "
            f"{format_percent(totals.progress)}, liberado {format_brl(totals.released)}"
        )
    return "\n".join(lines)


async def generate_report_summary(project: Project, options: ReportOptions) -> str:
    messages = [
        {"role": "system", "content": llm_client.get_system_prompt("reporter")},
        {"role": "user", "content": summary_prompt(project, options)},
    ]
    return await llm_client.complete(messages, temperature=0.4, max_tokens=1200)
