"""
Budget template (PLS) — default CAIXA template and template-level helpers.

The default incidences come from the reference "Orçamento Sintético - Habitação"
and sum to exactly 100.00 %. A project with `pls_data = None` uses it.
"""
import copy
import re
from typing import Iterator, List, Optional, Sequence, Tuple

from app.models.pls_schema import BudgetCategory, BudgetLineItem, Project

# Balance bands for Σ incidence (exclusive bounds)
BALANCED_BAND: Tuple[float, float] = (99.9, 100.1)
WARNING_BAND: Tuple[float, float] = (95.0, 105.0)


def _item(item_id: str, name: str, incidence: float, unit: str) -> BudgetLineItem:
    return BudgetLineItem(id=item_id, name=name, incidence=incidence, unit=unit)


DEFAULT_TEMPLATE: List[BudgetCategory] = [
    BudgetCategory(id="1", name="SERVIÇOS PRELIMINARES GERAIS", sub_items=[
        _item("1.1", "serviços técnicos (projetos, orçamentos, levant. topog., sondagem, licenças e PCMAT)", 0.57, "vb"),
        _item("1.2", "instalações e canteiros (barracão, cercamento e placa da obra)", 0.69, "vb"),
        _item("1.3", "ligações provisórias (água, energia, telefone e esgoto)", 0.04, "vb"),
        _item("1.4", "manutenção canteiro/consumo", 1.25, "mes"),
        _item("1.5", "transportes máquinas e equipamentos", 0.89, "vb"),
        _item("1.6", "controle tecnológico", 0.08, "vb"),
        _item("1.7", "gestão de resíduos", 0.05, "vb"),
        _item("1.8", "gestão da qualidade", 0.05, "vb"),
        _item("1.10", "administração local (engenheiros, mestres, etc.)", 2.84, "mes"),
    ]),
    BudgetCategory(id="2", name="FUNDAÇÕES E CONTENÇÕES", sub_items=[
        _item("2.1", "Fundações", 7.36, "etapa"),
    ]),
    BudgetCategory(id="3", name="SUPRAESTRUTURA", sub_items=[
        _item("3.1", "Supraestrutura", 14.15, "etapa"),
    ]),
    BudgetCategory(id="4", name="PAREDES E PAINÉIS", sub_items=[
        _item("4.1", "alvenaria / fechamentos", 13.89, "etapa"),
        _item("4.2", "esquadrias metálicas", 5.14, "un"),
        _item("4.3", "esquadrias de madeira", 1.23, "un"),
    ]),
    BudgetCategory(id="5", name="COBERTURA E PROTEÇÕES", sub_items=[
        _item("5.1", "telhados", 4.27, "etapa"),
        _item("5.2", "impermeabilizações", 0.79, "etapa"),
    ]),
    BudgetCategory(id="6", name="REVESTIMENTOS", sub_items=[
        _item("6.1", "revestimentos internos", 4.06, "etapa"),
        _item("6.2", "azulejos", 3.02, "etapa"),
        _item("6.3", "revestimentos externos", 4.07, "etapa"),
        _item("6.4", "forros", 0.85, "etapa"),
        _item("6.5", "pinturas", 6.58, "etapa"),
    ]),
    BudgetCategory(id="7", name="PAVIMENTAÇÃO", sub_items=[
        _item("7.2", "cerâmica", 2.25, "etapa"),
        _item("7.4", "cimentados", 1.53, "etapa"),
        _item("7.5", "rodapés, soleiras e peitoris", 1.02, "etapa"),
    ]),
    BudgetCategory(id="8", name="INSTALAÇÕES", sub_items=[
        _item("8.1", "elétricas / telefônicas", 6.63, "etapa"),
        _item("8.2", "hidráulicas / gás / incêndio", 5.05, "etapa"),
        _item("8.3", "sanitárias / pluvial", 3.35, "etapa"),
        _item("8.4", "aparelhos, metais e bancadas", 2.20, "un"),
    ]),
    BudgetCategory(id="9", name="COMPLEMENTAÇÕES", sub_items=[
        _item("9.1", "calafete / limpeza", 0.56, "etapa"),
        _item("9.2", "ligações definitivas", 1.54, "vb"),
    ]),
    BudgetCategory(id="10", name="INFRAESTRUTURA E URBANIZAÇÃO", sub_items=[
        _item("10.1", "terraplenagem", 0.99, "etapa"),
        _item("10.5", "pavimentação", 1.18, "etapa"),
        _item("10.6", "energia e iluminação", 0.25, "etapa"),
        _item("10.9", "obras especiais", 0.79, "etapa"),
        _item("10.10", "paisagismo, equipamentos e ambientação", 0.79, "etapa"),
    ]),
]


def template_for(project: Project) -> List[BudgetCategory]:
    """The project's own template, or a private copy of the default one."""
    if project.pls_data:
        return project.pls_data
    return copy.deepcopy(DEFAULT_TEMPLATE)


def iter_items(template: Sequence[BudgetCategory]) -> Iterator[Tuple[BudgetCategory, BudgetLineItem]]:
    for category in template:
        for item in category.sub_items:
            yield category, item


def find_item(template: Sequence[BudgetCategory], item_id: str) -> Optional[BudgetLineItem]:
    for _, item in iter_items(template):
        if item.id == item_id:
            return item
    return None


def total_incidence(template: Sequence[BudgetCategory]) -> float:
    return sum(item.incidence for _, item in iter_items(template))


def balance_status(total: float) -> str:
    """Classify a template's Σ incidence as balanced / warning / invalid."""
    # sums of decimal incidences drift in the last bits
    total = round(total, 6)
    if BALANCED_BAND[0] <= total <= BALANCED_BAND[1]:
        return "balanced"
    if WARNING_BAND[0] <= total <= WARNING_BAND[1]:
        return "warning"
    return "invalid"


_DIGITS = re.compile(r"(\d+)")


def natural_key(value: str):
    """Numeric-aware, case-insensitive sort key: '1.2' < '1.10'."""
    return [
        (0, int(part), "") if part.isdigit() else (1, 0, part.lower())
        for part in _DIGITS.split(value)
        if part != ""
    ]


def sort_items_naturally(items: Sequence[BudgetLineItem]) -> List[BudgetLineItem]:
    return sorted(items, key=lambda item: natural_key(item.id))
