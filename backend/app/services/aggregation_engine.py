"""
AggregationEngine — weighted progress and financial roll-ups for a PLS project.

Covers:
  - Per-item average progress across housing units
  - Measured incidence (item / category / project)
  - Category progress, total cost and released value
  - Project total progress, released value and balance to measure
  - Priced template (item and category cost, accumulated incidence)
  - Per-unit weighted progress
  - Template incidence balance (balanced / warning / invalid)

Every figure is recomputed from the template, matrix, unit count and cost of
works on each call; nothing is cached between calls. This is the single
aggregation path: dashboard cards, project financials, exports and the AI
report summary all go through `compute_financials` / `AggregationEngine`.
"""

from typing import List, Optional, Sequence

from app.models.pls_schema import (
    BudgetCategory,
    BudgetLineItem,
    CategoryFinancials,
    Financials,
    HousingUnit,
    IncidenceBalance,
    PricedCategory,
    PricedLineItem,
    ProgressedItem,
    ProgressMatrix,
    Project,
    ProjectSnapshot,
    UnitFinancials,
)
from app.services.pls_template import balance_status, template_for
from app.services.progress_matrix import read_row, value_at


class AggregationEngine:
    """
    Pure roll-up calculator.

    Percentages are in percent points (0-100). Monetary values are in the
    project's currency, unformatted.
    """

    def __init__(
        self,
        template: Sequence[BudgetCategory],
        progress: ProgressMatrix,
        unit_count: int,
        cost_of_works: float,
        units: Optional[Sequence[HousingUnit]] = None,
    ) -> None:
        self.template = list(template)
        self.progress = progress or {}
        self.unit_count = max(0, int(unit_count))
        self.cost_of_works = float(cost_of_works or 0.0)
        self.units = list(units) if units is not None else []

    @classmethod
    def for_project(cls, project: Project) -> "AggregationEngine":
        return cls(
            template=template_for(project),
            progress=project.progress,
            unit_count=len(project.housing_units),
            cost_of_works=project.cost_of_works,
            units=project.housing_units,
        )

    # ------------------------------------------------------------------
    # Item level
    # ------------------------------------------------------------------

    def average_progress(self, item_id: str) -> float:
        """Mean of the item's row over every unit slot; 0 when there are no units."""
        if self.unit_count == 0:
            return 0.0
        row = read_row(self.progress, item_id, self.unit_count)
        return sum(row) / self.unit_count

    def measured_incidence(self, item: BudgetLineItem) -> float:
        """Item contribution to project progress, in incidence points."""
        return item.incidence * self.average_progress(item.id) / 100.0

    # ------------------------------------------------------------------
    # Category level
    # ------------------------------------------------------------------

    @staticmethod
    def category_incidence(category: BudgetCategory) -> float:
        return sum(item.incidence for item in category.sub_items)

    def category_measured(self, category: BudgetCategory) -> float:
        return sum(self.measured_incidence(item) for item in category.sub_items)

    def category_progress(self, category: BudgetCategory) -> float:
        """Share of the category's own weight delivered (0 when it carries no incidence)."""
        incidence = self.category_incidence(category)
        if incidence == 0:
            return 0.0
        return self.category_measured(category) / incidence * 100.0

    def category_financials(self, category: BudgetCategory) -> CategoryFinancials:
        incidence = self.category_incidence(category)
        measured = self.category_measured(category)
        progress = measured / incidence * 100.0 if incidence else 0.0
        return CategoryFinancials(
            id=category.id,
            name=category.name,
            released=self.cost_of_works * measured / 100.0,
            progress=progress,
            total_cost=self.cost_of_works * incidence / 100.0,
            total_incidence=incidence,
            measured_incidence=measured,
        )

    # ------------------------------------------------------------------
    # Project level
    # ------------------------------------------------------------------

    def compute(self) -> Financials:
        category_totals = [self.category_financials(cat) for cat in self.template]
        total_progress = sum(cat.measured_incidence for cat in category_totals)
        total_released = self.cost_of_works * total_progress / 100.0
        return Financials(
            total_progress=total_progress,
            total_released=total_released,
            balance_to_measure=self.cost_of_works - total_released,
            category_totals=category_totals,
        )

    def total_progress(self) -> float:
        return self.compute().total_progress

    def priced_template(self) -> List[PricedCategory]:
        """Template annotated with item/category cost and accumulated incidence."""
        priced: List[PricedCategory] = []
        accumulated = 0.0
        for category in self.template:
            incidence = self.category_incidence(category)
            accumulated += incidence
            priced.append(PricedCategory(
                id=category.id,
                name=category.name,
                total_incidence=incidence,
                total_cost=self.cost_of_works * incidence / 100.0,
                accumulated_percentage=accumulated,
                sub_items=[
                    PricedLineItem(
                        id=item.id,
                        name=item.name,
                        incidence=item.incidence,
                        unit=item.unit,
                        cost=self.cost_of_works * item.incidence / 100.0,
                    )
                    for item in category.sub_items
                ],
            ))
        return priced

    def unit_progress(self) -> List[UnitFinancials]:
        """Weighted progress of each housing unit plus the items it has started."""
        results: List[UnitFinancials] = []
        for index, unit in enumerate(self.units):
            weighted = 0.0
            progressed: List[ProgressedItem] = []
            for category in self.template:
                for item in category.sub_items:
                    value = value_at(self.progress, item.id, index)
                    weighted += value / 100.0 * item.incidence
                    if value > 0:
                        progressed.append(ProgressedItem(
                            category=category.name, id=item.id, name=item.name, progress=value,
                        ))
            results.append(UnitFinancials(
                id=unit.id, name=unit.name, progress=weighted, progressed_items=progressed,
            ))
        return results

    def incidence_balance(self) -> IncidenceBalance:
        per_category = {cat.id: self.category_incidence(cat) for cat in self.template}
        total = sum(per_category.values())
        return IncidenceBalance(
            total=total, status=balance_status(total), category_totals=per_category,
        )

    def snapshot(self, project_id: str = "", project_name: str = "") -> ProjectSnapshot:
        return ProjectSnapshot(
            project_id=project_id,
            project_name=project_name,
            cost_of_works=self.cost_of_works,
            unit_count=self.unit_count,
            financials=self.compute(),
            pls=self.priced_template(),
            units=self.unit_progress(),
            balance=self.incidence_balance(),
        )


# ---------------------------------------------------------------------------
# Module-level entry points used by routes and writers
# ---------------------------------------------------------------------------

def compute_financials(project: Project) -> Financials:
    return AggregationEngine.for_project(project).compute()


def project_snapshot(project: Project) -> ProjectSnapshot:
    return AggregationEngine.for_project(project).snapshot(project.id, project.name)
