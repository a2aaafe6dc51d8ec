"""
test_project_service.py — Tests for project operations.

Tests cover:
  - new_project: default template, zeroed matrix, owner as sole member, draft validation
  - update_single_progress: clamp + round, no-op when unchanged, unknown item/unit
  - update_progress_row: one log entry per changed cell
  - update_project: identity fields kept, reconciliation on unit changes
  - template edits: save_template, rename_item, update_item_id, add_category, add_line_item
  - housing units: generate_units, add/remove/rename
  - FRE metadata merge, budget/schedule imports, report archiving
"""

import pytest

from app.agents.tool_schemas import ProjectMetadataExtraction, ScheduleExtraction
from app.models.pls_schema import (
    BudgetCategory,
    BudgetLineItem,
    HousingUnit,
    ProjectDraft,
    ReportOptions,
    ScheduleStage,
)
from app.services import project_service as ps
from app.services.errors import ResolutionError, ValidationFailed
from app.services.pls_template import DEFAULT_TEMPLATE, iter_items


# ===========================================================================
# Class 1: Creation
# ===========================================================================

class TestNewProject:

    def test_default_template_and_zero_matrix(self, default_template_project):
        project = default_template_project
        assert project.pls_data is None
        item_ids = [item.id for _, item in iter_items(DEFAULT_TEMPLATE)]
        assert sorted(project.progress) == sorted(item_ids)
        assert all(row == [0.0, 0.0, 0.0] for row in project.progress.values())

    def test_owner_is_sole_member(self, default_template_project):
        assert default_template_project.owner_id == "owner-1"
        assert default_template_project.members == ["owner-1"]
        assert default_template_project.created_at

    def test_generated_id_when_not_given(self):
        project = ps.new_project(ProjectDraft(name="X", cost_of_works=10.0), "o")
        assert len(project.id) == 36

    def test_custom_template_used(self, two_category_template):
        draft = ProjectDraft(name="X", cost_of_works=10.0, pls_data=two_category_template,
                             housing_units=[HousingUnit(id="u1", name="Casa 01")])
        project = ps.new_project(draft, "o")
        assert project.progress == {"1.1": [0.0], "2.1": [0.0]}

    def test_invalid_draft_lists_every_error(self):
        draft = ProjectDraft(name="  ", cost_of_works=0.0,
                             housing_units=[HousingUnit(id="a", name="A"), HousingUnit(id="a", name="B")])
        with pytest.raises(ValidationFailed) as exc:
            ps.new_project(draft, "o")
        assert len(exc.value.errors) == 3


# ===========================================================================
# Class 2: Progress edits
# ===========================================================================

class TestProgressEdits:

    def test_single_cell_rounds_and_logs(self, sample_project):
        updated = ps.update_single_progress(sample_project, "2.1", 1, 42.6)
        assert updated.progress["2.1"] == [0.0, 43.0]
        assert len(updated.history) == 1
        entry = updated.history[0]
        assert (entry.item_name, entry.unit_name, entry.old_progress, entry.new_progress) == (
            "Pilares", "Casa 02", 0.0, 43.0,
        )
        assert sample_project.progress["2.1"] == [0.0, 0.0]

    def test_single_cell_clamps(self, sample_project):
        assert ps.update_single_progress(sample_project, "2.1", 0, -20).progress["2.1"][0] == 0.0
        assert ps.update_single_progress(sample_project, "2.1", 0, 250).progress["2.1"][0] == 100.0

    def test_unchanged_value_is_noop(self, sample_project):
        assert ps.update_single_progress(sample_project, "1.1", 0, 100) is sample_project

    def test_unknown_item_raises(self, sample_project):
        with pytest.raises(ResolutionError):
            ps.update_single_progress(sample_project, "9.9", 0, 10)

    def test_unknown_unit_raises(self, sample_project):
        with pytest.raises(ResolutionError):
            ps.update_single_progress(sample_project, "1.1", 5, 10)
        with pytest.raises(ResolutionError):
            ps.resolve_unit_index(sample_project, "nope")

    def test_row_update_logs_changed_cells_only(self, sample_project):
        updated = ps.update_progress_row(sample_project, "1.1", [100, 80])
        assert updated.progress["1.1"] == [100.0, 80.0]
        assert len(updated.history) == 1
        assert updated.history[0].unit_id == "u2"

    def test_row_update_clamps_and_pads(self, sample_project):
        updated = ps.update_progress_row(sample_project, "2.1", [120])
        assert updated.progress["2.1"] == [100.0, 0.0]

    def test_round_half_up(self):
        assert ps.round_progress(42.5) == 43.0
        assert ps.round_progress(42.49) == 42.0


# ===========================================================================
# Class 3: Whole-document update and units
# ===========================================================================

class TestUpdateProjectAndUnits:

    def test_identity_fields_come_from_stored_project(self, sample_project):
        incoming = sample_project.model_copy(deep=True)
        incoming.id = "hijack"
        incoming.owner_id = "intruder"
        incoming.members = ["intruder"]
        incoming.name = "Renomeado"
        updated = ps.update_project(sample_project, incoming)
        assert updated.id == "proj-1"
        assert updated.owner_id == "owner-1"
        assert updated.members == ["owner-1"]
        assert updated.name == "Renomeado"

    def test_incoming_history_is_ignored(self, sample_project):
        stored = ps.update_single_progress(sample_project, "2.1", 0, 10)
        incoming = stored.model_copy(deep=True)
        incoming.history = []
        updated = ps.update_project(stored, incoming)
        assert [e.id for e in updated.history] == [e.id for e in stored.history]

    def test_progress_changes_are_logged_per_cell(self, sample_project):
        incoming = sample_project.model_copy(deep=True)
        incoming.progress["2.1"] = [90.0, 140.0]
        incoming.progress["1.1"] = [100.0, 0.0]
        updated = ps.update_project(sample_project, incoming)
        assert updated.progress["2.1"] == [90.0, 100.0]
        assert [(e.item_id, e.unit_id, e.old_progress, e.new_progress) for e in updated.history] == [
            ("2.1", "u1", 0.0, 90.0),
            ("2.1", "u2", 0.0, 100.0),
        ]

    def test_progress_diff_runs_after_unit_reconciliation(self, sample_project):
        incoming = sample_project.model_copy(deep=True)
        incoming.housing_units = incoming.housing_units[1:]
        incoming.progress["1.1"] = [100.0, 30.0]
        updated = ps.update_project(sample_project, incoming)
        assert updated.progress["1.1"] == [30.0]
        assert [(e.unit_id, e.old_progress, e.new_progress) for e in updated.history] == [("u2", 0.0, 30.0)]

    def test_unit_edits_add_no_history(self, sample_project):
        assert ps.remove_unit(sample_project, "u1").history == []
        assert ps.add_unit(sample_project, "Casa 03").history == []

    def test_removing_unit_reconciles_by_id(self, sample_project):
        updated = ps.remove_unit(sample_project, "u1")
        assert [u.id for u in updated.housing_units] == ["u2"]
        assert updated.progress["1.1"] == [0.0]

    def test_adding_units_zero_fills(self, sample_project):
        updated = ps.add_units(sample_project, ps.generate_units("Casa", 3, 4))
        assert [u.name for u in updated.housing_units][-2:] == ["Casa 03", "Casa 04"]
        assert updated.progress["1.1"] == [100.0, 0.0, 0.0, 0.0]

    def test_add_single_unit(self, sample_project):
        updated = ps.add_unit(sample_project, "Casa 03")
        assert len(updated.housing_units) == 3
        assert all(len(row) == 3 for row in updated.progress.values())

    def test_rename_unit_keeps_values(self, sample_project):
        updated = ps.rename_unit(sample_project, "u1", "Casa A")
        assert updated.housing_units[0].name == "Casa A"
        assert updated.progress == sample_project.progress

    def test_remove_unknown_unit_raises(self, sample_project):
        with pytest.raises(ResolutionError):
            ps.remove_unit(sample_project, "ghost")

    def test_duplicate_unit_ids_rejected(self, sample_project):
        incoming = sample_project.model_copy(deep=True)
        incoming.housing_units = [HousingUnit(id="u1", name="A"), HousingUnit(id="u1", name="B")]
        with pytest.raises(ValidationFailed):
            ps.update_project(sample_project, incoming)

    def test_generate_units_zero_padding(self):
        names = [u.name for u in ps.generate_units("Casa", 1, 3)]
        assert names == ["Casa 01", "Casa 02", "Casa 03"]
        wide = ps.generate_units("Apto", 99, 100)
        assert [u.name for u in wide] == ["Apto 099", "Apto 100"]
        assert ps.generate_units("Casa", 5, 1) == []

    def test_generated_unit_ids_are_unique(self):
        units = ps.generate_units("Casa", 1, 50)
        assert len({u.id for u in units}) == 50


# ===========================================================================
# Class 4: Template edits
# ===========================================================================

class TestTemplateEdits:

    def test_save_template_keeps_surviving_rows(self, sample_project):
        template = [
            BudgetCategory(id="1", name="Fundação", sub_items=[
                BudgetLineItem(id="1.1", name="Sapata", incidence=60.0),
                BudgetLineItem(id="1.2", name="Baldrame", incidence=40.0),
            ]),
        ]
        updated = ps.save_template(sample_project, template)
        assert updated.progress == {"1.1": [100.0, 0.0], "1.2": [0.0, 0.0]}

    def test_unbalanced_template_rejected_unless_forced(self, sample_project):
        template = [BudgetCategory(id="1", name="A", sub_items=[BudgetLineItem(id="1.1", name="x", incidence=80.0)])]
        with pytest.raises(ValidationFailed):
            ps.save_template(sample_project, template)
        assert ps.save_template(sample_project, template, force=True).pls_data[0].sub_items[0].incidence == 80.0

    @pytest.mark.parametrize("incidences", [(50.0, 49.9), (50.0, 50.1)])
    def test_band_edges_are_balanced(self, sample_project, incidences):
        template = [BudgetCategory(id="1", name="A", sub_items=[
            BudgetLineItem(id="1.1", name="x", incidence=incidences[0]),
            BudgetLineItem(id="1.2", name="y", incidence=incidences[1]),
        ])]
        updated = ps.save_template(sample_project, template)
        assert [i.id for i in updated.pls_data[0].sub_items] == ["1.1", "1.2"]

    def test_duplicate_item_ids_rejected(self, sample_project):
        template = [BudgetCategory(id="1", name="A", sub_items=[
            BudgetLineItem(id="1.1", name="x", incidence=50.0),
            BudgetLineItem(id="1.1", name="y", incidence=50.0),
        ])]
        with pytest.raises(ValidationFailed):
            ps.save_template(sample_project, template)

    def test_rename_item(self, sample_project):
        updated = ps.rename_item(sample_project, "1", "1.1", "Sapata corrida")
        assert updated.pls_data[0].sub_items[0].name == "Sapata corrida"
        assert sample_project.pls_data[0].sub_items[0].name == "Sapata"

    def test_rename_unknown_item_is_noop(self, sample_project):
        assert ps.rename_item(sample_project, "1", "1.9", "x") is sample_project

    def test_update_item_id_moves_row_and_sorts(self, sample_project):
        project = ps.add_line_item(sample_project, "1", "Baldrame", 0.0)
        updated = ps.update_item_id(project, "1", "1.1", "1.10")
        assert [i.id for i in updated.pls_data[0].sub_items] == ["1.2", "1.10"]
        assert updated.progress["1.10"] == [100.0, 0.0]
        assert "1.1" not in updated.progress

    def test_update_item_id_rejects_duplicates(self, sample_project):
        with pytest.raises(ValidationFailed):
            ps.update_item_id(sample_project, "1", "1.1", "2.1")
        with pytest.raises(ValidationFailed):
            ps.update_item_id(sample_project, "1", "1.1", "  ")
        with pytest.raises(ResolutionError):
            ps.update_item_id(sample_project, "1", "7.7", "7.8")

    def test_add_category_and_item(self, sample_project):
        project = ps.add_category(sample_project, "Cobertura")
        assert project.pls_data[-1].id == "3"
        project = ps.add_line_item(project, "3", "Telhado", 5.0, "etapa")
        assert project.pls_data[-1].sub_items[0].id == "3.1"
        assert project.progress["3.1"] == [0.0, 0.0]

    def test_add_item_to_unknown_category(self, sample_project):
        with pytest.raises(ResolutionError):
            ps.add_line_item(sample_project, "42")


# ===========================================================================
# Class 5: Imports and archive
# ===========================================================================

class TestImportsAndArchive:

    def test_apply_metadata_fills_and_generates_units(self):
        extracted = ProjectMetadataExtraction(
            project_name="Residencial Sol", cost_of_works=12177921.44, units=3,
            address_city="Campinas", address_zip="13010-000", engineer_crea="123456",
        )
        draft = ps.apply_metadata(ProjectDraft(name=""), extracted, imported_at="2026-05-01T00:00:00+00:00")
        assert draft.name == "Residencial Sol"
        assert abs(draft.cost_of_works - 12177921.44) < 0.001
        assert [u.name for u in draft.housing_units] == ["Casa 01", "Casa 02", "Casa 03"]
        assert draft.address.city == "Campinas"
        assert draft.responsible_engineer.crea == "123456"
        assert draft.import_metadata.fre_imported_at == "2026-05-01T00:00:00+00:00"

    def test_apply_metadata_keeps_existing_units_and_values(self):
        draft = ProjectDraft(name="Antigo", cost_of_works=5.0, housing_units=[HousingUnit(id="a", name="A")])
        updated = ps.apply_metadata(draft, ProjectMetadataExtraction(project_name="", units=10))
        assert updated.name == "Antigo"
        assert updated.cost_of_works == 5.0
        assert [u.id for u in updated.housing_units] == ["a"]

    def test_apply_budget_template(self, sample_project, two_category_template):
        updated = ps.apply_budget_template(sample_project, two_category_template, imported_at="t")
        assert updated.import_metadata.pls_imported_at == "t"
        assert updated.progress["1.1"] == [100.0, 0.0]

    def test_apply_schedule(self, sample_project):
        extracted = ScheduleExtraction(schedule=[
            ScheduleStage(stage=1, physical_progress_stage=6.0, physical_progress_accumulated=6.0),
            ScheduleStage(stage=2, physical_progress_stage=8.0, physical_progress_accumulated=14.0),
        ])
        updated = ps.apply_schedule(sample_project, extracted)
        assert updated.duration_months == 2
        assert updated.schedule[1].physical_progress_accumulated == 14.0
        assert updated.import_metadata.schedule_imported_at

    def test_archive_report_snapshots(self, sample_project):
        options = ReportOptions(title="Medição 1")
        updated = ps.archive_report(sample_project, options, "pdf")
        assert len(updated.archived_reports) == 1
        report = updated.archived_reports[0]
        assert report.format == "pdf"
        assert abs(report.financials_snapshot["totalProgress"] - 25.0) < 1e-6
        assert report.progress_snapshot == sample_project.progress
        assert report.pls_data_snapshot[0]["subItems"][0]["cost"] == 100000.0
        assert sample_project.archived_reports == []
