"""
conftest.py — Shared pytest fixtures for the PLS tracker backend test suite.

No database or external service fixtures are defined here. Service tests are
pure unit tests on project values; API tests use the in-memory store and a
dependency override for the authenticated user.

Import-path bootstrapping:
    The ``backend/`` directory is inserted into sys.path so that all
    ``app.*`` imports resolve correctly regardless of where pytest is invoked.
"""

import os
import sys

import pytest

# ---------------------------------------------------------------------------
# Ensure ``backend/`` is on the import path before any app imports occur.
# ---------------------------------------------------------------------------
_BACKEND_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _BACKEND_DIR not in sys.path:
    sys.path.insert(0, _BACKEND_DIR)

# Never pick up a developer's database or LLM keys from the environment.
os.environ.pop("DATABASE_URL", None)
os.environ.setdefault("LOG_FORMAT", "text")
# Use litellm's bundled model cost map; its background remote fetch races
# with test-module imports when there is no network.
os.environ.setdefault("LITELLM_LOCAL_MODEL_COST_MAP", "True")


# ---------------------------------------------------------------------------
# Template fixtures
# ---------------------------------------------------------------------------

@pytest.fixture(scope="session")
def two_category_template():
    """
    Two categories, one item each:
      1  Fundação   1.1 Sapata    incidence 50
      2  Estrutura  2.1 Pilares   incidence 50
    Total incidence = 100 (balanced).
    """
    from app.models.pls_schema import BudgetCategory, BudgetLineItem
    return [
        BudgetCategory(id="1", name="Fundação", sub_items=[
            BudgetLineItem(id="1.1", name="Sapata", incidence=50.0, unit="vb"),
        ]),
        BudgetCategory(id="2", name="Estrutura", sub_items=[
            BudgetLineItem(id="2.1", name="Pilares", incidence=50.0, unit="vb"),
        ]),
    ]


@pytest.fixture
def two_units():
    from app.models.pls_schema import HousingUnit
    return [HousingUnit(id="u1", name="Casa 01"), HousingUnit(id="u2", name="Casa 02")]


@pytest.fixture
def sample_project(two_category_template, two_units):
    """
    Example scenario: cost of works 200 000, two units.
      1.1 Sapata  -> [100, 0]   (average 50)
      2.1 Pilares -> [0, 0]
    Expected: total progress 25, released 50 000, balance 150 000.
    """
    from app.models.pls_schema import Project
    return Project(
        id="proj-1",
        name="Residencial Teste",
        owner_id="owner-1",
        members=["owner-1"],
        housing_units=two_units,
        progress={"1.1": [100.0, 0.0], "2.1": [0.0, 0.0]},
        created_at="2026-01-10T12:00:00+00:00",
        cost_of_works=200_000.0,
        pls_data=[c.model_copy(deep=True) for c in two_category_template],
    )


@pytest.fixture
def default_template_project():
    """Project on the default template with three units and an all-zero matrix."""
    from app.models.pls_schema import HousingUnit, ProjectDraft
    from app.services.project_service import new_project
    draft = ProjectDraft(
        name="Condomínio Padrão",
        cost_of_works=1_000_000.0,
        housing_units=[HousingUnit(id=f"u{i}", name=f"Casa 0{i}") for i in range(1, 4)],
    )
    return new_project(draft, "owner-1", project_id="proj-default")


# ---------------------------------------------------------------------------
# LLM stubs
# ---------------------------------------------------------------------------

@pytest.fixture
def fake_llm(monkeypatch):
    """
    Replaces llm_client.complete / complete_with_vision with canned replies.

    Usage:
        fake_llm["text"] = '{"projectName": "..."}'
        fake_llm["vision"] = "transcribed text"
    Calls are recorded in fake_llm["calls"].
    """
    from app.services import llm_client

    state = {"text": "", "vision": "", "calls": []}

    async def _complete(messages, temperature=0.1, json_mode=False, max_tokens=4096):
        state["calls"].append(("complete", messages))
        return state["text"]

    async def _vision(files_base64, prompt, mime_type="image/png", temperature=0.1, json_mode=False):
        state["calls"].append(("vision", prompt))
        return state["vision"] if state["vision"] else state["text"]

    monkeypatch.setattr(llm_client, "complete", _complete)
    monkeypatch.setattr(llm_client, "complete_with_vision", _vision)
    return state
