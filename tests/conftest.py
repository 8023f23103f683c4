import pytest

from helpers.documents import build_document, question
from playbook_engine.compiler import compile_template
from playbook_engine.engine import FacilitationEngine
from playbook_engine.models.protocol import Protocol
from playbook_engine.models.session import SessionState
from playbook_engine.registry import TemplateRegistry, find_repo_root


@pytest.fixture(scope="session")
def repo_root():
    return find_repo_root()


@pytest.fixture(scope="session")
def registry(repo_root):
    """Registry loaded once from the shipped playbooks/ directory."""
    r = TemplateRegistry()
    r.load_directory(repo_root / "playbooks")
    return r


@pytest.fixture
def engine():
    return FacilitationEngine()


@pytest.fixture
def state():
    return SessionState.start("sess1")


@pytest.fixture
def two_phase_template():
    """greet: q1, q2 — discover: q3."""
    doc = build_document(
        [
            question("q1", "greet"),
            question("q2", "greet"),
            question("q3", "discover"),
        ],
        phases=["greet", "discover"],
    )
    return compile_template(doc)


@pytest.fixture
def three_phase_protocol():
    """Protocol whose order extends past the template's phases."""
    return Protocol(
        phases=["greet", "discover", "validate"],
        max_questions=25,
        max_followups=3,
        drift_soft_limit=3,
        drift_hard_limit=5,
        strict_phases=True,
    )
