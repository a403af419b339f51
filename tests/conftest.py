"""
Pytest configuration and shared fixtures for the SpecGraph test suite.

Corpus fixtures build temporary multi-root document trees:

    root_a/payments/100001-capability.md   CAP-100001 Payment Processing
    root_a/payments/654321-enabler.md      ENB-654321 Card Gateway (owned by CAP-100001)
    root_b/ledger/100002-capability.md     CAP-100002 Ledger
"""
import sys
import shutil
import tempfile
from pathlib import Path

import pytest

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))


ENABLER_HEADER = [
    "| Enabler ID | Name | Description | Status | Approval | Priority |",
    "|------------|------|-------------|--------|----------|----------|",
]
DEPENDENCY_HEADER = [
    "| Capability ID | Description |",
    "|---------------|-------------|",
]


def build_capability(cap_id, name, enablers=(), upstream=(), downstream=(), newline="\n"):
    """Capability document text. enablers: 6-tuples; upstream/downstream: (id, description)."""
    lines = [
        f"# {name}",
        "",
        "## Metadata",
        f"- **Name**: {name}",
        "- **Type**: Capability",
        f"- **ID**: {cap_id}",
        "- **Status**: In Draft",
        "- **Approval**: Not Approved",
        "- **Priority**: High",
        "",
        "## Enablers",
        "",
        *ENABLER_HEADER,
        *["| " + " | ".join(row) + " |" for row in enablers],
        "",
        "## Dependencies",
        "",
        "### Internal Upstream Dependency",
        "",
        *DEPENDENCY_HEADER,
        *[f"| {cid} | {desc} |" for cid, desc in upstream],
        "",
        "### Internal Downstream Impact",
        "",
        *DEPENDENCY_HEADER,
        *[f"| {cid} | {desc} |" for cid, desc in downstream],
        "",
        "## Notes",
        "Free text that no operation may touch.",
        "",
    ]
    return newline.join(lines)


def build_enabler(enb_id, name, capability_id, description="", status="In Draft",
                  approval="Not Approved", priority="High"):
    """Enabler document text."""
    return "\n".join([
        f"# {name}",
        "",
        "## Metadata",
        f"- **Name**: {name}",
        "- **Type**: Enabler",
        f"- **ID**: {enb_id}",
        f"- **Capability ID**: {capability_id}",
        f"- **Description**: {description}",
        f"- **Status**: {status}",
        f"- **Approval**: {approval}",
        f"- **Priority**: {priority}",
        "",
        "## Technical Overview",
        "### Purpose",
        description or "Purpose pending.",
        "",
    ])


def write_text(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8", newline="") as f:
        f.write(text)
    return path


def read_text(path: Path) -> str:
    with open(path, "r", encoding="utf-8", newline="") as f:
        return f.read()


@pytest.fixture(autouse=True)
def reset_global_state():
    """Reset global state before each test to ensure isolation."""
    from core.engine import reset_engine
    from infrastructure.logger import reset_logger

    reset_engine()
    reset_logger()

    yield

    reset_engine()
    reset_logger()


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    path = Path(tempfile.mkdtemp()).resolve()
    yield path
    shutil.rmtree(path, ignore_errors=True)


@pytest.fixture
def roots(temp_dir):
    """Two storage roots (created, empty)."""
    result = [temp_dir / "root_a", temp_dir / "root_b"]
    for root in result:
        root.mkdir()
    return result


@pytest.fixture
def mutation_logger():
    from infrastructure.logger import MutationLogger
    return MutationLogger()


@pytest.fixture
def repository(roots, mutation_logger):
    from core.repository import DocumentRepository
    return DocumentRepository(roots, mutation_logger=mutation_logger)


@pytest.fixture
def corpus(roots):
    """Two capabilities in different roots and one enabler; returns their paths."""
    cap1 = write_text(
        roots[0] / "payments" / "100001-capability.md",
        build_capability(
            "CAP-100001", "Payment Processing",
            enablers=[("ENB-654321", "Card Gateway", "Talks to the card network",
                       "In Draft", "Not Approved", "High")],
        ),
    )
    cap2 = write_text(roots[1] / "ledger" / "100002-capability.md", build_capability("CAP-100002", "Ledger"))
    enb = write_text(
        roots[0] / "payments" / "654321-enabler.md",
        build_enabler("ENB-654321", "Card Gateway", "CAP-100001", description="Talks to the card network"),
    )
    return {"CAP-100001": cap1, "CAP-100002": cap2, "ENB-654321": enb}


@pytest.fixture
def engine(roots, mutation_logger):
    from core.engine import DocumentGraphEngine
    from infrastructure.config import EngineConfig
    return DocumentGraphEngine(EngineConfig.for_roots(roots), mutation_logger=mutation_logger)
