import ast
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[2]


def _imports(py_file: Path):
    tree = ast.parse(py_file.read_text(encoding="utf-8"), filename=str(py_file))
    for node in ast.walk(tree):
        if isinstance(node, ast.Import):
            for alias in node.names:
                yield node.lineno, alias.name
        elif isinstance(node, ast.ImportFrom):
            yield node.lineno, node.module or ""


def _violations(package: str, forbidden):
    found = []
    for py_file in (REPO_ROOT / "ffwatch" / package).rglob("*.py"):
        rel_path = py_file.relative_to(REPO_ROOT)
        for lineno, name in _imports(py_file):
            if any(name == f or name.startswith(f + ".") for f in forbidden):
                found.append(f"{rel_path}:{lineno} imports {name}")
    return found


def test_pipeline_layer_does_not_import_presentation():
    """Pipeline layer publishes events; rendering them is the reporters' job."""
    violations = _violations("pipeline", ["ffwatch.infrastructure.reporters", "rich", "typer"])
    assert not violations, "Pipeline layer must not import presentation code:\n" + "\n".join(violations)


def test_domain_layer_is_self_contained():
    """Domain models depend on nothing but pydantic and the stdlib."""
    violations = _violations("domain", ["ffwatch.infrastructure", "ffwatch.pipeline", "ffwatch.config"])
    assert not violations, "Domain layer must not import outer layers:\n" + "\n".join(violations)
