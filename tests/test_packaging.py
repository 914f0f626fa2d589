import os

_project_root = os.path.dirname(os.path.dirname(__file__))


def _pyproject() -> str:
    with open(os.path.join(_project_root, "pyproject.toml"), encoding="utf-8") as fh:
        return fh.read()


def test_package_metadata_does_not_ship_design_documents():
    text = _pyproject()
    assert "SPEC_FULL.md" not in text
    assert "DESIGN.md" not in text


def test_declared_modules_exist():
    text = _pyproject()
    assert 'packages = ["bgchaos"]' in text
    assert 'py-modules = ["main", "cli"]' in text
    for rel in ("bgchaos/__init__.py", "main.py", "cli.py"):
        assert os.path.exists(os.path.join(_project_root, rel))
