from delivery_baseline.core.io.load_project import load_project
from delivery_baseline.core.errors import ProjectLoadError


def test_load_yaml_success():
    project = load_project("examples/delivery-project.yaml")
    assert project["schema_version"] == "0.1.0"
    assert project["project_id"] == "PRJ-001"
    assert isinstance(project["plan_nodes"], list)


def test_load_json_success(tmp_path):
    p = tmp_path / "project.json"
    p.write_text('{"schema_version": "0.1.0", "project_id": "X", "milestones": []}', encoding="utf-8")
    project = load_project(str(p))
    assert project["project_id"] == "X"
    assert project["milestones"] == []


def test_load_missing_file():
    try:
        load_project("examples/does-not-exist.yaml")
        assert False, "expected ProjectLoadError"
    except ProjectLoadError as e:
        assert e.code == "E_FILE_NOT_FOUND"


def test_load_unsupported_format(tmp_path):
    p = tmp_path / "project.txt"
    p.write_text("hello", encoding="utf-8")
    try:
        load_project(str(p))
        assert False, "expected ProjectLoadError"
    except ProjectLoadError as e:
        assert e.code == "E_UNSUPPORTED_FORMAT"


def test_load_bad_yaml(tmp_path):
    p = tmp_path / "project.yaml"
    p.write_text("milestones: [\n", encoding="utf-8")
    try:
        load_project(str(p))
        assert False, "expected ProjectLoadError"
    except ProjectLoadError as e:
        assert e.code == "E_YAML_PARSE"


def test_load_top_level_list(tmp_path):
    p = tmp_path / "project.yaml"
    p.write_text("- a\n- b\n", encoding="utf-8")
    try:
        load_project(str(p))
        assert False, "expected ProjectLoadError"
    except ProjectLoadError as e:
        assert e.code == "E_INVALID_TOP_LEVEL"


def test_load_empty_sections_become_lists(tmp_path):
    p = tmp_path / "project.yaml"
    p.write_text("schema_version: '0.1.0'\nproject_id: X\nmilestones:\ndeliverables: []\n", encoding="utf-8")
    project = load_project(str(p))
    assert project["milestones"] == []
    assert project["deliverables"] == []
    assert project["plan_nodes"] == []


def test_load_section_must_be_a_list(tmp_path):
    p = tmp_path / "project.yaml"
    p.write_text("schema_version: '0.1.0'\nproject_id: X\nmilestones:\n  M-1: {name: Kickoff}\n", encoding="utf-8")
    try:
        load_project(str(p))
        assert False, "expected ProjectLoadError"
    except ProjectLoadError as e:
        assert e.code == "E_INVALID_SECTION"
        assert "milestones" in e.message


def test_load_unknown_top_level_key(tmp_path):
    p = tmp_path / "project.json"
    p.write_text('{"schema_version": "0.1.0", "project_id": "X", "tasks": []}', encoding="utf-8")
    try:
        load_project(str(p))
        assert False, "expected ProjectLoadError"
    except ProjectLoadError as e:
        assert e.code == "E_UNKNOWN_SECTION"
        assert "tasks" in e.message
