"""
Tests for workflow_store: listing, loading, validation and caching
"""

import errno
import json

import pytest

from comfyui_image_mcp.errors import GraphMalformed, GraphNotFound, InvalidParameters, WorkspaceUnavailable
from comfyui_image_mcp.workflow_store import WorkflowStore, validate_workflow


class TestListWorkflows:
    """Tests for list_workflows()"""

    def test_lists_only_json_sorted(self, workspace):
        store = WorkflowStore(str(workspace))
        names = store.list_workflows()

        assert names == sorted(names)
        assert "workflow.json" in names
        assert "notes.txt" not in names

    def test_skips_hidden_files(self, workspace):
        (workspace / ".hidden.json").write_text("{}")
        assert ".hidden.json" not in WorkflowStore(str(workspace)).list_workflows()

    def test_missing_workspace(self, tmp_path):
        store = WorkflowStore(str(tmp_path / "nope"))
        with pytest.raises(WorkspaceUnavailable) as exc:
            store.list_workflows()
        assert exc.value.code == "WORKSPACE_UNAVAILABLE"

    def test_workspace_is_a_file(self, tmp_path):
        path = tmp_path / "file.json"
        path.write_text("{}")
        with pytest.raises(WorkspaceUnavailable):
            WorkflowStore(str(path)).list_workflows()

    @pytest.mark.parametrize(
        "error",
        [
            PermissionError(errno.EACCES, "Permission denied"),
            OSError(errno.ELOOP, "Too many levels of symbolic links"),
            OSError(errno.EIO, "Input/output error"),
        ],
    )
    def test_unreadable_workspace(self, workspace, monkeypatch, error):
        def fail(self):
            raise error

        store = WorkflowStore(str(workspace))
        monkeypatch.setattr(type(store.workspace_dir), "iterdir", fail)

        with pytest.raises(WorkspaceUnavailable) as exc:
            store.list_workflows()
        assert exc.value.to_dict()["code"] == "WORKSPACE_UNAVAILABLE"
        assert error.strerror.lower() in exc.value.message.lower()


class TestLoad:
    """Tests for load()"""

    def test_load_default(self, workspace, txt2img_workflow):
        store = WorkflowStore(str(workspace), "workflow.json")
        assert store.load() == txt2img_workflow

    def test_load_without_extension(self, workspace):
        store = WorkflowStore(str(workspace))
        assert store.load("img2img_workflow") is store.load("img2img_workflow.json")

    def test_preserves_node_order(self, workspace, img2img_workflow):
        store = WorkflowStore(str(workspace))
        assert list(store.load("img2img_workflow.json")) == list(img2img_workflow)

    def test_not_found(self, workspace):
        store = WorkflowStore(str(workspace))
        with pytest.raises(GraphNotFound) as exc:
            store.load("missing.json")
        assert exc.value.to_dict()["code"] == "NOT_FOUND"

    def test_invalid_json(self, workspace):
        store = WorkflowStore(str(workspace))
        with pytest.raises(GraphMalformed) as exc:
            store.load("not_json.json")
        assert "invalid JSON" in str(exc.value)

    def test_invalid_utf8(self, workspace):
        (workspace / "bad.json").write_bytes(b'{"1": {"class_type": "\xff", "inputs": {}}}')
        store = WorkflowStore(str(workspace))

        with pytest.raises(GraphMalformed) as exc:
            store.load("bad")

        assert "UTF-8" in exc.value.message
        assert exc.value.to_dict()["code"] == "WORKFLOW_VALIDATION"

    def test_deeply_nested_json(self, workspace):
        (workspace / "deep.json").write_text("[" * 100000 + "]" * 100000)
        with pytest.raises(GraphMalformed, match="invalid JSON"):
            WorkflowStore(str(workspace)).load("deep.json")

    def test_dangling_connection_rejected(self, workspace):
        store = WorkflowStore(str(workspace))
        with pytest.raises(GraphMalformed) as exc:
            store.load("dangling.json")
        assert "99" in str(exc.value)
        assert store.invalidate("dangling.json") == []

    @pytest.mark.parametrize("name", ["../workflow.json", "sub/workflow.json", "..\\x.json"])
    def test_rejects_path_names(self, workspace, name):
        with pytest.raises(InvalidParameters):
            WorkflowStore(str(workspace)).load(name)

    def test_logs_first_load_only(self, workspace, capturing_logger):
        store = WorkflowStore(str(workspace))
        store.load()
        store.load()
        assert capturing_logger.events().count("workflow_loaded") == 1


class TestCache:
    """Cache hit, invalidation and reload of edited files"""

    def test_cache_hit_returns_same_object(self, workspace):
        store = WorkflowStore(str(workspace))
        assert store.load() is store.load()

    def test_cache_hides_file_edits_until_invalidated(self, workspace):
        store = WorkflowStore(str(workspace))
        first = store.load()

        edited = dict(first)
        edited["5"] = {"class_type": "EmptyLatentImage", "inputs": {"width": 1024, "height": 1024}}
        (workspace / "workflow.json").write_text(json.dumps(edited))

        assert store.load()["5"]["inputs"]["width"] == 512

        assert store.invalidate("workflow") == ["workflow.json"]
        assert store.load()["5"]["inputs"]["width"] == 1024

    def test_invalidate_all(self, workspace):
        store = WorkflowStore(str(workspace))
        store.load("workflow.json")
        store.load("resize_workflow.json")

        dropped = store.invalidate()

        assert sorted(dropped) == ["resize_workflow.json", "workflow.json"]
        assert store.invalidate() == []

    def test_invalidate_uncached_is_noop(self, workspace):
        assert WorkflowStore(str(workspace)).invalidate("workflow.json") == []


class TestValidateWorkflow:
    """Structural validation rules"""

    def test_valid(self, txt2img_workflow):
        validate_workflow(txt2img_workflow)

    def test_empty(self):
        with pytest.raises(GraphMalformed, match="at least one node"):
            validate_workflow({})

    def test_not_an_object(self):
        with pytest.raises(GraphMalformed):
            validate_workflow([{"class_type": "KSampler", "inputs": {}}])

    def test_missing_class_type(self):
        with pytest.raises(GraphMalformed, match="missing class_type"):
            validate_workflow({"1": {"inputs": {}}})

    def test_missing_inputs(self):
        with pytest.raises(GraphMalformed, match="missing inputs"):
            validate_workflow({"1": {"class_type": "SaveImage"}})

    def test_empty_inputs_allowed(self):
        validate_workflow({"1": {"class_type": "SaveImage", "inputs": {}}})

    def test_node_not_object(self):
        with pytest.raises(GraphMalformed) as exc:
            validate_workflow({"1": "KSampler"})
        assert exc.value.node_id == "1"

    def test_dangling_names_reference(self):
        workflow = {"1": {"class_type": "VAEDecode", "inputs": {"samples": ["2", 0]}}}
        with pytest.raises(GraphMalformed) as exc:
            validate_workflow(workflow, name="x.json")
        assert "missing node 2" in exc.value.message
        assert exc.value.details["workflow_name"] == "x.json"

    def test_ui_format_rejected(self):
        with pytest.raises(GraphMalformed, match="API format"):
            validate_workflow({"nodes": [], "links": [], "version": 0.4})
