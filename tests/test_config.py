"""
Tests for configuration and the error taxonomy
"""

import pytest

from docflow import config as config_module
from docflow.config import DocflowConfig, get_config, reload_config
from docflow.errors import (
    ConflictError, DocflowError, ForbiddenError, InvalidStateError,
    NotFoundError, PersistenceError, ValidationError
)


class TestDocflowConfig:
    """Environment driven settings"""

    def test_defaults(self):
        config = DocflowConfig()
        assert config.api_port == 8090
        assert config.rejection_min_length == 10
        assert config.max_page_size == 100

    def test_environment_prefix(self, monkeypatch):
        monkeypatch.setenv("DOCFLOW_API_PORT", "9100")
        monkeypatch.setenv("DOCFLOW_AUTH_ENABLED", "false")

        config = DocflowConfig()

        assert config.api_port == 9100
        assert config.auth_enabled is False

    def test_reload_replaces_global(self, monkeypatch):
        original = get_config()
        monkeypatch.setattr(config_module, "config", original)
        monkeypatch.setenv("DOCFLOW_WEBHOOK_URL", "https://hooks.example.com/docflow")

        reloaded = reload_config()

        assert reloaded is get_config()
        assert reloaded.webhook_url == "https://hooks.example.com/docflow"


class TestErrors:
    """Error codes and HTTP statuses"""

    @pytest.mark.parametrize("error_class,code,http_status", [
        (NotFoundError, "NOT_FOUND", 404),
        (ForbiddenError, "FORBIDDEN", 403),
        (InvalidStateError, "INVALID_STATE", 409),
        (ValidationError, "VALIDATION_ERROR", 400),
        (ConflictError, "CONFLICT", 409),
        (PersistenceError, "PERSISTENCE_ERROR", 500),
    ])
    def test_taxonomy(self, error_class, code, http_status):
        error = error_class("boom")
        assert isinstance(error, DocflowError)
        assert error.error_code == code
        assert error.http_status == http_status

    def test_to_dict(self):
        error = NotFoundError("Workflow wf_1 not found", details={"workflow_id": "wf_1"})
        assert error.to_dict() == {
            "error": {
                "code": "NOT_FOUND",
                "message": "Workflow wf_1 not found",
                "details": {"workflow_id": "wf_1"}
            }
        }

    def test_code_override(self):
        error = ValidationError("Too short", error_code="COMMENT_TOO_SHORT")
        assert error.error_code == "COMMENT_TOO_SHORT"
        assert ValidationError("x").error_code == "VALIDATION_ERROR"
