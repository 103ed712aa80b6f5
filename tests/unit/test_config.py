# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Unit tests for configuration loading and structured logging
"""

import json
import logging

import pytest

from outreach.core.config import Config, load_config
from outreach.core.errors import ConfigurationError, NotFoundError
from outreach.core.logging import JSONFormatter, log_event


def test_missing_file_uses_defaults(tmp_path):
    config = load_config(str(tmp_path / "missing.yaml"))
    assert config == Config()


def test_yaml_values(tmp_path, monkeypatch):
    monkeypatch.delenv("LOG_LEVEL", raising=False)
    path = tmp_path / "outreach.yaml"
    path.write_text(
        "queue:\n"
        "  concurrency: 2\n"
        "  continuation_max_retries: 0\n"
        "engine:\n"
        "  daily_email_limit: 10\n"
        "retry:\n"
        "  initial_delay: 0\n"
        "paths:\n"
        "  executions: /var/lib/outreach/executions\n"
        "logging:\n"
        "  level: DEBUG\n"
    )

    config = load_config(str(path))

    assert config.worker_concurrency == 2
    assert config.continuation_max_retries == 0
    assert config.daily_email_limit == 10
    assert config.retry_initial_delay == 0
    assert str(config.executions_dir) == "/var/lib/outreach/executions"
    assert config.log_level == "DEBUG"
    assert config.scheduler_interval == Config().scheduler_interval


def test_log_level_env_override(tmp_path, monkeypatch):
    monkeypatch.setenv("LOG_LEVEL", "WARNING")
    path = tmp_path / "outreach.yaml"
    path.write_text("logging:\n  level: DEBUG\n")

    assert load_config(str(path)).log_level == "WARNING"


def test_invalid_yaml(tmp_path):
    path = tmp_path / "broken.yaml"
    path.write_text("queue: [unclosed\n")

    with pytest.raises(ConfigurationError) as exc_info:
        load_config(str(path))
    assert exc_info.value.config_file == str(path)


def test_non_mapping_root(tmp_path):
    path = tmp_path / "list.yaml"
    path.write_text("- one\n- two\n")

    with pytest.raises(ConfigurationError, match="mapping"):
        load_config(str(path))


def test_gemini_key_from_environment(monkeypatch):
    monkeypatch.setenv("GEMINI_API_KEY", "env-key")
    assert Config().get_gemini_api_key() == "env-key"


def test_error_to_dict():
    error = NotFoundError("Workflow", "wf-9")
    assert error.to_dict() == {
        "error": "NotFoundError",
        "message": "Workflow not found: wf-9",
        "details": {},
    }


def test_json_formatter_includes_extra_fields():
    logger = logging.getLogger("outreach.test.formatter")
    records = []

    class Capture(logging.Handler):
        def emit(self, record):
            records.append(record)

    handler = Capture()
    logger.addHandler(handler)
    try:
        log_event(logger, "job_enqueued", level="WARNING", job_id="workflow_abc", priority="high")
    finally:
        logger.removeHandler(handler)

    payload = json.loads(JSONFormatter().format(records[0]))
    assert payload["message"] == "job_enqueued"
    assert payload["level"] == "WARNING"
    assert payload["job_id"] == "workflow_abc"
    assert payload["priority"] == "high"
