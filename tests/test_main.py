"""Tests for the command line poll loop."""
from __future__ import annotations

import json
from unittest.mock import patch

import pytest

from db2_tap import main as main_module
from db2_tap.agent import Db2Agent
from db2_tap.config import load_config
from db2_tap.connection import ConnectionManager

CATEGORIES = [
    {"category": "overview", "SQL": "SELECT OVERVIEW", "result": "row"},
    {"category": "tablespace", "SQL": "SELECT TABLESPACES", "result": "set"},
]


@pytest.fixture
def config_path(tmp_path):
    (tmp_path / "categories.json").write_text(json.dumps(CATEGORIES), encoding="utf-8")
    path = tmp_path / "db2-tap.cfg"
    path.write_text(
        """\
[publish]
interval_s = 5

[categories]
path = categories.json

[agent:PRODDB]
database = SAMPLE
user = db2inst1
passwd = s3cr3t-pw
metrics = overview,tablespace

[agent:BROKEN]
database = SAMPLE
user = db2inst1
""",
        encoding="utf-8",
    )
    return path


@pytest.fixture
def database(make_connection):
    return make_connection(
        {
            "SELECT OVERVIEW": (["TOTAL_APP_COMMITS"], [(42,)]),
            "SELECT TABLESPACES": (["TBSP_NAME", "TBSP_FREE_SIZE_KB"], [("USERSPACE1", 2048)]),
        }
    )


@pytest.fixture(autouse=True)
def no_logging_setup():
    with patch.object(main_module, "configure_logging") as configure:
        yield configure


@pytest.fixture
def fake_db(database):
    with patch("db2_tap.connection.ibm_db_connector", lambda params: database):
        yield database


class TestBuildAgents:
    def test_broken_agent_is_skipped(self, config_path, fake_db):
        config = load_config(config_path)
        categories = main_module.load_categories(config.categories_path)
        agents = main_module.build_agents(config, categories)
        assert [agent.name for agent in agents] == ["PRODDB"]

    def test_poll_builds_payloads(self, config_path, fake_db):
        config = load_config(config_path)
        categories = main_module.load_categories(config.categories_path)
        agents = main_module.build_agents(config, categories)

        payloads = main_module.poll(agents)

        payload = json.loads(payloads["PRODDB"])
        names = {metric["name"] for metric in payload["metrics"]}
        assert names == {
            "overview/total_app_commits",
            "tablespace_USERSPACE1/tbsp_free_size_kb",
        }

    def test_poll_skips_agents_without_metrics(self, agent_config):
        agent = Db2Agent(agent_config, [], ConnectionManager(lambda params: None))
        assert main_module.poll([agent]) == {}


class TestMain:
    def test_once_dry_run_dumps_json(self, config_path, fake_db, tmp_path):
        dump = tmp_path / "out.json"
        with patch.object(main_module, "MqttPublisher") as publisher_cls:
            code = main_module.main(
                ["--config", str(config_path), "--once", "--dry-run", "--dump-json", str(dump)]
            )

        assert code == 0
        publisher_cls.assert_not_called()
        [payload] = json.loads(dump.read_text(encoding="utf-8"))
        assert payload["agent"] == "PRODDB"
        assert fake_db.closed is True

    def test_once_publishes(self, config_path, fake_db):
        with patch.object(main_module, "MqttPublisher") as publisher_cls:
            code = main_module.main(["--config", str(config_path), "--once"])

        assert code == 0
        publisher = publisher_cls.return_value
        publisher.connect.assert_called_once()
        agent_name, payload_json = publisher.publish.call_args.args
        assert agent_name == "PRODDB"
        assert json.loads(payload_json)["metrics"]
        publisher.disconnect.assert_called_once()

    def test_passwords_passed_to_log_filter(self, config_path, fake_db, no_logging_setup):
        with patch.object(main_module, "MqttPublisher"):
            main_module.main(["--config", str(config_path), "--once", "--dry-run"])
        assert no_logging_setup.call_args.kwargs["secrets"] == ["s3cr3t-pw"]

    def test_invalid_categories_exit_code(self, config_path):
        (config_path.parent / "categories.json").write_text("{}", encoding="utf-8")
        assert main_module.main(["--config", str(config_path), "--once", "--dry-run"]) == 1

    def test_no_agents_exit_code(self, tmp_path):
        (tmp_path / "categories.json").write_text(json.dumps(CATEGORIES), encoding="utf-8")
        path = tmp_path / "empty.cfg"
        path.write_text("[categories]\npath = categories.json\n", encoding="utf-8")
        assert main_module.main(["--config", str(path), "--once", "--dry-run"]) == 1

    def test_publish_status(self, config_path):
        with patch.object(main_module, "MqttPublisher") as publisher_cls, patch.object(
            main_module.time, "sleep"
        ):
            publisher = publisher_cls.return_value
            publisher.connected = True
            publisher.publish_status.return_value = True
            code = main_module.main(
                ["--config", str(config_path), "--publish-status", "maintenance"]
            )

        assert code == 0
        publisher.publish_status.assert_called_once_with("maintenance")
        publisher.disconnect.assert_called_once()
