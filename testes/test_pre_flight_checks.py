import os
import sys

# Ensure project root is on sys.path for imports when running tests directly
PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

import pytest
from fakes import FakeStore

from blog_migrator.config import apply_defaults
from blog_migrator.migrators.document_store import DocumentStoreError
from blog_migrator.utils.pre_flight_checks import PreFlightCheckError, run_pre_flight_checks

DUMP = "INSERT INTO `wp_posts` (`ID`) VALUES (1);\n"


def _config(**overrides):
    config = {
        "destination": {"project_id": "blog", "access_token": "token"},
        "assets": {"cloud_name": "demo", "api_key": "k", "api_secret": "s"},
    }
    for section, values in overrides.items():
        config.setdefault(section, {}).update(values)
    return apply_defaults(config)


class _FailingStore(FakeStore):
    def __init__(self, status_code):
        super().__init__()
        self.status_code = status_code

    def ping(self):
        raise DocumentStoreError("denied", self.status_code)


def test_all_checks_pass():
    run_pre_flight_checks(_config(), FakeStore(), dump_text=DUMP)


def test_dump_without_posts_table():
    with pytest.raises(PreFlightCheckError, match="wp_posts"):
        run_pre_flight_checks(_config(), FakeStore(), dump_text="INSERT INTO `wp_users` VALUES (1);")


def test_missing_json_export(tmp_path):
    config = _config(legacy={"json_export": str(tmp_path / "posts.json")})
    with pytest.raises(PreFlightCheckError, match="JSON export"):
        run_pre_flight_checks(config, FakeStore())


def test_missing_destination_token():
    with pytest.raises(PreFlightCheckError, match="access token"):
        run_pre_flight_checks(_config(destination={"access_token": ""}), FakeStore(), dump_text=DUMP)


def test_rejected_token():
    with pytest.raises(PreFlightCheckError, match="invalid or expired"):
        run_pre_flight_checks(_config(), _FailingStore(401), dump_text=DUMP)
    with pytest.raises(PreFlightCheckError, match="unreachable"):
        run_pre_flight_checks(_config(), _FailingStore(None), dump_text=DUMP)


def test_asset_secret_only_needed_for_real_runs():
    config = _config(assets={"api_key": "", "api_secret": ""})
    with pytest.raises(PreFlightCheckError, match="API key"):
        run_pre_flight_checks(config, FakeStore(), dump_text=DUMP)
    run_pre_flight_checks(config, FakeStore(), dump_text=DUMP, dry_run=True)


def test_source_check_can_be_left_out():
    config = _config(legacy={"json_export": "missing-posts.json"})
    run_pre_flight_checks(config, FakeStore(), check_source=False)
