import os
import sys

# Ensure project root is on sys.path for imports when running tests directly
PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

import json
from types import SimpleNamespace

import pytest
from fakes import FakeAssets, FakeSource, FakeStore

import main as cli
from blog_migrator.config import load_config
from blog_migrator.extractors.sql_tokenizer import WORDPRESS_SCHEMAS, encode_insert

POST_ROW = [
    1, 1, "2023-01-01 00:00:00", "2023-01-01 00:00:00", '<p>Body <img src="http://old/a.png"></p>',
    "First Post", "", "publish", "open", "open", "", "first-post", "", "", "2023-01-02 00:00:00",
    "2023-01-02 00:00:00", "", 0, "http://old/?p=1", 0, "post", "", 0,
]


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(
        json.dumps(
            {
                "destination": {"project_id": "blog", "access_token": "token"},
                "assets": {"cloud_name": "demo", "api_key": "k", "api_secret": "s"},
                "migration": {"record_delay": 0},
            }
        ),
        encoding="utf-8",
    )
    return str(path)


@pytest.fixture
def fake_clients(monkeypatch):
    store, assets, source = FakeStore(), FakeAssets(), FakeSource()
    monkeypatch.setattr(cli, "FirestoreRestStore", SimpleNamespace(from_config=lambda cfg: store))
    monkeypatch.setattr(cli, "CloudinaryAssetService", SimpleNamespace(from_config=lambda cfg: assets))
    monkeypatch.setattr(cli, "LegacyStorageClient", SimpleNamespace(from_config=lambda cfg: source))
    return store, assets, source


def test_cli_overrides():
    args = cli.build_parser().parse_args(["--dump", "blog.sql", "--dry-run", "--limit=5", "--featured-only"])
    config = cli.apply_cli_overrides(load_config(None), args)
    assert config["legacy"]["dump_path"] == "blog.sql"
    assert config["migration"]["dry_run"] is True
    assert config["migration"]["limit"] == 5
    assert config["migration"]["featured_only"] is True
    assert config["migration"]["content_only"] is False


def test_image_scopes_are_mutually_exclusive():
    with pytest.raises(SystemExit):
        cli.build_parser().parse_args(["--featured-only", "--content-only"])


def test_skip_existing_and_force_are_mutually_exclusive():
    with pytest.raises(SystemExit):
        cli.build_parser().parse_args(["--skip-existing", "--force"])


def test_stored_images_takes_no_legacy_source():
    with pytest.raises(SystemExit):
        cli.build_parser().parse_args(["--stored-images", "--dump", "blog.sql"])


def test_missing_dump_aborts(tmp_path, config_file, capsys):
    assert cli.main(["--dump", str(tmp_path / "missing.sql"), "--config", config_file]) == 1
    assert "Migration aborted before processing any record" in capsys.readouterr().out


def test_dump_without_posts_aborts(tmp_path, config_file, fake_clients):
    dump = tmp_path / "blog.sql"
    dump.write_text("INSERT INTO `wp_users` VALUES (1,'admin');\n", encoding="utf-8")
    assert cli.main(["--dump", str(dump), "--config", config_file]) == 1
    assert fake_clients[0].writes == []


def test_full_run_from_dump(tmp_path, config_file, fake_clients, capsys):
    store, assets, source = fake_clients
    dump = tmp_path / "blog.sql"
    dump.write_text(encode_insert("wp_posts", WORDPRESS_SCHEMAS["posts"], [POST_ROW]), encoding="utf-8")

    assert cli.main(["--dump", str(dump), "--config", config_file]) == 0

    doc = store.docs[("posts", "wp_1")]
    assert doc["slug"] == "first-post"
    assert doc["status"] == "published"
    assert "http://old/a.png" not in doc["content"]
    assert source.calls == ["http://old/a.png"]
    assert len(assets.uploads) == 1
    assert os.path.exists(os.path.join("reports", "migration", "report.json"))
    assert "Migrated: 1" in capsys.readouterr().out


def test_dry_run_from_dump_writes_nothing(tmp_path, config_file, fake_clients):
    store, assets, _ = fake_clients
    dump = tmp_path / "blog.sql"
    dump.write_text(encode_insert("wp_posts", WORDPRESS_SCHEMAS["posts"], [POST_ROW]), encoding="utf-8")

    assert cli.main(["--dump", str(dump), "--config", config_file, "--dry-run"]) == 0
    assert store.writes == []
    assert assets.uploads == []


def test_stored_images_run(config_file, fake_clients, capsys):
    store, assets, source = fake_clients
    store.docs[("posts", "wp_1")] = {
        "title": "Stored",
        "slug": "stored",
        "content": '<img src="http://old/a.png">',
        "meta": {"wordpressId": 1},
    }

    assert cli.main(["--stored-images", "--config", config_file]) == 0

    assert "http://old/a.png" not in store.docs[("posts", "wp_1")]["content"]
    assert source.calls == ["http://old/a.png"]
    assert len(assets.uploads) == 1
    assert "Migrated: 1" in capsys.readouterr().out
