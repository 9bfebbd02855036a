"""
Tests for the diagnostics CLI.
"""

import json
import os
import tempfile

import pytest
from typer.testing import CliRunner

from pkglog import __version__
from pkglog.cli.main import app
from pkglog.client import Client
from pkglog.config import ClientConfig
from pkglog.core.digest import digest
from pkglog.core.signer import SigningKey
from pkglog.log import Release
from pkglog.tests.fakes import START_TIME, FakeRegistry, init_record, package_log, signed_record

runner = CliRunner()


@pytest.fixture
def storage_dir():
    api = FakeRegistry()
    key = SigningKey.generate()
    log_id = package_log("acme:widgets")
    head = api.append(log_id, init_record(key)).envelope.record_id
    api.append(
        log_id,
        signed_record(key, [Release("1.0.0", digest(b"1.0.0"))], prev=head, timestamp=START_TIME + 1),
    )

    with tempfile.TemporaryDirectory() as tmpdir:
        Client.from_config(api, ClientConfig(storage_dir=tmpdir)).upsert(["acme:widgets"])
        yield tmpdir


def test_checkpoint_json(storage_dir):
    result = runner.invoke(app, ["checkpoint", "--storage", storage_dir, "--json"])

    assert result.exit_code == 0
    data = json.loads(result.stdout)
    assert data["checkpoint"]["checkpoint"]["length"] == 3


def test_packages_json(storage_dir):
    result = runner.invoke(app, ["packages", "-s", storage_dir, "--json"])

    assert result.exit_code == 0
    data = json.loads(result.stdout)
    assert data["count"] == 1
    assert data["packages"][0]["package_id"] == "acme:widgets"
    assert data["packages"][0]["records"] == 2


def test_packages_table(storage_dir):
    result = runner.invoke(app, ["packages", "-s", storage_dir])

    assert result.exit_code == 0
    assert "acme:widgets" in result.stdout
    assert "1.0.0" in result.stdout


def test_log_json(storage_dir):
    result = runner.invoke(app, ["log", "acme:widgets", "-s", storage_dir, "--json"])

    assert result.exit_code == 0
    data = json.loads(result.stdout)
    assert len(data["records"]) == 2
    assert "1.0.0" in data["releases"]


def test_log_of_untracked_package(storage_dir):
    result = runner.invoke(app, ["log", "acme:gadgets", "-s", storage_dir, "--json"])

    assert result.exit_code == 1
    assert "not tracked" in json.loads(result.stdout)["error"]


def test_log_with_malformed_package_id(storage_dir):
    result = runner.invoke(app, ["log", "Not A Package", "-s", storage_dir])

    assert result.exit_code == 2


def test_missing_storage():
    with tempfile.TemporaryDirectory() as tmpdir:
        result = runner.invoke(app, ["packages", "-s", os.path.join(tmpdir, "nowhere"), "--json"])

    assert result.exit_code == 2
    assert "storage not found" in json.loads(result.stdout)["error"]


def test_empty_storage_has_no_checkpoint():
    with tempfile.TemporaryDirectory() as tmpdir:
        os.makedirs(os.path.join(tmpdir, "registry"))
        result = runner.invoke(app, ["checkpoint", "-s", tmpdir, "--json"])

    assert result.exit_code == 0
    assert json.loads(result.stdout) == {"checkpoint": None}


def test_version():
    result = runner.invoke(app, ["version"])

    assert result.exit_code == 0
    assert __version__ in result.stdout
