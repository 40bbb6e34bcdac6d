"""Tests for the rscope CLI."""

from __future__ import annotations

import json

import pytest
import yaml
from click.testing import CliRunner
from store_mock import (
    MockResourceStore,
    at,
    conflict,
    make_cluster,
    make_machine,
    make_provider_machine,
    to_wire,
)

from reconcile_scope import cli as cli_module
from reconcile_scope.cli import cli, parse_selector
from reconcile_scope.config import Config
from reconcile_scope.models import CLUSTER_KIND, MACHINE_KIND

PROVIDER_KIND = Config().provider_machine_kind()


@pytest.fixture
def store(monkeypatch: pytest.MonkeyPatch) -> MockResourceStore:
    for key in ("KUBECONFIG", "IN_CLUSTER", "RETRY_JITTER", "RETRY_STEPS"):
        monkeypatch.delenv(key, raising=False)

    store = MockResourceStore()
    store.add(CLUSTER_KIND, to_wire(make_cluster("c1")))
    store.add(MACHINE_KIND, to_wire(make_machine("m1")))
    store.add(PROVIDER_KIND, to_wire(make_provider_machine("m1", created=at(0), owner="m1")))
    store.add(PROVIDER_KIND, to_wire(make_provider_machine("m2", created=at(60), owner="m2")))
    monkeypatch.setattr(cli_module, "load_store", lambda config: store)
    return store


class TestParseSelector:
    def test_pairs(self) -> None:
        assert parse_selector(("a=1", "b=")) == {"a": "1", "b": ""}

    def test_invalid(self) -> None:
        import click

        with pytest.raises(click.BadParameter):
            parse_selector(("novalue",))


class TestInspect:
    """Tests for the inspect command."""

    def test_yaml_report(self, store: MockResourceStore) -> None:
        result = CliRunner().invoke(cli, ["inspect", "default", "m1"])

        assert result.exit_code == 0, result.output
        report = yaml.safe_load(result.output)
        assert report["machine"] == "default/m1"
        assert report["cluster"] == "c1"
        assert report["datacenterID"] == "dc-1"
        assert report["bootstrapDataSecret"] == "m1-bootstrap"
        assert report["failed"] is False
        assert report["siblings"] == 2
        assert report["latestSibling"] == "m2"

    def test_json_report(self, store: MockResourceStore) -> None:
        result = CliRunner().invoke(cli, ["inspect", "default", "m1", "-o", "json"])

        assert result.exit_code == 0, result.output
        assert json.loads(result.output)["latestSibling"] == "m2"

    def test_selector(self, store: MockResourceStore) -> None:
        result = CliRunner().invoke(cli, ["inspect", "default", "m1", "-l", "role=worker"])

        assert result.exit_code == 0, result.output
        report = yaml.safe_load(result.output)
        assert report["siblings"] == 0
        assert report["latestSibling"] is None

    def test_unknown_machine(self, store: MockResourceStore) -> None:
        result = CliRunner().invoke(cli, ["inspect", "default", "ghost"])

        assert result.exit_code != 0
        assert "404" in result.output

    def test_no_owner(self, store: MockResourceStore) -> None:
        store.add(PROVIDER_KIND, to_wire(make_provider_machine("orphan")))

        result = CliRunner().invoke(cli, ["inspect", "default", "orphan"])

        assert result.exit_code != 0
        assert "no owner Machine" in result.output


class TestFinalize:
    """Tests for the finalize command."""

    def test_commits_ready(self, store: MockResourceStore) -> None:
        result = CliRunner().invoke(cli, ["finalize", "default", "m1"])

        assert result.exit_code == 0, result.output
        assert "Finalized default/m1" in result.output
        stored = store.object(PROVIDER_KIND, "default", "m1")
        assert stored is not None
        assert [c["type"] for c in stored["status"]["conditions"]] == ["Ready"]

    def test_exhausted(self, store: MockResourceStore, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("RETRY_STEPS", "2")
        monkeypatch.setenv("RETRY_BASE_DELAY", "0")
        store.fail_patches(conflict(), count=2)

        result = CliRunner().invoke(cli, ["finalize", "default", "m1"])

        assert result.exit_code != 0
        assert "after 2 attempts" in result.output
