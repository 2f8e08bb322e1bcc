"""
fleet-secrets — unit tests for domain models

File: tests/unit/domain/test_models.py
Last updated: 2026-10-19

Purpose
- Validate key naming, the key catalog table, request validation, and report
  status derivation and serialization.
"""

from __future__ import annotations

import json

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from fleet_secrets.domain.models import (
    ConfigKey,
    KeyCatalog,
    KeyMaterialContext,
    ProviderResult,
    ResolutionReport,
    ResolutionRequest,
    ResolutionStatus,
    SourceKind,
    validate_target_id,
)

_KEY_NAMES = st.from_regex(r"[a-z][a-z0-9_]{0,15}", fullmatch=True)


@pytest.mark.unit
def test_config_key_file_name_is_kebab_case() -> None:
    assert ConfigKey("turn_credential").file_name == "turn-credential"
    assert ConfigKey("identity").file_name == "identity"


@pytest.mark.unit
@pytest.mark.parametrize("name", ["", "Identity", "1key", "turn-credential", "a b"])
def test_config_key_rejects_non_snake_case(name: str) -> None:
    with pytest.raises(ValueError, match="lower snake case"):
        ConfigKey(name)


@pytest.mark.unit
@settings(max_examples=100, deadline=None)
@given(names=st.lists(_KEY_NAMES, min_size=1, max_size=8, unique=True))
def test_file_names_are_one_to_one(names: list[str]) -> None:
    file_names = {ConfigKey(name).file_name for name in names}
    assert len(file_names) == len(names)


@pytest.mark.unit
def test_catalog_rejects_duplicate_env_names() -> None:
    with pytest.raises(ValueError, match="already mapped"):
        KeyCatalog.from_table({"identity": "ROBOT_ID", "endpoint": "ROBOT_ID"})


@pytest.mark.unit
def test_catalog_rejects_invalid_env_name() -> None:
    with pytest.raises(ValueError, match="invalid environment variable name"):
        KeyCatalog.from_table({"identity": "robot-id"})


@pytest.mark.unit
def test_catalog_select_and_lookup(catalog: KeyCatalog) -> None:
    assert catalog.select(["endpoint", "identity"]) == (ConfigKey("endpoint"), ConfigKey("identity"))
    assert catalog.select() == catalog.keys
    assert catalog.env_var_for(ConfigKey("identity")) == "ROBOT_IDENTITY"
    assert ConfigKey("identity") in catalog
    assert "identity" not in catalog
    with pytest.raises(ValueError, match="unknown config key 'missing'"):
        catalog.select(["missing"])


@pytest.mark.unit
@pytest.mark.parametrize("value", ["rx-7", "RX_7.a", "a" * 128])
def test_validate_target_id_accepts(value: str) -> None:
    assert validate_target_id(value) == value


@pytest.mark.unit
@pytest.mark.parametrize("value", ["", "../rx-7", "rx/7", "-rx", "a" * 129, 7, None])
def test_validate_target_id_rejects(value: object) -> None:
    with pytest.raises(ValueError, match="target_id"):
        validate_target_id(value)


@pytest.mark.unit
def test_request_rejects_duplicate_keys() -> None:
    with pytest.raises(ValueError, match="duplicate keys"):
        ResolutionRequest(target_id="rx-7", keys=(ConfigKey("identity"), ConfigKey("identity")))


@pytest.mark.unit
def test_key_material_from_environ_ignores_blank() -> None:
    assert KeyMaterialContext.from_environ({"KEY": "  "}, "KEY") is None
    assert KeyMaterialContext.from_environ({}, "KEY") is None
    context = KeyMaterialContext.from_environ({"KEY": "/etc/robot.key"}, "KEY")
    assert context is not None
    assert context.path.as_posix() == "/etc/robot.key"


@pytest.mark.unit
def test_provider_result_requires_value_and_source_together() -> None:
    with pytest.raises(ValueError, match="set together"):
        ProviderResult(key=ConfigKey("identity"), source=SourceKind.ENVIRONMENT, value=None)


def _report(*results: ProviderResult, corrupted: bool = False) -> ResolutionReport:
    return ResolutionReport.build(
        target_id="rx-7",
        results={item.key: item for item in results},
        corrupted=corrupted,
    )


@pytest.mark.unit
def test_report_status_derivation() -> None:
    identity = ConfigKey("identity")
    endpoint = ConfigKey("endpoint")

    complete = _report(
        ProviderResult.resolved(identity, "rx-7", SourceKind.ENCRYPTED_STORE),
        ProviderResult.resolved(endpoint, "tcp://10.0.0.7", SourceKind.ENVIRONMENT),
    )
    degraded = _report(
        ProviderResult.resolved(identity, "rx-7", SourceKind.ENVIRONMENT),
        ProviderResult.resolved(endpoint, "[[endpoint]]", SourceKind.PLACEHOLDER),
    )
    corrupted = _report(
        ProviderResult.resolved(identity, "rx-7", SourceKind.ENVIRONMENT),
        ProviderResult.unresolved(endpoint, "suppressed"),
        corrupted=True,
    )

    assert complete.status is ResolutionStatus.COMPLETE
    assert degraded.status is ResolutionStatus.DEGRADED
    assert degraded.placeholder_keys == (endpoint,)
    assert corrupted.status is ResolutionStatus.CORRUPTED
    assert corrupted.unresolved_keys == (endpoint,)


@pytest.mark.unit
def test_report_json_is_canonical_and_hides_values_by_default() -> None:
    identity = ConfigKey("identity")
    endpoint = ConfigKey("endpoint")
    report = _report(
        ProviderResult.resolved(identity, "unit-0007", SourceKind.ENVIRONMENT),
        ProviderResult.resolved(endpoint, "[[endpoint]]", SourceKind.PLACEHOLDER),
    )

    rendered = report.to_json()
    payload = json.loads(rendered)

    assert "unit-0007" not in rendered
    assert list(payload["keys"]) == ["endpoint", "identity"]
    assert payload["keys"]["identity"] == {"resolved": True, "source": "environment"}
    assert payload["placeholders"] == ["endpoint"]
    assert payload["status"] == "degraded"
    assert json.loads(report.to_json(include_values=True))["keys"]["identity"]["value"] == "unit-0007"
    assert report.provenance() == {"endpoint": "placeholder", "identity": "environment"}
