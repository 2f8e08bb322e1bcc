"""
fleet-secrets — unit tests for the resolution engine

File: tests/unit/resolution/test_engine.py
Last updated: 2026-10-19

Purpose
- Pin source precedence, per-key fallthrough, totality, status derivation, the
  corrupted-store policy, and the structured log events a run emits.
"""

from __future__ import annotations

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st
from structlog.testing import capture_logs

from fleet_secrets.constants import DEFAULT_KEY_TABLE
from fleet_secrets.domain.models import (
    ConfigKey,
    EncryptedArtifact,
    KeyCatalog,
    ResolutionRequest,
    ResolutionStatus,
    SourceKind,
    TargetMismatch,
)
from fleet_secrets.providers.environment import EnvironmentProvider
from fleet_secrets.providers.placeholder import PlaceholderProvider
from fleet_secrets.resolution.engine import (
    CorruptedArtifactError,
    InvariantViolation,
    ResolutionEngine,
)

IDENTITY = ConfigKey("identity")
ENDPOINT = ConfigKey("endpoint")
_CATALOG = KeyCatalog.from_table(DEFAULT_KEY_TABLE)


def _request(*keys: ConfigKey, target_id: str = "rx-7") -> ResolutionRequest:
    return ResolutionRequest(target_id=target_id, keys=keys)


@pytest.mark.unit
def test_environment_and_placeholder_without_store(catalog) -> None:
    engine = ResolutionEngine.for_sources(
        catalog=catalog,
        artifact=None,
        key_material=None,
        environ={"ROBOT_IDENTITY": "rx-7"},
    )

    report = engine.resolve(_request(IDENTITY, ENDPOINT))

    assert report[IDENTITY].value == "rx-7"
    assert report[IDENTITY].source is SourceKind.ENVIRONMENT
    assert report[ENDPOINT].value == "[[endpoint]]"
    assert report[ENDPOINT].source is SourceKind.PLACEHOLDER
    assert report.status is ResolutionStatus.DEGRADED
    assert report.store_failure == "no encrypted artifact"


@pytest.mark.unit
def test_store_wins_over_environment(catalog, make_key_pair, seal) -> None:
    robot = make_key_pair()
    artifact = seal({"identity": "from-store", "endpoint": "tcp://store"}, [robot], scope="rx-7")
    engine = ResolutionEngine.for_sources(
        catalog=catalog,
        artifact=artifact,
        key_material=robot.context,
        environ={"ROBOT_IDENTITY": "from-env", "ROBOT_ENDPOINT": "tcp://env"},
    )

    report = engine.resolve(_request(IDENTITY, ENDPOINT))

    assert report.values() == {"endpoint": "tcp://store", "identity": "from-store"}
    assert report.status is ResolutionStatus.COMPLETE
    assert report.store_failure is None


@pytest.mark.unit
def test_partial_store_falls_through_per_key(catalog, make_key_pair, seal) -> None:
    robot = make_key_pair()
    artifact = seal({"identity": "from-store"}, [robot], scope="rx-7")
    engine = ResolutionEngine.for_sources(
        catalog=catalog,
        artifact=artifact,
        key_material=robot.context,
        environ={"ROBOT_ENDPOINT": "tcp://env"},
    )

    report = engine.resolve(_request(IDENTITY, ENDPOINT, ConfigKey("api_token")))

    assert report.provenance() == {
        "api_token": "placeholder",
        "endpoint": "environment",
        "identity": "encrypted_store",
    }
    assert report.status is ResolutionStatus.DEGRADED


@pytest.mark.unit
def test_wrong_key_degrades_without_corruption(catalog, make_key_pair, seal) -> None:
    artifact = seal({"identity": "from-store"}, [make_key_pair("robot")], scope="rx-7")
    engine = ResolutionEngine.for_sources(
        catalog=catalog,
        artifact=artifact,
        key_material=make_key_pair("stranger").context,
        environ={},
    )

    report = engine.resolve(_request(IDENTITY))

    assert report.status is ResolutionStatus.DEGRADED
    assert report.store_failure == "key_mismatch"
    assert report[IDENTITY].source is SourceKind.PLACEHOLDER


@pytest.mark.unit
def test_request_key_material_opens_store_when_engine_has_none(
    catalog, make_key_pair, seal
) -> None:
    robot = make_key_pair()
    artifact = seal({"identity": "from-store"}, [robot], scope="rx-7")
    engine = ResolutionEngine.for_sources(
        catalog=catalog, artifact=artifact, key_material=None, environ={}
    )

    report = engine.resolve(
        ResolutionRequest(target_id="rx-7", keys=(IDENTITY,), key_material=robot.context)
    )

    assert report[IDENTITY].value == "from-store"
    assert report[IDENTITY].source is SourceKind.ENCRYPTED_STORE
    assert report.store_failure is None


@pytest.mark.unit
def test_engine_binds_to_first_target(catalog) -> None:
    engine = ResolutionEngine.for_sources(
        catalog=catalog, artifact=None, key_material=None, environ={}
    )
    engine.resolve(_request(IDENTITY))

    with pytest.raises(TargetMismatch) as excinfo:
        engine.resolve(_request(IDENTITY, target_id="rx-8"))

    assert engine.target_id == "rx-7"
    assert excinfo.value.found_scope == "rx-7"


@pytest.mark.unit
def test_store_scoped_to_other_target_is_refused_before_decrypt(
    catalog, make_key_pair, seal
) -> None:
    robot = make_key_pair()
    artifact = seal({"identity": "rx-7-secret"}, [robot], scope="rx-7")

    with capture_logs() as events, pytest.raises(TargetMismatch) as excinfo:
        engine = ResolutionEngine.for_sources(
            catalog=catalog, artifact=artifact, key_material=robot.context, environ={}
        )
        engine.resolve(_request(IDENTITY, target_id="rx-8"))

    assert excinfo.value.target_id == "rx-8"
    assert "rx-7-secret" not in str(excinfo.value)
    assert [event["event"] for event in events] == ["encrypted_store_scope_mismatch"]


@pytest.mark.unit
def test_corrupted_store_suppresses_placeholders_but_keeps_environment(catalog) -> None:
    engine = ResolutionEngine.for_sources(
        catalog=catalog,
        artifact=EncryptedArtifact(b"\x00garbage"),
        key_material=None,
        environ={"ROBOT_IDENTITY": "rx-7"},
    )

    report = engine.resolve(_request(IDENTITY, ENDPOINT))

    assert report.status is ResolutionStatus.CORRUPTED
    assert report[IDENTITY].source is SourceKind.ENVIRONMENT
    assert report.unresolved_keys == (ENDPOINT,)
    assert report.placeholder_keys == ()
    assert "suppressed" in (report[ENDPOINT].detail or "")


@pytest.mark.unit
def test_corrupted_store_raises_under_raise_policy(catalog) -> None:
    engine = ResolutionEngine.for_sources(
        catalog=catalog,
        artifact=EncryptedArtifact(b"{}"),
        key_material=None,
        environ={},
        on_corrupted="raise",
    )

    with pytest.raises(CorruptedArtifactError) as excinfo:
        engine.resolve(_request(IDENTITY, ENDPOINT))

    assert excinfo.value.target_id == "rx-7"
    assert set(excinfo.value.keys) == {IDENTITY, ENDPOINT}


@pytest.mark.unit
def test_chain_without_placeholder_violates_totality(catalog) -> None:
    engine = ResolutionEngine((EnvironmentProvider(catalog, {}),))
    with pytest.raises(InvariantViolation, match="identity"):
        engine.resolve(_request(IDENTITY))


@pytest.mark.unit
def test_providers_must_follow_precedence(catalog) -> None:
    with pytest.raises(ValueError, match="ordered by precedence"):
        ResolutionEngine((PlaceholderProvider(), EnvironmentProvider(catalog, {})))
    with pytest.raises(ValueError, match="at least one provider"):
        ResolutionEngine(())
    with pytest.raises(ValueError, match="corruption policy"):
        ResolutionEngine((PlaceholderProvider(),), on_corrupted="ignore")  # type: ignore[arg-type]


@pytest.mark.unit
def test_run_emits_completion_and_placeholder_events(catalog) -> None:
    with capture_logs() as logs:
        engine = ResolutionEngine.for_sources(
            catalog=catalog,
            artifact=None,
            key_material=None,
            environ={"ROBOT_IDENTITY": "never-logged"},
        )
        engine.resolve(_request(IDENTITY, ENDPOINT))

    events = {entry["event"]: entry for entry in logs}
    completed = events["resolution_completed"]
    assert completed["status"] == "degraded"
    assert completed["sources"] == {"environment": 1, "placeholder": 1}
    assert events["resolution_placeholder_fallback"]["key"] == "endpoint"
    assert events["resolution_placeholder_fallback"]["log_level"] == "warning"
    assert "never-logged" not in repr(logs)


_ENV_VALUES = st.dictionaries(
    keys=st.sampled_from(sorted(DEFAULT_KEY_TABLE.values())),
    values=st.sampled_from(["", "  ", "value-a", "value-b"]),
)


@pytest.mark.unit
@settings(max_examples=60, deadline=None)
@given(
    environ=_ENV_VALUES,
    keys=st.permutations(list(_CATALOG.keys)),
    size=st.integers(min_value=1, max_value=len(_CATALOG.keys)),
)
def test_resolution_is_idempotent_and_order_independent(
    environ: dict[str, str], keys: list[ConfigKey], size: int
) -> None:
    selected = tuple(keys[:size])

    def run(request_keys: tuple[ConfigKey, ...]) -> str:
        engine = ResolutionEngine.for_sources(
            catalog=_CATALOG, artifact=None, key_material=None, environ=environ
        )
        return engine.resolve(_request(*request_keys)).to_json(include_values=True)

    first = run(selected)
    assert run(selected) == first
    assert run(tuple(reversed(selected))) == first

    engine = ResolutionEngine.for_sources(
        catalog=_CATALOG, artifact=None, key_material=None, environ=environ
    )
    report = engine.resolve(_request(*selected))
    assert set(report.keys) == set(selected)
    for key in selected:
        env_value = environ.get(_CATALOG.env_var_for(key), "")
        expected = SourceKind.ENVIRONMENT if env_value.strip() else SourceKind.PLACEHOLDER
        assert report[key].source is expected
