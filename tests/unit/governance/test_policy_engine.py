"""Unit tests for the Policy Resolver and the pipeline defaults file."""

import pytest
from sqlalchemy import func, select, update

from behavioral_engine.common.exceptions import ConfigurationError, NotFoundError
from behavioral_engine.data.models import InterventionTemplate, Policy
from behavioral_engine.data.schemas.policy import PolicyUpdate
from behavioral_engine.governance.policies import PolicyResolver, load_pipeline_defaults


@pytest.fixture
def policy_yaml(tmp_path):
    path = tmp_path / "defaults.yaml"
    path.write_text(
        """
metadata:
  version: "2.0.0-test"

system_policy:
  session_limit_minutes: 45
  reopen_threshold: 3
  bedtime_start: "21:30"

templates:
  - type: soft_nudge
    name: only_nudge
    title: Pause
    message: Take five.
    priority: 1
    min_risk_level: low
    cooldown_minutes: 20
"""
    )
    return path


class TestLoadPipelineDefaults:
    """Loading the YAML defaults."""

    def test_loads_file(self, policy_yaml):
        defaults = load_pipeline_defaults(policy_yaml)

        assert defaults.metadata.version == "2.0.0-test"
        assert defaults.system_policy.session_limit_minutes == 45
        assert defaults.system_policy.bedtime_start_hour == 21
        # Unset thresholds keep their defaults
        assert defaults.system_policy.scroll_velocity_threshold == 1000
        assert [t.name for t in defaults.templates] == ["only_nudge"]

    def test_shipped_catalog(self, defaults):
        """The shipped file seeds seven templates."""
        assert len(defaults.templates) == 7
        assert defaults.system_policy.parent_alert_threshold == 75

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError) as exc_info:
            load_pipeline_defaults(tmp_path / "nope.yaml")
        assert "not found" in exc_info.value.message

    def test_invalid_values(self, tmp_path):
        """A bad clock time is a configuration error."""
        path = tmp_path / "bad.yaml"
        path.write_text("system_policy:\n  bedtime_start: '25:00'\n")

        with pytest.raises(ConfigurationError) as exc_info:
            load_pipeline_defaults(path)
        assert exc_info.value.details["path"] == str(path)


class TestResolve:
    """Resolution order: user policy, system default row, file defaults."""

    def test_unseeded_database_uses_file_defaults(self, database, defaults, clock):
        resolver = PolicyResolver(defaults, clock=clock)
        with database.session_scope() as db:
            policy = resolver.resolve(db, "user-1")

        assert policy.source == "defaults"
        assert policy.policy_id is None
        assert policy.session_limit_minutes == 60

    def test_system_default_row(self, database, policy_resolver):
        with database.session_scope() as db:
            policy = policy_resolver.resolve(db, "user-1")

        assert policy.source == "system_default"
        assert policy.policy_id is not None

    def test_user_policy_wins(self, database, policy_resolver, link_guardian):
        link_guardian("guardian-1", "user-1")
        with database.session_scope() as db:
            policy_resolver.update_policy(
                db, "guardian-1", "user-1", PolicyUpdate(session_limit_minutes=20)
            )

        with database.session_scope() as db:
            mine = policy_resolver.resolve(db, "user-1")
            theirs = policy_resolver.resolve(db, "user-2")

        assert mine.source == "user"
        assert mine.session_limit_minutes == 20
        assert theirs.source == "system_default"
        assert theirs.session_limit_minutes == 60

    def test_inactive_user_policy_ignored(self, database, policy_resolver, link_guardian):
        """Deactivated policies fall back to the system default."""
        link_guardian("guardian-1", "user-1")
        with database.session_scope() as db:
            policy_resolver.update_policy(
                db, "guardian-1", "user-1", PolicyUpdate(reopen_threshold=2)
            )
        with database.session_scope() as db:
            db.execute(
                update(Policy).where(Policy.target_user_id == "user-1").values(is_active=False)
            )

        with database.session_scope() as db:
            assert policy_resolver.resolve(db, "user-1").source == "system_default"


class TestUpdatePolicy:
    """Guardian policy edits."""

    def test_requires_active_link(self, database, policy_resolver):
        with database.session_scope() as db:
            with pytest.raises(NotFoundError):
                policy_resolver.update_policy(
                    db, "guardian-1", "user-1", PolicyUpdate(reopen_threshold=2)
                )

    def test_partial_updates_accumulate(self, database, policy_resolver, link_guardian):
        """A second edit updates the same row and keeps earlier changes."""
        link_guardian("guardian-1", "user-1")
        with database.session_scope() as db:
            policy_resolver.update_policy(
                db, "guardian-1", "user-1", PolicyUpdate(reopen_threshold=2)
            )
        with database.session_scope() as db:
            policy = policy_resolver.update_policy(
                db, "guardian-1", "user-1", PolicyUpdate(bedtime_start="21:00")
            )

        assert policy.reopen_threshold == 2
        assert policy.bedtime_start == "21:00"
        assert policy.scroll_velocity_threshold == 1000
        with database.session_scope() as db:
            count = db.execute(
                select(func.count(Policy.id)).where(Policy.target_user_id == "user-1")
            ).scalar_one()
        assert count == 1

    def test_invalid_clock_rejected(self):
        with pytest.raises(ValueError):
            PolicyUpdate(bedtime_end="7am")


class TestSeedDefaults:
    """Seeding is idempotent."""

    def test_second_seed_inserts_nothing(self, database, policy_resolver):
        with database.session_scope() as db:
            assert policy_resolver.seed_defaults(db) == 0
            templates = db.execute(select(func.count(InterventionTemplate.id))).scalar_one()
            defaults = db.execute(
                select(func.count(Policy.id)).where(Policy.is_system_default.is_(True))
            ).scalar_one()
        assert templates == 7
        assert defaults == 1

    def test_missing_templates_added(self, database, policy_resolver):
        """Deleted catalog rows are restored, existing ones untouched."""
        with database.session_scope() as db:
            row = db.execute(
                select(InterventionTemplate).where(InterventionTemplate.name == "gentle_reminder")
            ).scalar_one()
            db.delete(row)
            db.execute(
                update(InterventionTemplate)
                .where(InterventionTemplate.name == "daily_limit")
                .values(priority=10)
            )

        with database.session_scope() as db:
            assert policy_resolver.seed_defaults(db) == 1
            priority = db.execute(
                select(InterventionTemplate.priority).where(InterventionTemplate.name == "daily_limit")
            ).scalar_one()
        assert priority == 10
