"""Tests for deterministic derived-object naming."""

from __future__ import annotations

from hypothesis import given
from hypothesis import strategies as st

from nsreconciler.models.spec import DesiredState
from nsreconciler.rbac import naming


class TestSlug:
    def test_email(self) -> None:
        assert naming.slug("john@loblaw.ca") == "john-loblaw-ca"

    def test_underscores(self) -> None:
        assert naming.slug("jane_doe@example.com") == "jane-doe-example-com"

    def test_plain_name_unchanged(self) -> None:
        assert naming.slug("alice") == "alice"

    @given(st.text(max_size=40))
    def test_slug_is_pure(self, identity: str) -> None:
        assert naming.slug(identity) == naming.slug(identity)
        assert not {"_", "@", "."} & set(naming.slug(identity))


class TestNames:
    def test_self_impersonator_name(self) -> None:
        assert naming.self_impersonator_name("john@loblaw.ca") == "john-loblaw-ca-impersonator"

    def test_tenant_scoped_names(self) -> None:
        state = DesiredState(uid="u1", name="team-a")
        assert state.sudoers_group_name == "team-a-sudoers"
        assert naming.sudoer_editor_binding_name(state) == "team-a-sudoeditor"
        assert naming.editor_role_name(state) == "team-a-editor"
        assert naming.manager_binding_name(state) == "team-a-manager"
