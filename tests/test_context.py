import pytest

from plugin_dashboard.bstats_client import DEFAULT_BSTATS_MAPPING
from plugin_dashboard.cache import LocalStore
from plugin_dashboard.config import DashboardConfig
from plugin_dashboard.context import (HW_ACCEL_KEY, MAPPING_KEY, TOKEN_CIPHER_KEY, TOKEN_KEY,
                                      VIEW_MODE_KEY, DashboardContext, TokenCipher)
from plugin_dashboard.errors import ValidationFailure


def test_fresh_context_uses_defaults(context, store):
    assert not context.is_authenticated
    assert context.mapping == DEFAULT_BSTATS_MAPPING
    assert store.get_setting(MAPPING_KEY) == DEFAULT_BSTATS_MAPPING
    assert context.preferences[VIEW_MODE_KEY] == "grid-3"
    assert context.preferences[HW_ACCEL_KEY] is True


def test_token_is_encrypted_at_rest(context, store, config):
    context.set_token("  ghp_secret  ")

    stored = store.get_setting(TOKEN_KEY)
    assert context.token == "ghp_secret"
    assert "ghp_secret" not in stored

    reloaded = DashboardContext(store, config).load()
    assert reloaded.token == "ghp_secret"


def test_empty_token_is_rejected(context):
    with pytest.raises(ValidationFailure) as exc_info:
        context.set_token("   ")

    assert exc_info.value.field == "token"
    assert not context.is_authenticated


def test_undecryptable_token_is_discarded(context, store):
    context.set_token("ghp_secret")

    other = DashboardContext(store, DashboardConfig(secret_key="another-secret")).load()

    assert other.token is None
    assert store.get_setting(TOKEN_KEY) is None


def test_generated_key_is_persisted_without_secret(store):
    first = DashboardContext(store, DashboardConfig()).load()
    first.set_token("ghp_local")

    assert store.get_setting(TOKEN_CIPHER_KEY)
    assert DashboardContext(store, DashboardConfig()).load().token == "ghp_local"


def test_environment_token_seeds_the_store(store):
    context = DashboardContext(store, DashboardConfig(secret_key="s", github_token="ghp_env")).load()

    assert context.token == "ghp_env"
    assert store.get_setting(TOKEN_KEY) is not None


def test_clear_forgets_token_but_keeps_preferences(context, store):
    context.set_token("ghp_secret")
    context.set_preference(VIEW_MODE_KEY, "grid-1")

    context.clear()

    assert not context.is_authenticated
    assert store.get_setting(TOKEN_KEY) is None
    assert store.get_setting(VIEW_MODE_KEY) == "grid-1"


def test_save_mapping_persists_valid_mapping(context, store):
    mapping = context.save_mapping('{"DP-New": 123}')

    assert mapping == {"DP-New": 123}
    assert store.get_setting(MAPPING_KEY) == {"DP-New": 123}
    assert context.lookup_mapping("dp-new") == 123
    assert context.lookup_mapping("DP-Core") is None


def test_invalid_mapping_is_not_persisted(context, store):
    with pytest.raises(ValidationFailure):
        context.save_mapping('{"Foo": "bar"}')
    with pytest.raises(ValidationFailure):
        context.save_mapping("[1, 2]")

    assert context.mapping == DEFAULT_BSTATS_MAPPING
    assert store.get_setting(MAPPING_KEY) == DEFAULT_BSTATS_MAPPING


def test_corrupt_stored_mapping_falls_back_to_defaults(store, config):
    store.set_setting(MAPPING_KEY, ["not", "a", "mapping"])

    context = DashboardContext(store, config).load()

    assert context.mapping == DEFAULT_BSTATS_MAPPING


def test_lookup_mapping_ignores_case(context):
    assert context.lookup_mapping("dpp-core") == 24432
    assert context.lookup_mapping("DP-CASH") == 26291


def test_preferences_are_validated(context, store):
    context.set_preference("language", "ko")
    assert store.get_setting("language") == "ko"

    with pytest.raises(ValidationFailure):
        context.set_preference("language", "fr")
    with pytest.raises(ValidationFailure):
        context.set_preference(HW_ACCEL_KEY, 1)
    with pytest.raises(ValidationFailure) as exc_info:
        context.set_preference("theme", "dark")

    assert exc_info.value.field == "theme"
    assert context.preferences["language"] == "ko"


def test_cipher_accepts_a_fernet_key():
    from cryptography.fernet import Fernet

    cipher = TokenCipher(Fernet.generate_key().decode())

    assert cipher.decrypt(cipher.encrypt("value")) == "value"
    assert cipher.decrypt("garbage") is None


def test_preferences_survive_reopen(tmp_path, config):
    path = str(tmp_path / "prefs.db")
    with LocalStore(path) as store:
        DashboardContext(store, config).load().set_preference(VIEW_MODE_KEY, "grid-2")

    with LocalStore(path) as store:
        assert DashboardContext(store, config).load().preferences[VIEW_MODE_KEY] == "grid-2"
