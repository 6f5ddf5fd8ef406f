"""Summary: Tests for API key service logic.

Importance: Ensures per-user API key issuance and resolution work.
Alternatives: Validate keys manually through the API.
"""

from __future__ import annotations

from channelnexus.models import User
from channelnexus.services import ApiKeyService
from channelnexus.storage.sqlite_store import SqliteStore


def test_api_key_roundtrip(tmp_path) -> None:
    """Summary: Verify API key creation and resolution.

    Importance: Confirms keys map back to the intended user.
    Alternatives: Use API integration tests only.
    """

    store = SqliteStore(str(tmp_path / "test.db"))
    store.initialize()
    user_id = store.ensure_user(User(display_name="Local User", email="local@channelnexus"))
    service = ApiKeyService(store=store, token_secret="secret")
    key_id, token = service.create_api_key(user_id, label="test")
    assert key_id > 0
    assert service.resolve_user_id(token) == user_id
    stored = service.list_api_keys(user_id)
    assert [key.label for key in stored] == ["test"]


def test_api_key_revocation(tmp_path) -> None:
    """Summary: Verify API key revocation removes access.

    Importance: Confirms revoked keys no longer resolve to a user.
    Alternatives: Use status flags instead of deletion.
    """

    store = SqliteStore(str(tmp_path / "test.db"))
    store.initialize()
    user_id = store.ensure_user(User(display_name="Local User", email="local@channelnexus"))
    service = ApiKeyService(store=store, token_secret="secret")
    key_id, token = service.create_api_key(user_id, label="test")
    assert service.revoke_api_key(user_id, key_id) is True
    assert service.resolve_user_id(token) is None


def test_api_key_hash_depends_on_secret(tmp_path) -> None:
    store = SqliteStore(str(tmp_path / "test.db"))
    store.initialize()
    user_id = store.ensure_user(User(display_name="Local User", email="local@channelnexus"))
    _key_id, token = ApiKeyService(store=store, token_secret="secret").create_api_key(user_id)
    assert ApiKeyService(store=store, token_secret="other").resolve_user_id(token) is None
