"""
Integration settings and lifecycle tests
"""
import pytest

from wms_sync.services.credentials import decrypt_token, encrypt_token, get_integration_credentials
from wms_sync.services.errors import IntegrationSettingsError, SyncSetupError
from wms_sync.services.integration_settings import SETTINGS_SCHEMA_VERSION, load_settings, save_settings
from wms_sync.services.integrations import (
    disconnect_integration,
    record_integration_error,
    require_active_integration,
)


class TestIntegrationSettings:
    """Test typed settings over the JSON column"""

    def test_defaults_for_empty_settings(self, make_integration):
        cfg = load_settings(make_integration(settings=None))

        assert cfg.schema_version == SETTINGS_SCHEMA_VERSION
        assert cfg.inventory_buffer == 0
        assert cfg.auto_sync_inventory is False
        assert cfg.shopify_location_id is None
        assert cfg.fulfillment_notify_customer is True

    def test_ids_are_coerced_to_strings_and_unknown_keys_ignored(self, make_integration):
        cfg = load_settings(make_integration(settings={"shopify_location_id": 12345, "legacy_flag": True}))

        assert cfg.shopify_location_id == "12345"
        assert not hasattr(cfg, "legacy_flag")

    def test_invalid_values_raise(self, make_integration):
        with pytest.raises(IntegrationSettingsError):
            load_settings(make_integration(settings={"inventory_buffer": -1}))

    def test_save_settings_merges_and_preserves_foreign_keys(self, db_session, make_integration):
        integration = make_integration(settings={"inventory_buffer": 3, "legacy_flag": True})

        save_settings(db_session, integration, shopify_location_id=999)

        db_session.refresh(integration)
        assert integration.settings["shopify_location_id"] == "999"
        assert integration.settings["inventory_buffer"] == 3
        assert integration.settings["legacy_flag"] is True


class TestIntegrationLifecycle:
    def test_require_active_integration(self, integration, make_integration, db_session):
        found, cfg = require_active_integration(db_session, integration.id)
        assert found.id == integration.id
        assert cfg.shopify_location_id == "555"

        broken = make_integration(settings={"inventory_buffer": "lots"})
        with pytest.raises(SyncSetupError):
            require_active_integration(db_session, broken.id)

    def test_record_integration_error_truncates(self, db_session, integration):
        record_integration_error(db_session, integration, "x" * 5000)

        db_session.refresh(integration)
        assert len(integration.last_error_message) == 1000
        assert integration.last_error_at is not None

    def test_disconnect_keeps_row_and_clears_token(self, db_session, integration):
        disconnect_integration(db_session, integration)

        db_session.refresh(integration)
        assert integration.status == "inactive"
        assert integration.access_token is None
        with pytest.raises(SyncSetupError):
            require_active_integration(db_session, integration.id)


class TestCredentials:
    def test_token_round_trip_and_bad_ciphertext(self, make_integration):
        assert decrypt_token(encrypt_token("shpat_abc")) == "shpat_abc"

        corrupted = make_integration(access_token="not-a-fernet-token")
        with pytest.raises(SyncSetupError):
            get_integration_credentials(corrupted)
