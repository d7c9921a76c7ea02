"""Tests for options, log sinks and connection settings."""

import logging
from unittest.mock import MagicMock, patch

import pytest
from pymongo.errors import ConfigurationError as PyMongoConfigurationError

from mgdb_migrator import ConfigurationError, ConnectionSettings, Migrator, MigratorOptions
from mgdb_migrator.core.config import logging_sink, null_sink, resolve_logger
from mgdb_migrator.core.db.mongo_client import MongoConnection


class TestMigratorOptions:

    def test_defaults(self):
        options = MigratorOptions()
        assert options.log is True
        assert options.log_if_latest is True
        assert options.collection_name == "migrations"
        assert options.timeout is None
        assert options.version_scheme == "semver"
        assert options.skip_if_locked is False

    def test_merged_returns_copy(self):
        options = MigratorOptions()
        merged = options.merged(timeout=5, log=False)

        assert merged.timeout == 5
        assert merged.log is False
        assert options.timeout is None

    def test_merged_rejects_unknown(self):
        with pytest.raises(ConfigurationError, match="connectionUrl"):
            MigratorOptions().merged(connectionUrl="mongodb://x")

    @pytest.mark.parametrize("kwargs", [{"timeout": 0}, {"collection_name": ""}, {"logger": "print"}])
    def test_rejects_bad_values(self, kwargs):
        with pytest.raises(ConfigurationError):
            MigratorOptions(**kwargs)


class TestResolveLogger:

    def test_default_forwards_to_logging(self, caplog):
        sink = resolve_logger(MigratorOptions())
        assert sink is logging_sink

        with caplog.at_level(logging.INFO, logger="mgdb_migrator.migrator"):
            sink("warning", "disk", 42)

        assert caplog.records[-1].levelno == logging.WARNING
        assert caplog.records[-1].getMessage() == "disk 42"

    def test_custom_logger(self):
        custom = MagicMock()
        assert resolve_logger(MigratorOptions(logger=custom)) is custom

    def test_log_false_silences_custom_logger(self):
        custom = MagicMock()
        assert resolve_logger(MigratorOptions(log=False, logger=custom)) is null_sink


class TestConnection:

    def test_settings_require_url(self):
        with pytest.raises(ConfigurationError):
            ConnectionSettings("")

    @patch("mgdb_migrator.core.db.mongo_client.AsyncIOMotorClient")
    def test_open_with_database_name(self, client_cls):
        settings = ConnectionSettings("mongodb://db:27017", "app", {"tz_aware": True})

        conn = MongoConnection.open(settings)

        client_cls.assert_called_once_with("mongodb://db:27017", tz_aware=True)
        assert conn.db is client_cls.return_value.__getitem__.return_value
        client_cls.return_value.__getitem__.assert_called_once_with("app")

    @patch("mgdb_migrator.core.db.mongo_client.AsyncIOMotorClient")
    def test_open_uses_default_database(self, client_cls):
        conn = MongoConnection.open(ConnectionSettings("mongodb://db:27017/app"))

        assert conn.db is client_cls.return_value.get_default_database.return_value

    @patch("mgdb_migrator.core.db.mongo_client.AsyncIOMotorClient")
    def test_open_without_any_database(self, client_cls):
        client_cls.return_value.get_default_database.side_effect = PyMongoConfigurationError("no db")

        with pytest.raises(ConfigurationError):
            MongoConnection.open(ConnectionSettings("mongodb://db:27017"))

        client_cls.return_value.close.assert_called_once()

    @pytest.mark.asyncio
    @patch("mgdb_migrator.core.db.mongo_client.AsyncIOMotorClient")
    async def test_migrator_closes_own_connection(self, client_cls):
        migrator = Migrator()
        await migrator.configure(db=ConnectionSettings("mongodb://db:27017", "app"))

        assert migrator.configured
        await migrator.close()

        client_cls.return_value.close.assert_called_once()
        assert not migrator.configured
