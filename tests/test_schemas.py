"""Tests for the service record models."""
import json

import pytest
from pydantic import ValidationError

from service_registry.errors import MalformedRecordError
from service_registry.schemas import ServiceRecord, ServiceRegistrationRequest


class TestServiceRecord:
    """Tests for ServiceRecord."""

    def test_stored_document_fields(self):
        """Should serialize to the stored id/name/connection/options document."""
        record = ServiceRecord(id="1", name="api", connection={"address": "x"}, options={"a": 1})
        assert json.loads(record.to_json()) == {
            "id": "1",
            "name": "api",
            "connection": {"address": "x"},
            "options": {"a": 1},
        }

    def test_opaque_values_are_kept_verbatim(self):
        """Should accept any JSON value as connection details."""
        record = ServiceRecord.from_json('{"id": "1", "name": "api", "connection": "tcp://x:1"}')
        assert record.connection == "tcp://x:1"
        assert record.options is None

    def test_unknown_fields_are_ignored(self):
        """Should tolerate fields written by newer writers."""
        record = ServiceRecord.from_json('{"id": "1", "name": "api", "connection": null, "zone": "b"}')
        assert record.id == "1"

    @pytest.mark.parametrize("raw", ["{not json", '{"name": "api"}', '{"id": "", "name": "api"}', "[]"])
    def test_malformed_values_raise(self, raw):
        """Should report malformed values together with their key."""
        with pytest.raises(MalformedRecordError) as excinfo:
            ServiceRecord.from_json(raw, key="/services/api/1")
        assert excinfo.value.key == "/services/api/1"
        assert "/services/api/1" in str(excinfo.value)


class TestServiceRegistrationRequest:
    """Tests for ServiceRegistrationRequest."""

    def test_options_are_optional(self):
        """Should default options to None."""
        request = ServiceRegistrationRequest(name="api", connection={"port": 80})
        assert request.options is None

    def test_missing_connection(self):
        """Should reject a request without connection details."""
        with pytest.raises(ValidationError):
            ServiceRegistrationRequest(name="api")
