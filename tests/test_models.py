"""Unit tests for API snapshot models."""

from appgen.models import (
    ApplicationDetails,
    JobSnapshot,
    JobStatus,
    PublicationSnapshot,
    PublicationStatus,
    TokenGrant,
)


class TestJobSnapshot:
    """Parsing generation job payloads."""

    def test_known_status(self):
        snapshot = JobSnapshot.from_api({"key": "job-1", "status": "ReadyToGenerate"})

        assert snapshot.status is JobStatus.READY_TO_GENERATE
        assert snapshot.is_known_status
        assert snapshot.app_key is None

    def test_app_key_from_app_spec(self):
        snapshot = JobSnapshot.from_api(
            {"key": "job-1", "status": "Done", "appSpec": {"appKey": "app-1"}}
        )

        assert snapshot.app_key == "app-1"

    def test_unknown_status_kept_as_string(self):
        snapshot = JobSnapshot.from_api({"key": "job-1", "status": "Archived"})

        assert snapshot.status == "Archived"
        assert not snapshot.is_known_status

    def test_status_compares_with_plain_string(self):
        snapshot = JobSnapshot.from_api({"key": "job-1", "status": "Failed"})

        assert snapshot.status == "Failed"

    def test_raw_payload_kept(self):
        payload = {"key": "job-1", "status": "Pending", "extra": 1}

        assert JobSnapshot.from_api(payload).raw == payload


class TestPublicationSnapshot:
    def test_parses_fields(self):
        snapshot = PublicationSnapshot.from_api(
            {
                "key": "pub-1",
                "status": "Running",
                "applicationKey": "app-1",
                "applicationRevision": 1,
            }
        )

        assert snapshot.status is PublicationStatus.RUNNING
        assert snapshot.application_key == "app-1"
        assert snapshot.application_revision == 1


class TestApplicationDetails:
    def test_url_path(self):
        details = ApplicationDetails.from_api({"key": "app-1", "name": "CRM", "urlPath": "crm"})

        assert details.url_path == "crm"

    def test_missing_payload(self):
        details = ApplicationDetails.from_api(None)

        assert details.url_path is None


def test_token_grant_hides_token():
    assert "tok-secret" not in repr(TokenGrant(access_token="tok-secret", expires_in=60))
