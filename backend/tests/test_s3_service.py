"""Unit tests for S3 service"""

import threading

import pytest
from unittest.mock import Mock, patch
from botocore.exceptions import ClientError

from projectflow.services.s3_service import (
    S3Service,
    S3ConnectionError,
    ObjectExistsError,
)


@pytest.fixture
def mock_s3_client():
    """Mock S3 client"""
    with patch("boto3.client") as mock_client:
        mock_instance = Mock()
        mock_client.return_value = mock_instance
        yield mock_instance


@pytest.fixture
def mock_settings():
    """Patched settings for the S3 service module"""
    with patch("projectflow.services.s3_service.settings") as mock_settings:
        mock_settings.aws_region = "us-east-1"
        mock_settings.aws_access_key_id = None
        mock_settings.aws_secret_access_key = None
        mock_settings.aws_endpoint_url = None
        mock_settings.storage_public_url = None
        yield mock_settings


@pytest.fixture
def s3_service(mock_s3_client, mock_settings):
    """S3 service instance with mocked client"""
    return S3Service()


class TestS3Upload:
    """Test uploads"""

    @pytest.mark.asyncio
    async def test_upload_success(self, s3_service, mock_s3_client):
        """Test successful upload returns the stored key"""
        mock_s3_client.put_object.return_value = {"ETag": "abc"}

        path = await s3_service.upload(
            "project-files", "projects/1-foto.jpg", b"data", content_type="image/jpeg"
        )

        assert path == "projects/1-foto.jpg"
        mock_s3_client.put_object.assert_called_once_with(
            Bucket="project-files",
            Key="projects/1-foto.jpg",
            Body=b"data",
            ContentType="image/jpeg",
        )
        mock_s3_client.head_object.assert_not_called()

    @pytest.mark.asyncio
    async def test_upload_without_overwrite_refuses_existing(self, s3_service, mock_s3_client):
        """Test that an existing key is kept when overwrite is off"""
        mock_s3_client.head_object.return_value = {"ContentLength": 4}

        with pytest.raises(ObjectExistsError):
            await s3_service.upload("contracts", "contracts/c1/a.pdf", b"data", overwrite=False)

        mock_s3_client.put_object.assert_not_called()

    @pytest.mark.asyncio
    async def test_upload_client_error(self, s3_service, mock_s3_client):
        """Test upload failure is wrapped"""
        mock_s3_client.put_object.side_effect = ClientError(
            {"Error": {"Code": "AccessDenied", "Message": "Access denied"}},
            "PutObject",
        )

        with pytest.raises(S3ConnectionError, match="AccessDenied"):
            await s3_service.upload("project-files", "projects/1-foto.jpg", b"data")

    @pytest.mark.asyncio
    async def test_upload_runs_off_event_loop_thread(self, s3_service, mock_s3_client):
        """Test that the blocking boto3 call does not run on the loop thread"""
        threads = []
        mock_s3_client.put_object.side_effect = lambda **kwargs: threads.append(threading.get_ident())
        mock_s3_client.delete_objects.side_effect = lambda **kwargs: threads.append(threading.get_ident()) or {}

        await s3_service.upload("project-files", "projects/1-foto.jpg", b"data")
        await s3_service.remove("project-files", ["projects/1-foto.jpg"])

        assert len(threads) == 2
        assert threading.get_ident() not in threads


class TestS3ObjectExists:
    """Test existence checks"""

    def test_object_missing(self, s3_service, mock_s3_client):
        """Test that a 404 means the object does not exist"""
        mock_s3_client.head_object.side_effect = ClientError(
            {"Error": {"Code": "404", "Message": "Not Found"}},
            "HeadObject",
        )

        assert s3_service.check_object_exists("project-files", "missing") is False

    def test_other_errors_raise(self, s3_service, mock_s3_client):
        """Test that non-404 errors are raised"""
        mock_s3_client.head_object.side_effect = ClientError(
            {"Error": {"Code": "403", "Message": "Forbidden"}},
            "HeadObject",
        )

        with pytest.raises(S3ConnectionError):
            s3_service.check_object_exists("project-files", "secret")


class TestS3PublicUrl:
    """Test public URL generation"""

    def test_aws_url(self, s3_service):
        """Test the default AWS virtual-hosted URL"""
        url = s3_service.get_public_url("project-files", "projects/1-foto sala.jpg")

        assert url == "https://project-files.s3.us-east-1.amazonaws.com/projects/1-foto%20sala.jpg"

    def test_endpoint_url(self, s3_service, mock_settings):
        """Test MinIO-style URLs"""
        mock_settings.aws_endpoint_url = "http://localhost:9000"

        url = s3_service.get_public_url("contracts", "contracts/c1/a.pdf")

        assert url == "http://localhost:9000/contracts/contracts/c1/a.pdf"

    def test_public_base_url_wins(self, s3_service, mock_settings):
        """Test that the configured public base takes precedence"""
        mock_settings.aws_endpoint_url = "http://localhost:9000"
        mock_settings.storage_public_url = "https://cdn.projectflow.test/"

        url = s3_service.get_public_url("contracts", "contracts/c1/a.pdf")

        assert url == "https://cdn.projectflow.test/contracts/contracts/c1/a.pdf"


class TestS3Remove:
    """Test object removal"""

    @pytest.mark.asyncio
    async def test_remove_batch(self, s3_service, mock_s3_client):
        """Test deleting several keys in one request"""
        mock_s3_client.delete_objects.return_value = {"Deleted": [{"Key": "a"}, {"Key": "b"}]}

        await s3_service.remove("project-files", ["a", "b"])

        mock_s3_client.delete_objects.assert_called_once_with(
            Bucket="project-files",
            Delete={"Objects": [{"Key": "a"}, {"Key": "b"}], "Quiet": True},
        )

    @pytest.mark.asyncio
    async def test_remove_nothing(self, s3_service, mock_s3_client):
        """Test that an empty list makes no request"""
        await s3_service.remove("project-files", [])

        mock_s3_client.delete_objects.assert_not_called()

    @pytest.mark.asyncio
    async def test_remove_partial_errors(self, s3_service, mock_s3_client):
        """Test that per-key errors are raised"""
        mock_s3_client.delete_objects.return_value = {
            "Errors": [{"Key": "b", "Code": "AccessDenied", "Message": "Access Denied"}]
        }

        with pytest.raises(S3ConnectionError, match="b"):
            await s3_service.remove("project-files", ["a", "b"])

    @pytest.mark.asyncio
    async def test_remove_client_error(self, s3_service, mock_s3_client):
        """Test that request failures are wrapped"""
        mock_s3_client.delete_objects.side_effect = ClientError(
            {"Error": {"Code": "NoSuchBucket", "Message": "No such bucket"}},
            "DeleteObjects",
        )

        with pytest.raises(S3ConnectionError, match="NoSuchBucket"):
            await s3_service.remove("missing-bucket", ["a"])
