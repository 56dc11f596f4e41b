"""
Durable storage for rendered report artifacts (Google Cloud Storage)
"""
import logging

from canemap_backend.config.environment import GCS_BUCKET_NAME
from canemap_backend.utils.errors import UploadFailure

logger = logging.getLogger(__name__)


class GCSArtifactStore:
    """upload(path, bytes) -> url"""

    def __init__(self, client=None, bucket_name=GCS_BUCKET_NAME):
        self._client = client
        self.bucket_name = bucket_name

    @property
    def client(self):
        if self._client is None:
            from canemap_backend.config.credentials import get_credential_manager
            self._client = get_credential_manager().get_gcs_client()
        return self._client

    def upload(self, path, data, content_type='application/pdf'):
        """
        Upload ``data`` to ``path`` in the reports bucket.

        Raises:
            UploadFailure: storage is not configured or the upload failed
        """
        if self.client is None:
            raise UploadFailure("Report storage is not available", path=path)

        try:
            bucket = self.client.bucket(self.bucket_name)
            blob = bucket.blob(path)
            blob.upload_from_string(data, content_type=content_type)
        except Exception as e:
            logger.error(f"Failed to upload artifact {path}: {e}")
            raise UploadFailure("Failed to store the report file", path=path, cause=str(e)) from e

        url = f"gs://{self.bucket_name}/{path}"
        logger.info(f"Artifact uploaded: {url} ({len(data)} bytes)")
        return url
